from __future__ import annotations

import csv
import io
import logging
from typing import Iterable, List, Optional

from .records import FIELDS, Record

log = logging.getLogger("users_core.csv_codec")

HEADER = list(FIELDS)


def encode(records: Iterable[Record]) -> str:
    """Serialize records as `id,name,email` CSV.

    Fields holding a comma, quote or line break are quoted with inner quotes
    doubled; everything else is written bare.
    """
    buf = io.StringIO(newline="")
    # CRLF terminator so a bare "\r" inside a field is quoted too.
    w = csv.writer(buf, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    w.writerow(HEADER)
    for r in records:
        w.writerow([r.id, r.name, r.email])
    return buf.getvalue()


def _cell(row: List[str], idx: Optional[int]) -> Optional[str]:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _parse_id(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        return None


def decode(text: str) -> List[Record]:
    """Parse CSV produced by `encode` (or a hand-edited variant of it).

    The first non-blank row is the header. Missing columns default to "" for
    name/email and 0 for id. Blank rows and rows with a non-integer id are
    skipped.
    """
    reader = csv.reader(io.StringIO(text or "", newline=""), strict=False)
    index: dict[str, int] | None = None
    out: List[Record] = []
    line_no = 0
    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            log.debug("Skipping unparseable CSV line %s: %s", reader.line_num, exc)
            continue
        line_no += 1
        if not row or all(not cell.strip() for cell in row):
            continue
        if index is None:
            index = {}
            for i, name in enumerate(row):
                key = name.strip().lower()
                if key in FIELDS and key not in index:
                    index[key] = i
            continue

        rid = _parse_id(_cell(row, index.get("id")))
        if rid is None:
            log.debug("Skipping CSV row %s with malformed id", line_no)
            continue
        out.append(
            Record(
                id=rid,
                name=_cell(row, index.get("name")) or "",
                email=_cell(row, index.get("email")) or "",
            )
        )
    return out
