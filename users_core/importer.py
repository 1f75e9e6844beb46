from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from .csv_codec import decode
from .records import Record
from .sync_engine import SyncEngine

log = logging.getLogger("users_core.importer")


@dataclass
class ImportReport:
    created: List[Record] = field(default_factory=list)
    skipped: List[Record] = field(default_factory=list)
    failed: List[Tuple[Record, BaseException]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.created) + len(self.failed)


async def import_csv(engine: SyncEngine, text: str, refresh: bool = True) -> ImportReport:
    """Create one record per CSV row, sequentially.

    Rows without a name or email are skipped; ids in the file are ignored since
    the server assigns them. A failing row does not stop the rows after it.
    """
    report = ImportReport()
    for row in decode(text):
        if not row.name or not row.email:
            report.skipped.append(row)
            continue
        try:
            created = await engine.create({"name": row.name, "email": row.email})
        except Exception as exc:
            log.warning("Import row failed (name=%r): %s", row.name, exc)
            report.failed.append((row, exc))
            continue
        report.created.append(created)

    log.info(
        "CSV import: created=%d skipped=%d failed=%d",
        len(report.created),
        len(report.skipped),
        len(report.failed),
    )
    if refresh and report.created:
        await engine.refresh()
    return report
