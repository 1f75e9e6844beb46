from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from users_core.errors import DecodeError, StorageError
from users_core.records import Record, records_from_list, records_to_list

from .settings import USERS_SNAPSHOT_PATH

log = logging.getLogger("users_client.snapshot")


class LocalSnapshot:
    """Best-effort on-disk copy of the last successfully fetched record set.

    `save` never raises: persistence failures are logged as warnings.
    `load` never raises: anything unusable reads as absent (None).
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or USERS_SNAPSHOT_PATH)

    def _write(self, records: List[Record]) -> None:
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(records_to_list(records), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"writing snapshot {self.path} failed: {exc}") from exc

    def save(self, records: List[Record]) -> bool:
        try:
            self._write(list(records))
        except StorageError as exc:
            log.warning("Snapshot not saved: %s", exc)
            return False
        return True

    def load(self) -> Optional[List[Record]]:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return records_from_list(raw)
        except (OSError, ValueError, DecodeError) as exc:
            log.warning("Ignoring unreadable snapshot %s: %s", self.path, exc)
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
