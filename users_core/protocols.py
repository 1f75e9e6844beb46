from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol

from .records import Record


class RecordStore(Protocol):
    """Remote CRUD surface the sync engine talks to."""

    async def list(self) -> List[Record]: ...

    async def get(self, record_id: int) -> Record: ...

    async def create(self, fields: Mapping[str, Any]) -> Record: ...

    async def update(self, record_id: int, fields: Mapping[str, Any]) -> Optional[Record]: ...

    async def delete(self, record_id: int) -> None: ...


class SnapshotStore(Protocol):
    def save(self, records: List[Record]) -> bool: ...

    def load(self) -> Optional[List[Record]]: ...
