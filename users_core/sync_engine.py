from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sortedcontainers import SortedDict

from . import csv_codec
from .errors import BulkDeleteError, HttpError, UnknownRecordError, is_retryable
from .protocols import RecordStore, SnapshotStore
from .records import Record, validate_fields
from .undo import UndoManager, UndoToken

log = logging.getLogger("users_core.sync")

DEFAULT_LOAD_RETRY_MAX = 3
DEFAULT_LOAD_RETRY_BACKOFF_S = 0.5
DEFAULT_LOAD_RETRY_BACKOFF_MAX_S = 5.0


class SyncPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class MutationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BULK_DELETE = "bulk_delete"


@dataclass
class PendingMutation:
    key: int
    kind: MutationKind
    ids: Tuple[int, ...]
    snapshot_before: Dict[int, Record]
    submitted_at: float
    # What this mutation wrote optimistically; rollback only undoes its own write.
    applied: Dict[int, Record] = field(default_factory=dict)


def _already_gone(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.is_not_found


class SyncEngine:
    """Owns the authoritative record set and every transition applied to it.

    The engine does no I/O itself: the remote store, the local snapshot and the
    undo manager are injected, so several independent engines can coexist (one
    per dashboard, one per test).

    Lifecycle:
      - `initialize()` loads from the store, falling back to the local snapshot
      - mutations (`create`, `update`, `delete`, `bulk_delete`) go through the
        store; update/delete are optimistic and roll back from their own
        `PendingMutation` snapshot on failure
      - `apply_external_update()` replaces the set wholesale (last-writer-wins,
        may clobber an in-flight optimistic edit)
      - `dispose()` drops all state and returns to UNINITIALIZED
    """

    def __init__(
        self,
        client: RecordStore,
        snapshot: Optional[SnapshotStore] = None,
        undo: Optional[UndoManager] = None,
        on_status: Optional[Callable[[str, dict], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        load_retry_max: int = DEFAULT_LOAD_RETRY_MAX,
        load_retry_backoff_s: float = DEFAULT_LOAD_RETRY_BACKOFF_S,
        load_retry_backoff_max_s: float = DEFAULT_LOAD_RETRY_BACKOFF_MAX_S,
    ) -> None:
        self.client = client
        self.snapshot = snapshot
        self.undo = undo or UndoManager(clock=clock)
        self.undo.attach(self.restore)
        self.on_status_cb = on_status
        self.clock = clock
        self.load_retry_max = max(1, int(load_retry_max))
        self.load_retry_backoff_s = max(0.0, float(load_retry_backoff_s))
        self.load_retry_backoff_max_s = max(self.load_retry_backoff_s, float(load_retry_backoff_max_s))

        self.records: SortedDict = SortedDict()
        self.phase = SyncPhase.UNINITIALIZED
        self.error: Optional[BaseException] = None
        self.degraded = False
        self._adopted = False
        self._pending: Dict[int, PendingMutation] = {}
        self._seq = itertools.count(1)

    # -- state -----------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self.phase is SyncPhase.READY

    @property
    def pending(self) -> Tuple[PendingMutation, ...]:
        return tuple(self._pending.values())

    @property
    def pending_creates(self) -> int:
        return sum(1 for m in self._pending.values() if m.kind is MutationKind.CREATE)

    def get(self, record_id: int) -> Optional[Record]:
        return self.records.get(record_id)

    def all_records(self) -> List[Record]:
        return list(self.records.values())

    def dispose(self) -> None:
        self.records.clear()
        self._pending.clear()
        self.phase = SyncPhase.UNINITIALIZED
        self.error = None
        self.degraded = False
        self._adopted = False

    def _emit_status(self, typ: str, details: dict) -> None:
        try:
            if self.on_status_cb:
                self.on_status_cb(typ, details)
        except Exception:
            log.exception("Status callback error (type=%s)", typ)

    def _replace(self, records: Iterable[Record]) -> None:
        self.records = SortedDict((r.id, r) for r in records)
        self._adopted = True

    def _track(
        self,
        kind: MutationKind,
        ids: Tuple[int, ...],
        snapshot_before: Dict[int, Record],
    ) -> PendingMutation:
        mutation = PendingMutation(
            key=next(self._seq),
            kind=kind,
            ids=ids,
            snapshot_before=snapshot_before,
            submitted_at=self.clock(),
        )
        self._pending[mutation.key] = mutation
        return mutation

    def _rollback(self, mutation: PendingMutation, exc: BaseException) -> None:
        for rid, before in mutation.snapshot_before.items():
            current = self.records.get(rid)
            if mutation.kind is MutationKind.UPDATE:
                # A later write to the same id wins over this rollback.
                if current is None or current != mutation.applied.get(rid):
                    continue
            elif current is not None:
                continue
            self.records[rid] = before
        log.warning("Rolled back %s ids=%s: %s", mutation.kind.value, list(mutation.ids), exc)
        self._emit_status(
            "rolled_back",
            {"kind": mutation.kind.value, "ids": list(mutation.ids), "error": exc},
        )

    # -- loading ---------------------------------------------------------------

    async def _list_with_retry(self) -> List[Record]:
        delay = self.load_retry_backoff_s
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.client.list()
            except Exception as exc:
                if attempt >= self.load_retry_max or not is_retryable(exc):
                    raise
                self._emit_status("load_retry", {"attempt": attempt, "sleep_s": delay, "error": exc})
            if delay > 0:
                await asyncio.sleep(delay)
                delay = min(self.load_retry_backoff_max_s, delay * 2)

    async def initialize(self) -> None:
        """Load the set from the store; degrade to the local snapshot on failure."""
        self.phase = SyncPhase.LOADING
        self._emit_status("load_start", {})
        try:
            records = await self._list_with_retry()
        except Exception as exc:
            self._on_load_failure(exc)
            return

        self._replace(records)
        if self.snapshot is not None:
            self.snapshot.save(self.all_records())
        self.phase = SyncPhase.READY
        self.error = None
        self.degraded = False
        log.info("Loaded %d record(s)", len(self.records))
        self._emit_status("loaded", {"count": len(self.records)})

    async def refresh(self) -> None:
        await self.initialize()

    def _on_load_failure(self, exc: BaseException) -> None:
        log.warning("Loading records failed: %s", exc)
        if self._adopted:
            self.error = None
            self.degraded = True
            self._emit_status("load_failed", {"error": exc, "count": len(self.records)})
        else:
            cached = self.snapshot.load() if self.snapshot is not None else None
            if cached is not None:
                self._replace(cached)
                self.error = None
                self.degraded = True
                log.info("Using offline snapshot with %d record(s)", len(self.records))
                self._emit_status("offline", {"error": exc, "count": len(self.records)})
            else:
                self.error = exc
                self.degraded = False
                self._emit_status("load_error", {"error": exc})
        self.phase = SyncPhase.READY

    # -- mutations -------------------------------------------------------------

    async def create(self, fields: Mapping[str, Any]) -> Record:
        payload = validate_fields(fields)
        mutation = self._track(MutationKind.CREATE, (), {})
        try:
            created = await self.client.create(payload)
        finally:
            self._pending.pop(mutation.key, None)
        self.records[created.id] = created
        self._emit_status("created", {"record": created})
        return created

    async def update(self, record_id: int, fields: Mapping[str, Any]) -> Record:
        current = self.records.get(record_id)
        if current is None:
            raise UnknownRecordError(record_id)
        merged: Dict[str, Any] = {"name": current.name, "email": current.email}
        merged.update(fields)
        payload = validate_fields(merged)

        optimistic = current.with_fields(payload)
        mutation = self._track(MutationKind.UPDATE, (record_id,), {record_id: current})
        mutation.applied[record_id] = optimistic
        self.records[record_id] = optimistic
        try:
            confirmed = await self.client.update(record_id, payload)
        except Exception as exc:
            self._rollback(mutation, exc)
            raise
        finally:
            self._pending.pop(mutation.key, None)

        if confirmed is None:
            confirmed = optimistic
        elif record_id in self.records:
            self.records[record_id] = confirmed
        self._emit_status("updated", {"record": confirmed})
        return confirmed

    async def delete(self, record_id: int) -> UndoToken:
        """Optimistically remove a record; the returned token can undo it.

        The token is also announced through the status callback before the
        remote delete is issued, so an undo affordance can show immediately.
        """
        record = self.records.get(record_id)
        if record is None:
            raise UnknownRecordError(record_id)
        mutation = self._track(MutationKind.DELETE, (record_id,), {record_id: record})
        del self.records[record_id]
        token = self.undo.capture_for_undo(record)
        self._emit_status("delete_submitted", {"record": record, "token": token})
        try:
            await self.client.delete(record_id)
        except Exception as exc:
            if not _already_gone(exc):
                self.undo.invalidate(token)
                self._rollback(mutation, exc)
                raise
            log.info("Record id=%s was already gone on the server", record_id)
        finally:
            self._pending.pop(mutation.key, None)

        token.remote_deleted = True
        if token.consumed:
            # Undone while the delete was in flight: the server copy is gone now.
            await self._repersist(token)
        return token

    async def bulk_delete(self, ids: Iterable[int]) -> int:
        """Delete many records concurrently, all-or-nothing.

        Returns the number of ids requested. If any single delete fails (404
        aside) every captured record is restored and BulkDeleteError is raised.
        """
        requested = list(dict.fromkeys(int(i) for i in ids))
        if not requested:
            return 0
        captured = {rid: self.records[rid] for rid in requested if rid in self.records}
        mutation = self._track(MutationKind.BULK_DELETE, tuple(requested), captured)
        for rid in captured:
            del self.records[rid]
        self._emit_status("bulk_delete_submitted", {"ids": requested})
        try:
            results = await asyncio.gather(
                *(self.client.delete(rid) for rid in requested),
                return_exceptions=True,
            )
        finally:
            self._pending.pop(mutation.key, None)

        failures = {
            rid: res
            for rid, res in zip(requested, results)
            if isinstance(res, BaseException) and not _already_gone(res)
        }
        if failures:
            err = BulkDeleteError(len(requested), failures)
            self._rollback(mutation, err)
            raise err
        self._emit_status("bulk_deleted", {"count": len(requested)})
        return len(requested)

    # -- undo ------------------------------------------------------------------

    def restore(self, record: Record) -> None:
        """Put a previously captured record back into the set."""
        self.records[record.id] = record
        self._emit_status("restored", {"record": record})

    async def undo_delete(self, token: UndoToken) -> bool:
        if not self.undo.redo(token):
            return False
        if token.remote_deleted:
            await self._repersist(token)
        return True

    async def _repersist(self, token: UndoToken) -> Record:
        record = token.record
        try:
            created = await self.client.create({"name": record.name, "email": record.email})
        except Exception as exc:
            if self.records.get(record.id) == record:
                del self.records[record.id]
            self._emit_status("undo_failed", {"record": record, "error": exc})
            raise
        if self.records.get(record.id) == record:
            del self.records[record.id]
        self.records[created.id] = created
        self._emit_status("recreated", {"previous_id": record.id, "record": created})
        return created

    # -- external --------------------------------------------------------------

    def apply_external_update(self, records: Iterable[Record]) -> None:
        """Replace the set with a pushed snapshot (last-writer-wins, no merge)."""
        self._replace(records)
        self.phase = SyncPhase.READY
        self.error = None
        self.degraded = False
        self._emit_status("external_update", {"count": len(self.records)})

    def export_csv(self, records: Optional[Iterable[Record]] = None) -> str:
        """CSV of `records`, or of the whole set in id order when omitted."""
        return csv_codec.encode(self.records.values() if records is None else records)
