from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Mapping, Optional

from users_core import view as view_mod
from users_core.errors import BulkDeleteError, UsersAdminError, ValidationError
from users_core.importer import ImportReport, import_csv
from users_core.records import Record
from users_core.sync_engine import SyncEngine
from users_core.undo import UndoManager, UndoToken
from users_core.view import Projection, ViewState

from .live_channel import LiveUpdateChannel
from .rest_client import RecordStoreClient
from .settings import ClientSettings
from .snapshot import LocalSnapshot

log = logging.getLogger("users_client.dashboard")


@dataclass
class Notice:
    kind: str  # "success" | "error" | "info"
    message: str
    undo_token: Optional[UndoToken] = None
    expires_at: float = float("inf")


@dataclass(frozen=True)
class DashboardStats:
    total: int
    selected: int
    pending_creates: int
    degraded: bool
    error: Optional[str]


class Dashboard:
    """Everything a presentation layer needs, minus the presentation.

    Wires the REST client, local snapshot, undo manager, sync engine and live
    channel together, keeps the caller's view state, and turns outcomes into
    `Notice` items (the dashboard's toasts).
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        client=None,
        snapshot=None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.clock = clock
        s = self.settings
        self.client = client or RecordStoreClient(base_url=s.api_base, timeout_s=s.api_timeout_s)
        self.snapshot = snapshot if snapshot is not None else LocalSnapshot(s.snapshot_path)
        self.undo_manager = UndoManager(window_s=s.undo_window_s, clock=clock)
        self.engine = SyncEngine(
            self.client,
            snapshot=self.snapshot,
            undo=self.undo_manager,
            on_status=self._on_status,
            clock=clock,
            load_retry_max=s.load_retry_max,
            load_retry_backoff_s=s.load_retry_backoff_s,
            load_retry_backoff_max_s=s.load_retry_backoff_max_s,
        )
        self.live = LiveUpdateChannel(
            s.resolved_ws_url(),
            on_update=self._on_external_update,
            reconnect_backoff_s=s.ws_reconnect_backoff_s,
            reconnect_backoff_max_s=s.ws_reconnect_backoff_max_s,
            recv_poll_timeout_s=s.ws_recv_poll_timeout_s,
        )
        self.state = ViewState(page_size=max(1, int(s.page_size)))
        self.notices: List[Notice] = []
        self._undo_task: Optional[asyncio.Task] = None

    # -- notices ---------------------------------------------------------------

    def _push(self, kind: str, message: str, undo_token: Optional[UndoToken] = None) -> Notice:
        self.prune_notices()
        notice = Notice(
            kind=kind,
            message=message,
            undo_token=undo_token,
            expires_at=self.clock() + self.settings.notice_ttl_s,
        )
        self.notices.append(notice)
        return notice

    def prune_notices(self) -> List[Notice]:
        """Drop notices past their display lifetime; returns the ones still showing."""
        now = self.clock()
        self.notices = [n for n in self.notices if n.expires_at > now]
        return list(self.notices)

    def drain_notices(self) -> List[Notice]:
        out = self.prune_notices()
        self.notices = []
        return out

    def _on_status(self, typ: str, details: dict) -> None:
        if typ == "offline":
            self._push("info", "Loaded offline cache")
        elif typ == "load_error":
            self._push("error", f"Failed to load: {details.get('error')}")
        elif typ == "load_failed":
            self._push("error", "Refresh failed; showing last known data")
        elif typ == "delete_submitted":
            self._push("info", "User deleted", undo_token=details.get("token"))
        elif typ == "undo_failed":
            self._push("error", f"Undo failed: {details.get('error')}")

    def _on_external_update(self, records: List[Record]) -> None:
        self.engine.apply_external_update(records)
        self.state = view_mod.prune_selection(self.state, self.engine.records)

    # -- lifecycle -------------------------------------------------------------

    async def load(self) -> None:
        await self.engine.initialize()
        self.state = view_mod.prune_selection(self.state, self.engine.records)

    async def refresh(self) -> None:
        await self.load()

    def start_live(self) -> None:
        self.live.start()
        if self._undo_task is None or self._undo_task.done():
            self._undo_task = asyncio.get_running_loop().create_task(
                self.undo_manager.run_expiry(self.settings.undo_tick_interval_s)
            )

    async def close(self) -> None:
        await self.live.close()
        task = self._undo_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._undo_task = None
        close = getattr(self.client, "close", None)
        if callable(close):
            close()

    # -- view ------------------------------------------------------------------

    def view(self) -> Projection:
        return view_mod.project(self.engine.records, self.state)

    def set_query(self, query: str) -> None:
        self.state = view_mod.with_query(self.state, query)

    def sort_by(self, key: str) -> None:
        self.state = view_mod.toggle_sort(self.state, key)

    def set_page(self, page: int) -> None:
        self.state = replace(self.state, page=max(1, int(page)))

    def set_page_size(self, page_size: int) -> None:
        self.state = view_mod.with_page_size(self.state, page_size)

    def toggle_select(self, record_id: int) -> None:
        self.state = view_mod.toggle_selected(self.state, record_id)

    def toggle_select_page(self) -> None:
        self.state = view_mod.toggle_page_selected(self.view(), self.state)

    @property
    def query_string(self) -> str:
        return view_mod.to_query_string(self.state)

    def restore_query_string(self, qs: str) -> None:
        self.state = view_mod.from_query_string(qs)

    def stats(self) -> DashboardStats:
        err = self.engine.error
        return DashboardStats(
            total=len(self.engine.records),
            selected=len(self.state.selected_ids),
            pending_creates=self.engine.pending_creates,
            degraded=self.engine.degraded,
            error=str(err) if err is not None else None,
        )

    # -- mutations -------------------------------------------------------------

    async def create(self, fields: Mapping[str, Any]) -> Optional[Record]:
        """Create a record. ValidationError propagates so the form can show it."""
        try:
            created = await self.engine.create(fields)
        except ValidationError:
            raise
        except UsersAdminError as exc:
            self._push("error", f"Create failed: {exc}")
            return None
        self._push("success", "User created")
        return created

    async def update(self, record_id: int, fields: Mapping[str, Any]) -> Optional[Record]:
        try:
            updated = await self.engine.update(record_id, fields)
        except ValidationError:
            raise
        except UsersAdminError as exc:
            self._push("error", f"Update failed: {exc}")
            return None
        self._push("success", "Changes saved")
        return updated

    async def delete(self, record_id: int) -> Optional[UndoToken]:
        try:
            token = await self.engine.delete(record_id)
        except UsersAdminError as exc:
            self._push("error", f"Delete failed: {exc}")
            return None
        self.state = view_mod.prune_selection(self.state, self.engine.records)
        return token

    async def undo(self, token: Optional[UndoToken] = None) -> bool:
        if token is None:
            token = next((n.undo_token for n in reversed(self.prune_notices()) if n.undo_token is not None), None)
        if token is None:
            return False
        try:
            ok = await self.engine.undo_delete(token)
        except UsersAdminError:
            # undo_failed notice already raised by the engine status callback
            return False
        if ok:
            self._push("success", "User restored")
        else:
            self._push("info", "Undo window has passed")
        return ok

    async def delete_selected(self) -> int:
        ids = sorted(self.state.selected_ids)
        if not ids:
            return 0
        self.state = replace(self.state, selected_ids=frozenset())
        try:
            count = await self.engine.bulk_delete(ids)
        except BulkDeleteError as exc:
            log.warning("Bulk delete failed: %s", exc)
            self._push("error", "Bulk delete failed")
            return 0
        self._push("success", f"Deleted {count} user(s)")
        return count

    async def import_csv(self, text: str) -> ImportReport:
        report = await import_csv(self.engine, text)
        self._push("success", f"Imported {len(report.created)} users")
        if report.failed:
            self._push("error", f"{len(report.failed)} row(s) failed to import")
        return report

    def export_csv(self, all_records: bool = False) -> str:
        """Export the filtered, sorted view across all pages (or every record by id)."""
        if all_records:
            return self.engine.export_csv()
        return self.engine.export_csv(view_mod.filter_and_sort(self.engine.records, self.state))
