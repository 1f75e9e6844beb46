from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .records import Record

log = logging.getLogger("users_core.undo")

DEFAULT_UNDO_WINDOW_S = 4.0


@dataclass
class UndoToken:
    record: Record
    expires_at: float
    consumed: bool = False
    expired: bool = False
    # Set once the server has confirmed the delete; redo then has to re-create remotely.
    remote_deleted: bool = False

    @property
    def record_id(self) -> int:
        return self.record.id

    @property
    def live(self) -> bool:
        return not (self.consumed or self.expired)


class UndoManager:
    """Time-boxed undo for deletes.

    Time comes from an injectable clock so expiry is deterministic in tests.
    A token is usable once: `redo` consumes it, `tick` expires it, and either
    outcome happens at most once.
    """

    def __init__(
        self,
        window_s: float = DEFAULT_UNDO_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
        restore: Optional[Callable[[Record], None]] = None,
        on_expire: Optional[Callable[[UndoToken], None]] = None,
    ) -> None:
        self.window_s = max(0.0, float(window_s))
        self.clock = clock
        self._restore = restore
        self.on_expire = on_expire
        self._live: Dict[int, UndoToken] = {}

    def attach(self, restore: Callable[[Record], None]) -> None:
        self._restore = restore

    def capture_for_undo(self, record: Record) -> UndoToken:
        previous = self._live.pop(record.id, None)
        if previous is not None:
            previous.expired = True
        token = UndoToken(record=record, expires_at=self.clock() + self.window_s)
        self._live[record.id] = token
        return token

    def live_token(self, record_id: int) -> Optional[UndoToken]:
        token = self._live.get(record_id)
        if token is None or not token.live:
            return None
        return token

    def redo(self, token: UndoToken) -> bool:
        self.tick()
        if not token.live or self._live.get(token.record_id) is not token:
            return False
        if self._restore is None:
            raise RuntimeError("UndoManager has no restore target; call attach() first.")
        self._restore(token.record)
        token.consumed = True
        self._live.pop(token.record_id, None)
        return True

    def invalidate(self, token: UndoToken) -> None:
        if self._live.get(token.record_id) is token:
            self._live.pop(token.record_id, None)
        if not token.consumed:
            token.expired = True

    def tick(self) -> List[UndoToken]:
        now = self.clock()
        expired = [t for t in self._live.values() if now >= t.expires_at]
        for token in expired:
            self._live.pop(token.record_id, None)
            token.expired = True
            if self.on_expire is not None:
                try:
                    self.on_expire(token)
                except Exception:
                    log.exception("Undo expiry callback error (id=%s)", token.record_id)
        return expired

    def __len__(self) -> int:
        return len(self._live)

    async def run_expiry(self, interval_s: float = 0.5) -> None:
        """Call `tick` periodically until the surrounding task is cancelled."""
        interval_s = max(0.01, float(interval_s))
        while True:
            await asyncio.sleep(interval_s)
            self.tick()
