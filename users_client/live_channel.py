from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import random
from typing import Callable, List, Optional

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed  # type: ignore

from users_core.errors import DecodeError
from users_core.records import Record, records_from_list

UPDATE_MESSAGE_TYPE = "users:update"


class LiveUpdateChannel:
    """Best-effort websocket feed of whole-set updates.

    Well-formed `{"type": "users:update", "payload": [...]}` messages are
    handed to `on_update`. Malformed messages are dropped and transport
    failures only lead to a reconnect; nothing is raised to the caller.
    """

    def __init__(
        self,
        ws_url: Optional[str],
        on_update: Callable[[List[Record]], None],
        on_status: Optional[Callable[[str, dict], None]] = None,
        reconnect_backoff_s: float = 1.0,
        reconnect_backoff_max_s: float = 30.0,
        recv_poll_timeout_s: float = 5.0,
        max_attempts: Optional[int] = None,
    ):
        self.ws_url = ws_url
        self.on_update = on_update
        self.on_status_cb = on_status
        self.reconnect_backoff_s = max(0.0, float(reconnect_backoff_s))
        self.reconnect_backoff_max_s = max(self.reconnect_backoff_s, float(reconnect_backoff_max_s))
        self.recv_poll_timeout_s = max(0.01, float(recv_poll_timeout_s))
        self.max_attempts = max_attempts

        self.updates_applied = 0
        self.messages_dropped = 0
        self._ws = None
        self._stop = False
        self._task: Optional[asyncio.Task] = None
        self._log = logging.getLogger("users_client.live")

    def _emit_status(self, typ: str, details: dict) -> None:
        try:
            if self.on_status_cb:
                self.on_status_cb(typ, details)
        except Exception:
            self._log.exception("Status callback error (type=%s)", typ)

    def handle_message(self, msg) -> bool:
        """Apply one raw message. Returns True when it carried an update."""
        try:
            payload = json.loads(msg)
        except (TypeError, ValueError):
            self.messages_dropped += 1
            self._log.debug("Dropping non-JSON push message")
            return False
        if not isinstance(payload, dict) or payload.get("type") != UPDATE_MESSAGE_TYPE:
            self.messages_dropped += 1
            return False
        try:
            records = records_from_list(payload.get("payload"))
        except DecodeError as exc:
            self.messages_dropped += 1
            self._log.debug("Dropping malformed %s message: %s", UPDATE_MESSAGE_TYPE, exc)
            return False

        try:
            self.on_update(records)
        except Exception:
            self._log.exception("Update callback error")
            return False
        self.updates_applied += 1
        return True

    async def _read_loop(self) -> None:
        assert self._ws is not None
        while not self._stop:
            try:
                msg = await asyncio.wait_for(self._ws.recv(), timeout=self.recv_poll_timeout_s)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as exc:
                self._emit_status("ws_close", {"code": getattr(exc, "code", None), "msg": str(exc)})
                return
            except Exception as exc:
                self._emit_status("ws_error", {"error": str(exc)})
                return

            if msg is None:
                return
            self.handle_message(msg)

    async def _run_async(self) -> None:
        if not self.ws_url:
            self._emit_status("ws_disabled", {})
            return
        self._stop = False
        attempt = 0

        while not self._stop:
            attempt += 1
            try:
                async with ws_connect(self.ws_url, close_timeout=5) as ws:
                    self._ws = ws
                    self._emit_status("ws_connect", {"attempt": attempt})
                    attempt = 0
                    await self._read_loop()
            except Exception as exc:
                # Server without a push endpoint is the common case; keep it quiet.
                self._emit_status("ws_run_exception", {"error": str(exc)})
                self._log.debug("Push channel connect failed: %s", exc)
            finally:
                self._ws = None

            if self._stop:
                break
            if self.max_attempts is not None and attempt >= self.max_attempts:
                self._emit_status("ws_give_up", {"attempts": attempt})
                break

            base = self.reconnect_backoff_s
            cap = self.reconnect_backoff_max_s
            if base <= 0.0 or cap <= 0.0:
                backoff = 0.0
            else:
                backoff = min(cap, base * (2 ** max(0, attempt - 1)))
                backoff = backoff * (0.7 + 0.6 * random.random())
            self._emit_status("ws_reconnect_wait", {"sleep_s": float(backoff), "attempt": attempt})
            await asyncio.sleep(backoff)

    def start(self) -> asyncio.Task:
        """Run the channel as a task on the current event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run_async())
        return self._task

    def run(self) -> None:
        """Blocking run with auto-reconnect, for standalone use."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            raise RuntimeError("LiveUpdateChannel.run() cannot be called from an active event loop.")
        asyncio.run(self._run_async())

    async def close(self) -> None:
        self._stop = True
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._task = None
