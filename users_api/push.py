from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

import websockets

from users_api.protocols import users_update
from users_api.store import UserStore

POLL_INTERVAL_S = float(os.getenv("PUSH_POLL_INTERVAL_S", "1.0"))
log = logging.getLogger("users_api.push")


def _get_path(ws: Any) -> str:
    req = getattr(ws, "request", None)
    if req is not None and hasattr(req, "path"):
        return req.path
    return getattr(ws, "path", "")


async def _send_json(ws: Any, payload: Dict[str, Any]) -> None:
    await ws.send(json.dumps(payload, ensure_ascii=False))


async def _stream_loop(ws: Any, store: UserStore) -> None:
    """Send the full user list on connect and again whenever it changes."""
    last: Optional[List[Dict[str, Any]]] = None
    while True:
        users = await asyncio.to_thread(store.list)
        if users != last:
            await _send_json(ws, users_update(users))
            last = users
        await asyncio.sleep(POLL_INTERVAL_S)


def make_handler(store: UserStore):
    async def _handler(ws: Any) -> None:
        path = _get_path(ws).split("?", 1)[0]
        if path.rstrip("/") != "/ws":
            await ws.close(code=1008, reason="unknown path")
            return
        log.info("Push client connected")
        try:
            await _stream_loop(ws, store)
        except websockets.ConnectionClosed:
            log.info("Push client disconnected")

    return _handler


async def _run_server(host: str, port: int, store: UserStore) -> None:
    async with websockets.serve(make_handler(store), host, port):
        await asyncio.Future()


def main() -> None:
    host = os.getenv("PUSH_HOST", "0.0.0.0")
    port = int(os.getenv("PUSH_PORT", "5001"))
    db_path = os.getenv("USERS_DB_PATH", "data/users.db")
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    log.info("Push relay listening on ws://%s:%s/ws (db=%s)", host, port, db_path)
    asyncio.run(_run_server(host, port, UserStore(db_path)))


if __name__ == "__main__":
    main()
