from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional, Tuple
from urllib.parse import urlparse

from users_api.store import UserStore

log = logging.getLogger("users_api.rest")

_USERS_PATH = "/api/users"
_USER_ID_RE = re.compile(r"^/api/users/([^/]+)/?$")


class UsersHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: Tuple[str, int], store: UserStore) -> None:
        super().__init__(address, _Handler)
        self.store = store


class _Handler(BaseHTTPRequestHandler):
    server: UsersHTTPServer

    def _route(self) -> Tuple[bool, Optional[int]]:
        """Return (matched, user_id); user_id is None for the collection path."""
        path = urlparse(self.path).path
        if path.rstrip("/") == _USERS_PATH:
            return True, None
        m = _USER_ID_RE.match(path)
        if not m:
            return False, None
        try:
            return True, int(m.group(1))
        except ValueError:
            return True, -1

    def _read_body(self) -> Optional[dict]:
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length > 0 else b""
        try:
            body = json.loads(raw or b"{}")
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    def _fields(self) -> Optional[Tuple[str, str]]:
        body = self._read_body()
        if body is None:
            self._send_json(400, {"error": "invalid_json"})
            return None
        name, email = body.get("name"), body.get("email")
        if not isinstance(name, str) or not isinstance(email, str):
            self._send_json(400, {"error": "name and email are required"})
            return None
        return name, email

    def _not_found(self) -> None:
        self._send_json(404, {"message": "User not found"})

    def _dispatch(self, method: str) -> None:
        matched, user_id = self._route()
        if not matched:
            self._send_json(404, {"error": "not_found"})
            return
        store = self.server.store
        try:
            if user_id is None:
                if method == "GET":
                    self._send_json(200, store.list())
                elif method == "POST":
                    fields = self._fields()
                    if fields is not None:
                        self._send_json(201, store.create(*fields))
                else:
                    self._send_json(405, {"error": "method_not_allowed"})
                return

            if method == "GET":
                user = store.get(user_id)
                if user is None:
                    self._not_found()
                else:
                    self._send_json(200, user)
            elif method == "PUT":
                fields = self._fields()
                if fields is None:
                    return
                user = store.update(user_id, *fields)
                if user is None:
                    self._not_found()
                else:
                    self._send_json(200, user)
            elif method == "DELETE":
                if store.delete(user_id):
                    self._send_json(200, {"message": "User deleted"})
                else:
                    self._not_found()
            else:
                self._send_json(405, {"error": "method_not_allowed"})
        except sqlite3.Error as exc:
            log.exception("Store error on %s %s", method, self.path)
            self._send_json(500, {"error": str(exc)})

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_PUT(self) -> None:
        self._dispatch("PUT")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self._cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args) -> None:  # noqa: A003
        log.debug("%s - %s", self.address_string(), format % args)

    def _cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PUT, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")

    def _send_json(self, status: int, payload: Any) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self._cors_headers()
        self.end_headers()
        self.wfile.write(body)


def make_server(host: str, port: int, store: UserStore) -> UsersHTTPServer:
    return UsersHTTPServer((host, port), store)


def main() -> None:
    host = os.getenv("REST_HOST", "0.0.0.0")
    port = int(os.getenv("REST_PORT", "5000"))
    db_path = os.getenv("USERS_DB_PATH", "data/users.db")
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    server = make_server(host, port, UserStore(db_path))
    log.info("Users API listening on http://%s:%s (db=%s)", host, port, db_path)
    try:
        server.serve_forever()
    finally:
        server.store.close()


if __name__ == "__main__":
    main()
