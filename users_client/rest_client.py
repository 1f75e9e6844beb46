from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Mapping, Optional

import requests

from users_core.errors import DecodeError, HttpError, NetworkError
from users_core.records import Record, record_from_dict, records_from_list

from .settings import USERS_API_BASE, USERS_API_TIMEOUT_S

log = logging.getLogger("users_client.rest")


class RecordStoreClient:
    """Typed client for the `/api/users` REST surface.

    Every call is a coroutine; the blocking `requests` round trip runs in a
    worker thread. Failures are classified, never retried here:
    NetworkError (transport), HttpError (non-2xx), DecodeError (bad body).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_s: float | None = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or USERS_API_BASE).rstrip("/")
        self.timeout_s = USERS_API_TIMEOUT_S if timeout_s is None else float(timeout_s)
        self.session = session or requests.Session()

    @property
    def users_url(self) -> str:
        return f"{self.base_url}/api/users"

    def _request(self, method: str, url: str, payload: Any = None) -> Any:
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise HttpError(resp.status_code, _error_message(resp))

        text = resp.text or ""
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            raise DecodeError(f"{method} {url} returned non-JSON body") from exc

    async def _call(self, method: str, url: str, payload: Any = None) -> Any:
        log.debug("%s %s", method, url)
        return await asyncio.to_thread(self._request, method, url, payload)

    async def list(self) -> List[Record]:
        body = await self._call("GET", self.users_url)
        return records_from_list(body)

    async def get(self, record_id: int) -> Record:
        body = await self._call("GET", f"{self.users_url}/{int(record_id)}")
        return record_from_dict(body)

    async def create(self, fields: Mapping[str, Any]) -> Record:
        body = await self._call("POST", self.users_url, dict(fields))
        return record_from_dict(body)

    async def update(self, record_id: int, fields: Mapping[str, Any]) -> Optional[Record]:
        body = await self._call("PUT", f"{self.users_url}/{int(record_id)}", dict(fields))
        if body is None:
            return None
        return record_from_dict(body)

    async def delete(self, record_id: int) -> None:
        await self._call("DELETE", f"{self.users_url}/{int(record_id)}")

    def close(self) -> None:
        self.session.close()


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or "")
    return ""
