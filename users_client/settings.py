from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import yaml


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


USERS_API_BASE = os.getenv("USERS_API_BASE", "http://localhost:5000").rstrip("/")
USERS_API_TIMEOUT_S = _env_float("USERS_API_TIMEOUT_S", 10.0)

LOAD_RETRY_MAX = _env_int("LOAD_RETRY_MAX", 3)
LOAD_RETRY_BACKOFF_S = _env_float("LOAD_RETRY_BACKOFF_S", 0.5)
LOAD_RETRY_BACKOFF_MAX_S = _env_float("LOAD_RETRY_BACKOFF_MAX_S", 5.0)

USERS_SNAPSHOT_PATH = os.getenv("USERS_SNAPSHOT_PATH", "data/users_cache.json")
UNDO_WINDOW_S = _env_float("UNDO_WINDOW_S", 4.0)
UNDO_TICK_INTERVAL_S = _env_float("UNDO_TICK_INTERVAL_S", 0.5)
NOTICE_TTL_S = _env_float("NOTICE_TTL_S", 4.0)

# Push channel is best-effort; an unreachable endpoint only costs liveness.
LIVE_UPDATES = _env_bool("LIVE_UPDATES", True)
USERS_WS_URL = os.getenv("USERS_WS_URL", "")
# Used to derive the push URL when USERS_WS_URL is unset; matches users-push's PUSH_PORT.
USERS_PUSH_PORT = _env_int("USERS_PUSH_PORT", 5001)
WS_RECONNECT_BACKOFF_S = _env_float("WS_RECONNECT_BACKOFF_S", 1.0)
WS_RECONNECT_BACKOFF_MAX_S = _env_float("WS_RECONNECT_BACKOFF_MAX_S", 30.0)
WS_RECV_POLL_TIMEOUT_S = _env_float("WS_RECV_POLL_TIMEOUT_S", 5.0)

DEFAULT_PAGE_SIZE = _env_int("DEFAULT_PAGE_SIZE", 8)
PAGE_SIZE_CHOICES = (5, 8, 10, 20, 50)


def ws_url_for(api_base: str, push_port: int | None = None) -> str:
    """Push relay endpoint on the API host: http(s)://host:5000 -> ws(s)://host:5001/ws."""
    parts = urlsplit(api_base.rstrip("/"))
    scheme = "wss" if parts.scheme == "https" else "ws"
    host = parts.hostname or "localhost"
    if ":" in host:
        host = f"[{host}]"
    port = USERS_PUSH_PORT if push_port is None else int(push_port)
    return f"{scheme}://{host}:{port}/ws"


@dataclass
class ClientSettings:
    api_base: str = USERS_API_BASE
    api_timeout_s: float = USERS_API_TIMEOUT_S
    load_retry_max: int = LOAD_RETRY_MAX
    load_retry_backoff_s: float = LOAD_RETRY_BACKOFF_S
    load_retry_backoff_max_s: float = LOAD_RETRY_BACKOFF_MAX_S
    snapshot_path: str = USERS_SNAPSHOT_PATH
    undo_window_s: float = UNDO_WINDOW_S
    undo_tick_interval_s: float = UNDO_TICK_INTERVAL_S
    notice_ttl_s: float = NOTICE_TTL_S
    live_updates: bool = LIVE_UPDATES
    ws_url: str = USERS_WS_URL
    push_port: int = USERS_PUSH_PORT
    ws_reconnect_backoff_s: float = WS_RECONNECT_BACKOFF_S
    ws_reconnect_backoff_max_s: float = WS_RECONNECT_BACKOFF_MAX_S
    ws_recv_poll_timeout_s: float = WS_RECV_POLL_TIMEOUT_S
    page_size: int = DEFAULT_PAGE_SIZE
    log_level: str = "INFO"

    def resolved_ws_url(self) -> Optional[str]:
        if not self.live_updates:
            return None
        return self.ws_url or ws_url_for(self.api_base, self.push_port)


def load_config(path: str | Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_settings(path: str | Path | None = None) -> ClientSettings:
    """Environment defaults, overridden by an optional YAML file."""
    settings = ClientSettings()
    if not path:
        return settings
    raw = load_config(path)
    if not isinstance(raw, dict):
        raise ValueError(f"config {path} must be a mapping")
    known = {f.name: f for f in fields(ClientSettings)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ValueError(f"unknown config key(s) in {path}: {', '.join(unknown)}")
    for key, value in raw.items():
        setattr(settings, key, _coerce(known[key].type, value))
    return settings


def _coerce(type_name: Any, value: Any) -> Any:
    # Annotations are strings under `from __future__ import annotations`.
    name = str(type_name)
    if value is None:
        return value
    if name == "int":
        return int(value)
    if name == "float":
        return float(value)
    if name == "bool":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "y")
        return bool(value)
    return str(value)
