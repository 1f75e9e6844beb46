from __future__ import annotations

from typing import Any, Dict, List

USERS_UPDATE = "users:update"


def make_message(msg_type: str, payload: Any) -> Dict[str, Any]:
    return {"type": msg_type, "payload": payload}


def users_update(users: List[Dict[str, Any]]) -> Dict[str, Any]:
    return make_message(USERS_UPDATE, users)
