from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

from .errors import DecodeError, ValidationError


EMAIL_RE = re.compile(
    r"^(?:[a-zA-Z0-9_'^&+%\-]+(?:\.[a-zA-Z0-9_'^&+%\-]+)*|\"(?:[^\"]|\\\")+\")"
    r"@(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}$"
)
NAME_MIN_LEN = 2
FIELDS = ("id", "name", "email")
EDITABLE_FIELDS = ("name", "email")


@dataclass(frozen=True)
class Record:
    id: int
    name: str
    email: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}

    def with_fields(self, fields: Mapping[str, Any]) -> "Record":
        return Record(
            id=self.id,
            name=str(fields.get("name", self.name)),
            email=str(fields.get("email", self.email)),
        )


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value or ""))


def validate_fields(fields: Mapping[str, Any]) -> Dict[str, str]:
    """Check name/email against the record grammar and return the clean payload."""
    unknown = [k for k in fields if k not in EDITABLE_FIELDS]
    if unknown:
        raise ValidationError(f"unsupported field(s): {', '.join(sorted(unknown))}", field=unknown[0])

    name = fields.get("name")
    email = fields.get("email")
    if not isinstance(name, str) or len(name.strip()) < NAME_MIN_LEN:
        raise ValidationError("Name too short", field="name")
    if not isinstance(email, str) or not is_valid_email(email.strip()):
        raise ValidationError("Invalid email", field="email")
    return {"name": name, "email": email}


def record_from_dict(raw: Any) -> Record:
    if not isinstance(raw, dict):
        raise DecodeError(f"record must be an object (got {type(raw).__name__})")
    if "id" not in raw:
        raise DecodeError("record missing id")
    rid = raw["id"]
    if isinstance(rid, bool):
        raise DecodeError("record id must be an integer")
    try:
        rid = int(rid)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"record id must be int-like (got {raw['id']!r})") from exc
    name = raw.get("name")
    email = raw.get("email")
    if not isinstance(name, str) or not isinstance(email, str):
        raise DecodeError(f"record id={rid} has non-string name/email")
    return Record(id=rid, name=name, email=email)


def records_from_list(raw: Any) -> List[Record]:
    if not isinstance(raw, list):
        raise DecodeError(f"record list must be an array (got {type(raw).__name__})")
    return [record_from_dict(item) for item in raw]


def records_to_list(records: Iterable[Record]) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in records]
