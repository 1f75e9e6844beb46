from __future__ import annotations

from typing import Dict


class UsersAdminError(Exception):
    """Base class for every failure raised by the admin client stack."""


class ValidationError(UsersAdminError):
    """Input rejected locally, before anything reaches the server."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnknownRecordError(UsersAdminError, LookupError):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"unknown record id={record_id}")
        self.record_id = record_id


class NetworkError(UsersAdminError):
    """Transport-level failure. Safe for the caller to retry."""


class HttpError(UsersAdminError):
    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(f"HTTP {status}" + (f": {message}" if message else ""))
        self.status = int(status)
        self.message = message

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_server_fault(self) -> bool:
        return self.status >= 500


class DecodeError(UsersAdminError):
    """Response body could not be parsed into the expected shape."""


class StorageError(UsersAdminError):
    """Local snapshot persistence failed. Always non-fatal."""


class BulkDeleteError(UsersAdminError):
    def __init__(self, requested: int, failures: Dict[int, BaseException]) -> None:
        ids = ", ".join(str(i) for i in sorted(failures))
        super().__init__(f"bulk delete failed for {len(failures)}/{requested} id(s): {ids}")
        self.requested = requested
        self.failures = dict(failures)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, HttpError):
        return exc.is_server_fault
    return False
