"""Core record-set synchronization and view logic shared by the dashboard and CLI."""

from .errors import (
    BulkDeleteError,
    DecodeError,
    HttpError,
    NetworkError,
    StorageError,
    UnknownRecordError,
    UsersAdminError,
    ValidationError,
)
from .records import Record, validate_fields
from .sync_engine import MutationKind, PendingMutation, SyncEngine, SyncPhase
from .undo import UndoManager, UndoToken
from .view import Projection, ViewState, project

__all__ = [
    "BulkDeleteError",
    "DecodeError",
    "HttpError",
    "MutationKind",
    "NetworkError",
    "PendingMutation",
    "Projection",
    "Record",
    "StorageError",
    "SyncEngine",
    "SyncPhase",
    "UndoManager",
    "UndoToken",
    "UnknownRecordError",
    "UsersAdminError",
    "ValidationError",
    "ViewState",
    "project",
    "validate_fields",
]
