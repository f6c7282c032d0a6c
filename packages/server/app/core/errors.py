"""
Domain errors raised by the engine services.

Every error carries a stable ``kind`` (see ``ErrorKind``), a human-readable
reason and optional structured details. The API layer renders them as::

    {"error": {"code": kind, "message": reason, "status": http_status, "details": {...}}}
"""

from __future__ import annotations

import uuid
from typing import Any

from taskgate_shared.schemas.common import ErrorKind


class EngineError(Exception):
    """Base class for all engine failures."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, reason: str, **details: Any):
        super().__init__(reason)
        self.reason = reason
        self.details = {k: _jsonable(v) for k, v in details.items()}

    def to_dict(self) -> dict:
        body = {
            "code": self.kind.value,
            "message": self.reason,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if hasattr(value, "value"):  # enums
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


class NotFound(EngineError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class RecordDeleted(EngineError):
    """The target is a tombstone."""
    kind = ErrorKind.RECORD_DELETED
    status_code = 410


class InvalidTransition(EngineError):
    kind = ErrorKind.INVALID_TRANSITION
    status_code = 409


class Forbidden(EngineError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class PendingRequestExists(EngineError):
    kind = ErrorKind.PENDING_REQUEST_EXISTS
    status_code = 409


class NotPending(EngineError):
    kind = ErrorKind.NOT_PENDING
    status_code = 409


class HasPendingEditRequests(EngineError):
    kind = ErrorKind.HAS_PENDING_EDIT_REQUESTS
    status_code = 409


class ValidationFailed(EngineError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 422


class NotDeleted(EngineError):
    """Restore was asked for a record that is not a tombstone."""
    kind = ErrorKind.NOT_DELETED
    status_code = 409


class ImmutableFieldError(Forbidden):
    """A protected task field was changed outside an edit gate."""
