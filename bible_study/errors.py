"""Failure taxonomy for study ingestion, reconciliation and deletion.

Every error carries a ``kind`` and an HTTP status so the router can turn it
into a response without inspecting messages. ``public_message`` is the only
text ever shown to a caller; the underlying exception is logged server side.
"""
from __future__ import annotations

import asyncio
import enum
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

# Postgres "query_canceled", raised when statement_timeout fires
_PG_STATEMENT_TIMEOUT = "57014"


class CompensationOutcome(str, enum.Enum):
    not_needed = "not_needed"
    succeeded = "succeeded"
    failed = "failed"


class StudyError(Exception):
    kind = "persistence"
    status_code = 500
    default_message = "Failed to save study"

    def __init__(
        self,
        public_message: Optional[str] = None,
        *,
        details: Optional[dict[str, Any]] = None,
        compensation: CompensationOutcome = CompensationOutcome.not_needed,
    ):
        self.public_message = public_message or self.default_message
        self.details = dict(details or {})
        self.compensation = compensation
        super().__init__(self.public_message)

    def to_payload(self) -> dict[str, Any]:
        payload = {"error": self.public_message, "kind": self.kind}
        payload.update(self.details)
        return payload


class StudyValidationError(StudyError):
    kind = "validation"
    status_code = 400
    default_message = "Invalid study structure"

    def __init__(self, errors: list[str], warnings: Optional[list[str]] = None, public_message: Optional[str] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(
            public_message,
            details={"validationErrors": self.errors, "warnings": self.warnings},
        )


class StudyConflictError(StudyError):
    kind = "conflict"
    status_code = 409
    default_message = (
        "A study with this title may already exist, or there was a conflict with week/day numbers."
    )


class StudyTimeoutError(StudyError):
    kind = "timeout"
    status_code = 504
    default_message = (
        "Saving the study took too long. Try again, or split the study into smaller documents."
    )
    retryable = True


class StudyNotFoundError(StudyError):
    kind = "not_found"
    status_code = 404
    default_message = "Study not found"

    def __init__(self, entity_type: str = "Study", entity_id: Any = None, public_message: Optional[str] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            public_message or f"{entity_type} not found",
            details={"entityType": entity_type, "entityId": entity_id},
        )


class StudyPersistenceError(StudyError):
    pass


def is_statement_timeout(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _PG_STATEMENT_TIMEOUT


def classify_failure(
    exc: BaseException,
    *,
    conflict_message: Optional[str] = None,
    failure_message: Optional[str] = None,
) -> StudyError:
    """Map a raw failure from a write path onto the taxonomy above."""
    if isinstance(exc, StudyError):
        return exc
    if isinstance(exc, IntegrityError):
        return StudyConflictError(conflict_message)
    if isinstance(exc, (asyncio.TimeoutError, PoolTimeoutError)) or is_statement_timeout(exc):
        return StudyTimeoutError()
    return StudyPersistenceError(failure_message)


__all__ = [
    "CompensationOutcome",
    "StudyError",
    "StudyValidationError",
    "StudyConflictError",
    "StudyTimeoutError",
    "StudyNotFoundError",
    "StudyPersistenceError",
    "is_statement_timeout",
    "classify_failure",
]
