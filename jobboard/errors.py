"""Error taxonomy for the job board.

Every failure an upward operation can report is one of these types. The
service layer catches them and turns them into an ``OperationResult``; the
gateway translates transport and PostgREST errors into them so nothing
library-specific leaks past the store boundary.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable identifiers for failure categories."""

    NOT_FOUND = "not_found"
    ALREADY_DECIDED = "already_decided"
    PRECONDITION_FAILED = "precondition_failed"
    VALIDATION_FAILED = "validation_failed"
    STORE_UNAVAILABLE = "store_unavailable"


class JobBoardError(Exception):
    """Base exception for job board operations."""

    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(JobBoardError):
    """Referenced job, application or profile does not exist or is not visible."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class AlreadyDecidedError(JobBoardError):
    """A decision was attempted on an application that is no longer pending.

    Signals a stale client view, a double submit or the losing side of a race.
    """

    kind = ErrorKind.ALREADY_DECIDED

    def __init__(
        self,
        application_id: str,
        status: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.application_id = application_id
        self.status = status
        if reason is None:
            reason = f"Application {application_id} is already {status or 'decided'}"
        super().__init__(reason)


class PreconditionFailedError(JobBoardError):
    """A conditional write matched nothing for a reason other than a prior decision."""

    kind = ErrorKind.PRECONDITION_FAILED


class DuplicateRecordError(PreconditionFailedError):
    """An insert collided with a store-level unique constraint."""

    def __init__(self, table: str, detail: Optional[str] = None):
        self.table = table
        super().__init__(f"Duplicate record in {table}" + (f": {detail}" if detail else ""))


class ValidationFailedError(JobBoardError, ValueError):
    """Caller-supplied fields violate field constraints."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, field_name: str, message: str):
        self.field = field_name
        super().__init__(message)


class StoreUnavailableError(JobBoardError):
    """Transport or authentication failure talking to the store."""

    kind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store unavailable during {operation}{detail}")
