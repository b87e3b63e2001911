"""Mapping of job board failures onto HTTP errors."""

from fastapi import HTTPException, status

from jobboard.errors import ErrorKind
from jobboard.service import OperationResult

HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_DECIDED: status.HTTP_409_CONFLICT,
    ErrorKind.PRECONDITION_FAILED: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def unwrap(result: OperationResult):
    """Return the result's value, or raise the HTTPException for its failure."""
    if result.ok:
        return result.value
    raise HTTPException(
        status_code=HTTP_STATUS_BY_KIND.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "error": result.error.value if result.error else "unknown",
            "message": result.message,
        },
    )
