"""Translation of service errors into HTTP responses."""

from fastapi import HTTPException, status

from vidgenie.services.exceptions import (
    InsufficientCredits,
    JobStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)


def to_http_exception(error: ServiceError) -> HTTPException:
    """Map a service error raised by a user-facing operation to an HTTPException."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, InsufficientCredits):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Insufficient credits",
                "balance": error.balance,
                "required": error.required,
            },
        )
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, JobStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
