"""
Translation of pipeline errors into HTTP responses.
"""
import logging

from fastapi import HTTPException

from sevispass.services.identity.errors import (
    ConsistencyError,
    DuplicateRecordError,
    EnrollmentError,
    ExternalServiceError,
    InputValidationError,
    InvalidTransitionError,
    RecordNotFoundError,
    ResubmissionBlockedError,
    SevisPassError,
)

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE = "Service unavailable, please try again"
INTERNAL_ERROR = "Internal server error"


def to_http_exception(error: SevisPassError) -> HTTPException:
    """
    Map a pipeline error onto a status code and a JSON body.

    The body is carried in HTTPException.detail and rendered as-is by the
    handler registered in main.
    """
    if isinstance(error, InputValidationError):
        return HTTPException(status_code=400, detail={"error": error.message, "field": error.field})

    if isinstance(error, ExternalServiceError):
        logger.error(f"External service failure ({error.service} {error.operation}): {str(error)}")
        return HTTPException(status_code=503, detail={"error": SERVICE_UNAVAILABLE})

    if isinstance(error, ConsistencyError):
        logger.critical(f"Consistency failure on application {error.application_id}: {str(error)}")
        return HTTPException(
            status_code=500,
            detail={"error": INTERNAL_ERROR, "applicationId": error.application_id},
        )

    if isinstance(error, (InvalidTransitionError, ResubmissionBlockedError, DuplicateRecordError)):
        return HTTPException(status_code=409, detail={"error": str(error)})

    if isinstance(error, RecordNotFoundError):
        return HTTPException(status_code=404, detail={"error": str(error)})

    if isinstance(error, EnrollmentError):
        return HTTPException(status_code=422, detail={"error": str(error)})

    logger.error(f"Unhandled pipeline error: {str(error)}", exc_info=True)
    return HTTPException(status_code=500, detail={"error": INTERNAL_ERROR})
