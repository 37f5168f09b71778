"""
Translation of service exceptions into HTTP errors.

Every error response uses detail={"error": <code>, "details": <message>}.
"""

import logging
from datetime import date

from fastapi import HTTPException, status
from pydantic import ValidationError

from ledgerly.config import settings
from ledgerly.errors import (
    DateConflictError,
    InvalidRuleError,
    InvalidScopeError,
    NotFoundError,
    StoreError,
    UnauthenticatedError,
)

logger = logging.getLogger(__name__)


def to_http_exception(exc: Exception, fallback_error: str, fallback_details: str) -> HTTPException:
    """
    Map a service exception to an HTTPException.

    Store failures and unexpected exceptions become a 500 with the caller's
    fallback code so database messages never reach the client. A pydantic
    ValidationError here means a stored row failed to convert, so it is a 500
    too; invalid client input goes through invalid_input_exception instead.
    """
    if isinstance(exc, UnauthenticatedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "details": str(exc)}
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "details": str(exc)}
        )
    if isinstance(exc, InvalidScopeError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_scope", "details": str(exc)}
        )
    if isinstance(exc, InvalidRuleError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_rule", "details": str(exc)}
        )
    if isinstance(exc, DateConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "date_conflict", "details": str(exc)}
        )
    if isinstance(exc, StoreError):
        logger.error(f"Store error ({exc.code}): {exc}")
    else:
        logger.error(f"Unexpected error: {exc}", exc_info=True)

    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": fallback_error, "details": fallback_details}
    )


def check_date_window(start_date: date, end_date: date) -> None:
    """
    Reject reversed windows and windows longer than MAX_MATERIALIZE_WINDOW_DAYS.

    Raises:
        HTTPException: 400 validation_error
    """
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "validation_error", "details": "end_date must be on or after start_date"}
        )

    span = (end_date - start_date).days + 1
    if span > settings.MAX_MATERIALIZE_WINDOW_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "validation_error",
                "details": f"Date window spans {span} days; the maximum is {settings.MAX_MATERIALIZE_WINDOW_DAYS}"
            }
        )


def invalid_input_exception(exc: ValidationError) -> HTTPException:
    """422 for request values that failed validation after FastAPI parsed the body."""
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "error": "validation_error",
            "details": exc.errors(include_url=False, include_context=False, include_input=False)
        }
    )
