"""
Error taxonomy for the issue core and its translation to HTTP responses.

Services raise these exceptions; nothing in the core logs-and-swallows them.
``register_exception_handlers`` installs the single place where they become
status codes and the ``{"success": false, "message": ...}`` envelope.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CivicTrackerError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[list] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(CivicTrackerError):
    """Malformed input: bad coordinates, missing field, invalid enum value."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class IllegalTransitionError(ValidationError):
    """Requested status change is not in the workflow transition table."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change status from '{current}' to '{requested}'")


class DuplicateVoteError(CivicTrackerError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "user has already cast this vote"


class AuthenticationError(CivicTrackerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid authentication credentials"


class AuthorizationError(CivicTrackerError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to perform this action"


class NotFoundError(CivicTrackerError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(CivicTrackerError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class StoreUnavailableError(CivicTrackerError):
    """The entity store could not be reached. Callers may retry with backoff."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Data store unavailable"


class VoteInvariantError(CivicTrackerError):
    """Stored vote counters disagree with the voter entries."""


def translate_store_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Re-raise connectivity failures from SQLAlchemy as ``StoreUnavailableError``."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError() from exc

    return wrapper


def error_body(message: str, errors: Optional[list] = None) -> dict:
    body: dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body


async def _civic_error_handler(request: Request, exc: CivicTrackerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed with %s: %s",
            type(exc).__name__,
            exc.message,
            exc_info=exc,
        )
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.errors),
        headers=headers,
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(error_body("Validation failed", errors)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the HTTP translation for the domain error taxonomy."""
    app.add_exception_handler(CivicTrackerError, _civic_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)


__all__ = [
    "CivicTrackerError",
    "ValidationError",
    "IllegalTransitionError",
    "DuplicateVoteError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "StoreUnavailableError",
    "VoteInvariantError",
    "translate_store_errors",
    "register_exception_handlers",
    "error_body",
]
