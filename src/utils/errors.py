"""
Error taxonomy and the single translator used at every service boundary.

Services raise ``AppError`` subclasses internally; the public coroutines are
wrapped with ``returns_result`` so callers only ever see
``{"success": False, "error": "<CODE>: <message>"}``.
"""

from __future__ import annotations

import enum
import functools
import sqlite3
from typing import Any, Dict, Optional

from utils.logger import get_logger

_logger = get_logger(__name__)


class ErrorKind(enum.Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    BUSINESS = "business"
    STORAGE = "storage"
    INTERNAL = "internal"


class AppError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL
    default_code = "INTERNAL_ERROR"
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **details):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class AuthenticationError(AppError):
    kind = ErrorKind.AUTHENTICATION
    default_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class SessionNotFound(AuthenticationError):
    default_code = "INVALID_SESSION"
    default_message = "Invalid session"


class SessionExpired(AuthenticationError):
    default_code = "SESSION_EXPIRED"
    default_message = "Session expired"


class AuthorizationError(AppError):
    kind = ErrorKind.AUTHORIZATION
    default_code = "FORBIDDEN"
    default_message = "Access denied"


class BusinessError(AppError):
    kind = ErrorKind.BUSINESS
    default_code = "BUSINESS_RULE"
    default_message = "Operation not allowed"


class NotFoundError(BusinessError):
    default_code = "NOT_FOUND"

    def __init__(self, resource: str = "Record", **details):
        super().__init__(f"{resource} not found", **details)


class StorageError(AppError):
    kind = ErrorKind.STORAGE
    default_code = "DB_ERROR"
    default_message = "Database error"


class InternalError(AppError):
    kind = ErrorKind.INTERNAL


# sqlite extended result names -> (code, user message)
_SQLITE_ERRORS = {
    "SQLITE_CONSTRAINT_UNIQUE": ("DUPLICATE_ENTRY", "A record with that data already exists"),
    "SQLITE_CONSTRAINT_PRIMARYKEY": ("DUPLICATE_ENTRY", "A record with that data already exists"),
    "SQLITE_CONSTRAINT_FOREIGNKEY": ("FK_CONSTRAINT", "Operation blocked by related records"),
    "SQLITE_CONSTRAINT_NOTNULL": ("MISSING_FIELD", "A required field is missing"),
    "SQLITE_CONSTRAINT_CHECK": ("CONSTRAINT_VIOLATION", "Value out of allowed range"),
    "SQLITE_BUSY": ("DB_UNAVAILABLE", "Database connection error"),
    "SQLITE_LOCKED": ("DB_UNAVAILABLE", "Database connection error"),
    "SQLITE_CANTOPEN": ("DB_UNAVAILABLE", "Database connection error"),
}


def translate(exc: BaseException) -> AppError:
    """Map any exception to the taxonomy, by type and storage error code."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, sqlite3.Error):
        name = getattr(exc, "sqlite_errorname", None) or ""
        if name in _SQLITE_ERRORS:
            code, message = _SQLITE_ERRORS[name]
            return StorageError(message, code=code, cause=name)
        if name.startswith("SQLITE_CONSTRAINT"):
            return StorageError("Constraint violation", code="CONSTRAINT_VIOLATION", cause=name)
        return InternalError(str(exc) or type(exc).__name__, cause=name)
    if isinstance(exc, TimeoutError):
        return StorageError("Database connection error", code="DB_UNAVAILABLE")
    if isinstance(exc, ConnectionError):
        return StorageError("Database connection error", code="DB_UNAVAILABLE")
    return InternalError(str(exc) or type(exc).__name__)


def _debug_mode() -> bool:
    # imported lazily: config reads the environment on first use
    from utils.config import get_settings

    return get_settings().debug


def handle(exc: BaseException, debug: Optional[bool] = None) -> Dict[str, Any]:
    """Log an exception and turn it into a failure result."""
    err = translate(exc)
    if err.kind in (ErrorKind.STORAGE, ErrorKind.INTERNAL):
        _logger.error(f"{err.kind.value} error: {err}", exc_info=exc)
    else:
        _logger.warning(f"{err.kind.value} error: {err}")

    if err.kind is ErrorKind.INTERNAL:
        if debug is None:
            debug = _debug_mode()
        if not debug:
            return failure(InternalError())
    return failure(err)


def failure(err: AppError) -> Dict[str, Any]:
    return {"success": False, "error": str(err)}


def returns_result(func):
    """Decorator for public service coroutines: exceptions become failure results."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            return handle(exc)

    return wrapper
