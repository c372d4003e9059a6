"""
Database error taxonomy.

Driver exceptions (postgrest APIError, psycopg2.Error, pymongo errors) are
converted into DatabaseError at the edge of the db layer. Callers only ever see
the small stable set of codes defined by ErrorCode.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    DUPLICATE_KEY = "DUPLICATE_KEY"
    FOREIGN_KEY = "FOREIGN_KEY"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


_CODE_MAP: dict[str, ErrorCode] = {
    # PostgreSQL SQLSTATE / PostgREST
    "23505": ErrorCode.DUPLICATE_KEY,
    "23503": ErrorCode.FOREIGN_KEY,
    "42501": ErrorCode.PERMISSION_DENIED,
    "PGRST116": ErrorCode.NOT_FOUND,
    # MongoDB server error codes
    "11000": ErrorCode.DUPLICATE_KEY,
    "13": ErrorCode.PERMISSION_DENIED,
}


class DatabaseError(Exception):
    """Normalized backend failure surfaced past the data access facade."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Any = None,
        hint: str | None = None,
        context: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"DatabaseError(code={self.code.value}, message={self.message!r}, context={self.context!r})"


class OperationNotImplementedError(DatabaseError):
    """Raised by operations the active backend does not provide."""

    def __init__(self, operation: str, mode: str) -> None:
        super().__init__(
            ErrorCode.NOT_IMPLEMENTED,
            f"{operation} is not implemented for the {mode} backend",
            context=operation,
        )
        self.operation = operation
        self.mode = mode


def map_error_code(raw_code: Any) -> ErrorCode:
    if raw_code is None:
        return ErrorCode.DATABASE_ERROR
    return _CODE_MAP.get(str(raw_code), ErrorCode.DATABASE_ERROR)


def _extract_fields(exc: BaseException) -> tuple[Any, str, Any, str | None]:
    """Pull (code, message, details, hint) from the known driver exception shapes."""
    # psycopg2.Error: pgcode / pgerror / diag
    pgcode = getattr(exc, "pgcode", None)
    if pgcode is not None:
        diag = getattr(exc, "diag", None)
        details = getattr(diag, "message_detail", None) if diag is not None else None
        hint = getattr(diag, "message_hint", None) if diag is not None else None
        message = (getattr(exc, "pgerror", None) or str(exc)).strip()
        return pgcode, message, details, hint

    # postgrest APIError and pymongo OperationFailure both expose .code
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    details = getattr(exc, "details", None)
    hint = getattr(exc, "hint", None)
    return code, str(message), details, hint


def translate_error(exc: BaseException, context: str = "") -> DatabaseError:
    """
    Convert a driver exception into a DatabaseError and log it with context.

    DatabaseError instances pass through unchanged.
    """
    if isinstance(exc, DatabaseError):
        return exc

    raw_code, message, details, hint = _extract_fields(exc)
    code = map_error_code(raw_code)

    if code is ErrorCode.DATABASE_ERROR and _is_connection_failure(exc):
        code = ErrorCode.CONNECTION_ERROR

    if code is not ErrorCode.NOT_FOUND:
        logger.error(
            "[Database Error] %s: code=%s message=%s details=%s hint=%s",
            context,
            raw_code,
            message,
            details,
            hint,
        )

    return DatabaseError(code, message, details=details, hint=hint, context=context)


def _is_connection_failure(exc: BaseException) -> bool:
    name = type(exc).__name__
    return isinstance(exc, (ConnectionError, TimeoutError)) or name in {
        "OperationalError",
        "InterfaceError",
        "ConnectionFailure",
        "ServerSelectionTimeoutError",
        "AutoReconnect",
        "ConnectError",
        "ConnectTimeout",
        "ReadTimeout",
    }
