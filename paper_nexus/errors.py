"""Application error taxonomy.

Every failure that crosses the service boundary is one of these classes. The
API layer renders them as `{"error": message, "code": code}` with the class'
HTTP status; nothing else (driver errors, PyJWT errors) ever reaches a route
handler.
"""

from __future__ import annotations

from typing import Dict, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "server_error"
    message: str = "An error occurred. Please try again later"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None) -> None:
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, object]:
        return {"error": self.message, "code": self.code}


# -----------------
# Auth
# -----------------

AUTH_ERRORS: Dict[str, str] = {
    "INVALID_CREDENTIALS": "Invalid username or password",
    "INVALID_TOKEN": "Invalid or expired token",
    "ACCOUNT_LOCKED": "Too many failed login attempts. Please try again later",
    "ACCOUNT_DISABLED": "This account has been disabled",
    "USER_NOT_VERIFIED": "Please verify your email to continue",
    "SERVER_ERROR": "An error occurred. Please try again later",
}

_AUTH_STATUS: Dict[str, int] = {
    "INVALID_CREDENTIALS": 401,
    "INVALID_TOKEN": 401,
    "ACCOUNT_LOCKED": 423,
    "ACCOUNT_DISABLED": 403,
    "USER_NOT_VERIFIED": 403,
    "SERVER_ERROR": 500,
}


class AuthError(AppError):
    def __init__(self, kind: str, message: Optional[str] = None) -> None:
        if kind not in AUTH_ERRORS:
            kind = "SERVER_ERROR"
        self.kind = kind
        self.status_code = _AUTH_STATUS[kind]
        super().__init__(message or AUTH_ERRORS[kind], code=kind.lower())


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    message = "You are not allowed to perform this action"


# -----------------
# Input / state
# -----------------


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        fields: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message, code=code)
        self.fields = dict(fields or {})

    def to_dict(self) -> Dict[str, object]:
        d = super().to_dict()
        if self.fields:
            d["fields"] = self.fields
        return d


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists"


class LockedError(AppError):
    status_code = 403
    code = "post_locked"
    message = "This post is locked"


class InvalidStateError(AppError):
    status_code = 400
    code = "invalid_state"
    message = "Invalid state for this action"


# -----------------
# Infrastructure
# -----------------


class DatabaseError(AppError):
    status_code = 500
    code = "database_error"
    message = "An error occurred. Please try again later"


class DatabaseUnavailableError(DatabaseError):
    status_code = 503
    code = "database_unavailable"
    message = "Database connection error"


class UpstreamError(AppError):
    status_code = 502
    code = "upstream_error"
    message = "Failed to fetch data"
