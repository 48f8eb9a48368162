"""
shared/utils/errors.py
Domain error taxonomy. Every error carries an HTTP status and a stable
machine-readable code; main.py renders them into the error envelope.
"""

from typing import Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "internal"
    default_message: str = "An internal server error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Not authorized to perform this action"


class InvalidState(AppError):
    status_code = 400
    code = "invalid_state"
    default_message = "Invalid state transition"


class IdentityMissing(AppError):
    """The principal has no id for the role the operation acts as."""
    status_code = 400
    code = "identity_missing"
    default_message = "Could not determine the acting identity"


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicting update, please retry"


class ValidationError(AppError):
    status_code = 422
    code = "validation_error"
    default_message = "Invalid request"


class Internal(AppError):
    pass
