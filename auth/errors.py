"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure a flow can report is an AuthError subclass carrying the HTTP
status and the machine-readable code the API layer puts in the error
envelope. The core raises them; api/main.py has a single exception handler
that turns any AuthError into a response. Nothing here imports FastAPI.

Information leakage rules:
  InvalidCredentialsError is raised for both "unknown email" and "wrong
  password" with the same message. ConflictError on registration is the only
  place where the existence of an email is revealed, and that is accepted.

Store faults (SQLAlchemy errors) are deliberately NOT wrapped here. They
propagate to the generic 500 handler.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all expected authentication failures."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid payload."


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Email already registered."


class InvalidCredentialsError(AuthError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Invalid or expired token."


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden."


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class ExpiredTokenError(AuthError):
    status_code = 403
    code = "token_expired"
    default_message = "Refresh token expired."


class InvalidTokenError(AuthError):
    status_code = 403
    code = "invalid_token"
    default_message = "Invalid refresh token."
