"""
core/errors.py -- Domain exception taxonomy shared by every layer.

Stores and services raise these; api/main.py maps each one to an HTTP status
and the ErrorResponse envelope. Nothing below the API layer imports fastapi,
so the same exceptions work from the CLI and from tests.

  AuthenticationError  -> 401  bad credentials, invalid/expired token
  AuthorizationError   -> 403  valid session, insufficient abilities
  InputValidationError -> 422  malformed input, safe to echo back
  ConflictError        -> 409  duplicate username/email
  NotFoundError        -> 404  missing or inactive user/role/company

AuthenticationError never carries the reason. A caller must not be able to
tell "unknown user" from "wrong password" from "expired token".

Layer rule: core/ is the kernel. No imports from api/, auth/, or directory/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldIssue:
    """One field-level validation problem."""

    field: str
    message: str


class AppError(Exception):
    """Base class for expected, client-facing failures."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        fields: list[FieldIssue] | None = None,
        detail: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.fields = fields or []
        self.detail = detail
        super().__init__(self.message)


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."

    def __init__(self) -> None:
        # The message is fixed on purpose; see module docstring.
        super().__init__()


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class InputValidationError(AppError):
    status_code = 422
    code = "validation_error"
    default_message = "Request validation failed."

    @classmethod
    def for_field(cls, field: str, message: str) -> "InputValidationError":
        return cls(fields=[FieldIssue(field=field, message=message)])


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "The resource already exists."


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."
