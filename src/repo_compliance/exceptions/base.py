"""Base exception for Repo Compliance."""

from typing import Any, Dict, Optional

from .taxonomy import ErrorCode


class AppError(Exception):
    """Base exception for all application errors.

    Every AppError carries a stable ``code`` and an HTTP-equivalent
    ``status_code`` so outer layers can translate it without inspecting the
    message.
    """

    default_code = ErrorCode.VALIDATION_ERROR
    default_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_json(self) -> Dict[str, Any]:
        """Structured logging / API format."""
        return {
            "error_code": self.code.value,
            "status_code": self.status_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(AppError):
    """Entity absent or owned by another organization.

    Cross-tenant access deliberately reports NotFound so the existence of
    other organizations' records never leaks.
    """

    default_code = ErrorCode.NOT_FOUND
    default_status = 404


class ValidationError(AppError):
    """A precondition or input constraint was not met."""

    default_code = ErrorCode.VALIDATION_ERROR
    default_status = 400


class ConflictError(AppError):
    """The operation collides with existing state (e.g. an active run)."""

    default_code = ErrorCode.CONFLICT
    default_status = 409


def wrap_unexpected(error: Exception, message: str, code: ErrorCode) -> AppError:
    """Return *error* unchanged if already typed, otherwise wrap it once."""
    if isinstance(error, AppError):
        return error
    return AppError(message, code=code, status_code=500, details={"cause": str(error)})
