"""Configuration exceptions."""

from .base import AppError
from .taxonomy import ErrorCode


class ConfigurationError(AppError):
    """Raised when configuration files, env vars or overrides are invalid."""

    default_code = ErrorCode.INVALID_CONFIG
    default_status = 400
