"""Exception hierarchy for Repo Compliance."""

from .analysis import (
    AnalysisTimeoutError,
    ControlMappingError,
    DetectionError,
    UnscannableFileError,
)
from .base import AppError, ConflictError, NotFoundError, ValidationError, wrap_unexpected
from .config import ConfigurationError
from .taxonomy import ErrorCode

__all__ = [
    "AppError",
    "ErrorCode",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DetectionError",
    "ControlMappingError",
    "AnalysisTimeoutError",
    "UnscannableFileError",
    "ConfigurationError",
    "wrap_unexpected",
]
