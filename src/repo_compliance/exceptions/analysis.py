"""Pipeline exceptions: signal scanning, control mapping, run budget."""

from typing import Optional

from .base import AppError
from .taxonomy import ErrorCode


class DetectionError(AppError):
    """Raised when a signal scan cannot run at all (e.g. missing root)."""

    default_code = ErrorCode.SIGNAL_SCAN_ERROR
    default_status = 500


class ControlMappingError(AppError):
    """Raised when signals cannot be mapped onto a framework's controls."""

    default_code = ErrorCode.CONTROL_MAPPING_ERROR
    default_status = 500

    def __init__(self, framework: str, reason: str):
        super().__init__(
            "Signal-to-control mapping failed",
            details={"framework": framework, "reason": reason},
        )
        self.framework = framework
        self.reason = reason


class AnalysisTimeoutError(AppError):
    """Raised when an analysis run exhausts its wall-clock budget."""

    default_code = ErrorCode.ANALYSIS_TIMEOUT
    default_status = 504

    def __init__(self, budget_seconds: float, phase: Optional[str] = None):
        where = f" during phase '{phase}'" if phase else ""
        super().__init__(
            f"Analysis exceeded its {budget_seconds:g}s budget{where}",
            details={"budget_seconds": budget_seconds, "phase": phase or ""},
        )
        self.budget_seconds = budget_seconds
        self.phase = phase


class UnscannableFileError(AppError):
    """Raised when a file cannot be read as text (binary, oversized, unreadable).

    Detectors count these files as skipped and keep scanning.
    """

    default_code = ErrorCode.SIGNAL_SCAN_ERROR
    default_status = 500

    def __init__(self, filepath: str, reason: str):
        super().__init__(
            f"Cannot scan file: {filepath}",
            details={"filepath": filepath, "reason": reason},
        )
        self.filepath = filepath
        self.reason = reason
