"""Security signal detection."""

from .detector import SignalDetector
from .models import (
    CICDSignal,
    Confidence,
    Evidence,
    SecretsWarning,
    Severity,
    Signal,
    SignalCategory,
    Signals,
)

__all__ = [
    "SignalDetector",
    "Signal",
    "Signals",
    "SignalCategory",
    "CICDSignal",
    "SecretsWarning",
    "Evidence",
    "Confidence",
    "Severity",
]
