"""Signal-to-control mapping for SOC2, ISO 27001 and NIST 800-53."""

from .mapper import ControlMapper, FindingSummarizer, map_signals_to_controls
from .models import ControlFinding, EvidenceReference, FindingStatus, Framework
from .rules import RULES, ControlRule

__all__ = [
    "ControlMapper",
    "FindingSummarizer",
    "map_signals_to_controls",
    "ControlFinding",
    "EvidenceReference",
    "FindingStatus",
    "Framework",
    "ControlRule",
    "RULES",
]
