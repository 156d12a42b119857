"""
Repo Compliance - repository compliance scanning

Statically inspects an extracted source snapshot for security-relevant
implementation patterns (authentication, encryption, logging, access control,
CI/CD posture, leaked secrets), maps them to SOC2, ISO 27001 and NIST 800-53
controls, and persists graded findings with evidence and remediation tasks.
"""

__version__ = "0.1.0"

from .analysis import AnalysisOrchestrator, StartResult
from .config import ScanConfig, load_config
from .controls import ControlFinding, ControlMapper, FindingStatus, Framework, map_signals_to_controls
from .persistence import ComplianceDB, FindingsStore, SnapshotStore
from .signals import SignalDetector, Signals

__all__ = [
    "AnalysisOrchestrator",  # Main entry point
    "StartResult",
    "ScanConfig",
    "load_config",
    "SignalDetector",
    "Signals",
    "ControlMapper",
    "ControlFinding",
    "FindingStatus",
    "Framework",
    "map_signals_to_controls",
    "ComplianceDB",
    "FindingsStore",
    "SnapshotStore",
]
