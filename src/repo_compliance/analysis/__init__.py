"""Phase-driven analysis of indexed repository snapshots."""

from .context import AnalysisContext, Metrics
from .orchestrator import AnalysisOrchestrator, StartResult
from .phases import PHASES, Phase, PhaseDependencies

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisContext",
    "Metrics",
    "StartResult",
    "Phase",
    "PhaseDependencies",
    "PHASES",
]
