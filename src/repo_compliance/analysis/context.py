"""Per-run state shared by the analysis phases."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from ..exceptions import AnalysisTimeoutError
from ..persistence.models import AnalysisDepth
from ..scanning.models import FileEntry
from ..signals.models import Signals


@dataclass
class Metrics:
    files_analyzed: int = 0
    findings_generated: int = 0
    llm_calls_made: int = 0
    tokens_used: int = 0
    cost_estimate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisContext:
    """Transient state of one run. Never persisted, never shared between runs."""

    snapshot_id: str
    run_id: str
    extracted_path: str
    frameworks: list[str]
    depth: AnalysisDepth
    organization_id: str
    user_id: Optional[str]
    budget_seconds: float
    deadline: float  # time.monotonic() value
    signals: Signals = field(default_factory=Signals)
    metrics: Metrics = field(default_factory=Metrics)
    # Full inventory, and the subset whose contents are scanned at this depth
    files: list[FileEntry] = field(default_factory=list)
    scan_files: list[FileEntry] = field(default_factory=list)

    @classmethod
    def start(
        cls,
        snapshot_id: str,
        run_id: str,
        extracted_path: str,
        frameworks: list[str],
        depth: AnalysisDepth,
        organization_id: str,
        user_id: Optional[str],
        budget_seconds: float,
    ) -> "AnalysisContext":
        return cls(
            snapshot_id=snapshot_id,
            run_id=run_id,
            extracted_path=extracted_path,
            frameworks=list(frameworks),
            depth=depth,
            organization_id=organization_id,
            user_id=user_id,
            budget_seconds=budget_seconds,
            deadline=time.monotonic() + budget_seconds,
        )

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def check_deadline(self, phase: Optional[str] = None) -> None:
        """Raise AnalysisTimeoutError once the run budget is spent."""
        if self.remaining() <= 0:
            raise AnalysisTimeoutError(self.budget_seconds, phase)
