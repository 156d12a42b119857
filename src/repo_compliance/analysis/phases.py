"""The seven analysis phases, executed strictly in order.

Each phase reads the run context, calls the detector (or the mapper and
findings store for Gap) and appends to the context. Phases never touch
another run's state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..config import ScanConfig
from ..controls.mapper import ControlMapper
from ..logging_config import get_logger
from ..persistence.findings import FindingsStore
from ..scanning.inventory import list_candidate_files, select_for_depth
from ..scanning.models import FileCategory
from ..signals.detector import SignalDetector
from ..signals.models import Severity
from .context import AnalysisContext

logger = get_logger(__name__)


@dataclass
class PhaseDependencies:
    """Collaborators handed to every phase of one run."""

    config: ScanConfig
    detector: SignalDetector
    mapper: ControlMapper
    findings: FindingsStore


@dataclass(frozen=True)
class Phase:
    name: str
    description: str
    run: Callable[[AnalysisContext, PhaseDependencies], None]


def _sync_counts(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    ctx.signals.scanned_files = deps.detector.scanned_files
    ctx.signals.skipped_files = deps.detector.skipped_files


def run_overview(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    """Inventory the snapshot and choose the files scanned at this depth."""
    ctx.files = list_candidate_files(ctx.extracted_path, deps.config)
    ctx.scan_files = select_for_depth(ctx.files, ctx.depth.value)
    ctx.metrics.files_analyzed = len(ctx.files)

    docs = sum(1 for f in ctx.files if f.category is FileCategory.DOCS)
    logger.info(
        "Overview: %d files inventoried, %d selected for %s scan, %d docs",
        len(ctx.files),
        len(ctx.scan_files),
        ctx.depth.value,
        docs,
    )


def run_build(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    ctx.signals.cicd.extend(deps.detector.scan_for_cicd(ctx.extracted_path, ctx.scan_files))
    _sync_counts(ctx, deps)


def run_config(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    warnings = deps.detector.scan_for_secrets(ctx.extracted_path, ctx.scan_files)
    ctx.signals.secrets_warnings.extend(warnings)
    _sync_counts(ctx, deps)

    critical = sum(1 for w in warnings if w.severity is Severity.CRITICAL)
    if critical:
        logger.warning("Run %s: %d critical secret warning(s)", ctx.run_id, critical)


def run_auth(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    ctx.signals.auth.extend(deps.detector.scan_for_auth(ctx.extracted_path, ctx.scan_files))
    ctx.signals.access_control.extend(
        deps.detector.scan_for_access_control(ctx.extracted_path, ctx.scan_files)
    )
    _sync_counts(ctx, deps)


def run_data(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    ctx.signals.encryption.extend(
        deps.detector.scan_for_encryption(ctx.extracted_path, ctx.scan_files)
    )
    _sync_counts(ctx, deps)


def run_operations(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    ctx.signals.logging.extend(deps.detector.scan_for_logging(ctx.extracted_path, ctx.scan_files))
    _sync_counts(ctx, deps)


def run_gap(ctx: AnalysisContext, deps: PhaseDependencies) -> None:
    """Map signals per framework and persist the findings.

    The deadline is checked before each framework is persisted so a run
    that has timed out never writes findings.
    """
    for framework in ctx.frameworks:
        ctx.check_deadline("Gap Identification")
        findings = deps.mapper.map_signals_to_controls(ctx.signals, framework)
        if not findings:
            continue

        ctx.check_deadline("Gap Identification")
        persisted = deps.findings.create_findings(
            ctx.snapshot_id, ctx.organization_id, findings, ctx.user_id
        )
        ctx.metrics.findings_generated += len(persisted)
        ctx.metrics.llm_calls_made += sum(1 for f in findings if f.ai_model)
        logger.info("Gap: %d findings for %s", len(persisted), framework)


PHASES: tuple[Phase, ...] = (
    Phase("Repository Overview", "Inventory files and pick the scan set", run_overview),
    Phase("Build & CI/CD", "Detect pipelines and their security scanners", run_build),
    Phase("Configuration & Secrets", "Look for hardcoded secrets", run_config),
    Phase("Authentication & Access", "Detect authentication and authorization", run_auth),
    Phase("Data Protection", "Detect encryption at rest and in transit", run_data),
    Phase("Operations & Logging", "Detect logging and audit trails", run_operations),
    Phase("Gap Identification", "Map signals to controls and persist findings", run_gap),
)
