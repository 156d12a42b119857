"""Analysis orchestrator: admits runs and drives them through the phases.

``start_analysis`` returns as soon as the run is admitted; the phases run on
a worker thread. A run ends ``completed`` or ``failed`` and is never written
again after that.
"""

from __future__ import annotations

import concurrent.futures
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..config import ScanConfig
from ..controls.mapper import ControlMapper
from ..controls.models import Framework
from ..exceptions import (
    AnalysisTimeoutError,
    AppError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    wrap_unexpected,
)
from ..logging_config import get_logger
from ..persistence.audit import AuditLog
from ..persistence.database import ComplianceDB
from ..persistence.findings import FindingsStore
from ..persistence.models import AnalysisDepth, AnalysisRun, SnapshotStatus
from ..persistence.runs import RunStore
from ..persistence.snapshots import SnapshotStore
from ..signals.detector import SignalDetector
from .context import AnalysisContext
from .phases import PHASES, Phase, PhaseDependencies

logger = get_logger(__name__)

ENTITY_RUN = "repository_analysis_run"


@dataclass(frozen=True)
class StartResult:
    run_id: str


class AnalysisOrchestrator:
    """Runs the phase pipeline for indexed snapshots.

    Usage:
        with ComplianceDB(path) as db:
            orchestrator = AnalysisOrchestrator(db, config)
            result = orchestrator.start_analysis(snapshot_id, ["SOC2"], "full", org, user)
            run = orchestrator.wait_for_run(result.run_id)
            orchestrator.shutdown()
    """

    def __init__(
        self,
        db: ComplianceDB,
        config: Optional[ScanConfig] = None,
        detector_factory: Callable[[ScanConfig], SignalDetector] = SignalDetector,
        mapper: Optional[ControlMapper] = None,
        findings: Optional[FindingsStore] = None,
        audit: Optional[AuditLog] = None,
        phases: Sequence[Phase] = PHASES,
    ):
        self.db = db
        self.config = config or ScanConfig()
        self.detector_factory = detector_factory
        self.mapper = mapper or ControlMapper()
        self.audit = audit or AuditLog(db)
        self.findings = findings or FindingsStore(db, self.audit, self.config)
        self.snapshots = SnapshotStore(db)
        self.runs = RunStore(db, self.snapshots)
        self.phases = tuple(phases)

        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix="analysis-run"
        )
        self._futures: dict[str, concurrent.futures.Future] = {}
        self._futures_lock = threading.Lock()

    def __enter__(self) -> "AnalysisOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    # ── Public operations ─────────────────────────────────────────

    def start_analysis(
        self,
        snapshot_id: str,
        frameworks: Sequence[str],
        depth: str | AnalysisDepth,
        organization_id: str,
        user_id: Optional[str],
    ) -> StartResult:
        """Admit a run for an indexed snapshot and execute it in the background.

        Raises:
            NotFoundError: Snapshot missing or owned by another organization
            ValidationError: Snapshot not indexed, no frameworks, unknown depth
            ConflictError: A run is already pending or running for the snapshot
            AppError: ANALYSIS_START_ERROR for unexpected failures
        """
        try:
            names = _normalize_frameworks(frameworks)
            if not names:
                raise ValidationError("At least one framework is required")
            resolved_depth = AnalysisDepth.parse(depth)
            if resolved_depth is None:
                raise ValidationError(
                    f"Unknown analysis depth '{depth}'",
                    details={"depth": str(depth), "allowed": [d.value for d in AnalysisDepth]},
                )

            run, extracted_path = self.runs.create_run(
                snapshot_id,
                organization_id,
                names,
                resolved_depth,
                initial_phase=self.phases[0].name if self.phases else None,
            )

            self.audit.record(
                "create",
                ENTITY_RUN,
                run.id,
                organization_id,
                user_id,
                {"snapshot_id": snapshot_id, "frameworks": names, "depth": resolved_depth.value},
            )
            logger.info(
                "Analysis run %s started for snapshot %s (%s, %s)",
                run.id,
                snapshot_id,
                ", ".join(names),
                resolved_depth.value,
            )

            try:
                future = self._executor.submit(
                    self.execute_analysis, run.id, extracted_path, organization_id, user_id
                )
            except RuntimeError as e:
                # Executor shut down: the admitted run must not stay pending
                self.fail_analysis(run.id, f"Could not schedule analysis: {e}", organization_id, user_id)
                raise
            with self._futures_lock:
                self._futures[run.id] = future
            future.add_done_callback(lambda _f, run_id=run.id: self._forget(run_id))
            return StartResult(run_id=run.id)
        except Exception as e:
            logger.error("Failed to start analysis for snapshot %s: %s", snapshot_id, e)
            raise wrap_unexpected(e, "Failed to start analysis", ErrorCode.ANALYSIS_START_ERROR) from e

    def execute_analysis(
        self,
        run_id: str,
        extracted_path: str,
        organization_id: str,
        user_id: Optional[str],
    ) -> None:
        """Drive one run through every phase. Never raises."""
        try:
            run = self.runs.get(run_id)
            if run is None:
                raise NotFoundError("Analysis run not found", details={"run_id": run_id})
            if not self.runs.mark_running(run_id):
                logger.warning("Run %s is not pending; not executing", run_id)
                return

            ctx = AnalysisContext.start(
                snapshot_id=run.snapshot_id,
                run_id=run_id,
                extracted_path=extracted_path,
                frameworks=run.frameworks,
                depth=run.analysis_depth,
                organization_id=organization_id,
                user_id=user_id,
                budget_seconds=self.config.run_timeout_seconds,
            )
            deps = PhaseDependencies(
                config=self.config,
                detector=self.detector_factory(self.config),
                mapper=self.mapper,
                findings=self.findings,
            )

            total = len(self.phases)
            for i, phase in enumerate(self.phases):
                ctx.check_deadline(phase.name)
                self.runs.update_phase(run_id, phase.name, round(i / total * 100))
                self._run_phase(phase, ctx, deps)
                logger.info(
                    "Run %s: phase '%s' completed (%d%%)",
                    run_id,
                    phase.name,
                    round((i + 1) / total * 100),
                )

            self.complete_analysis(run_id, ctx)
        except Exception as e:
            message = e.message if isinstance(e, AppError) else str(e) or type(e).__name__
            logger.error("Analysis run %s failed: %s", run_id, message)
            try:
                self.fail_analysis(run_id, message, organization_id, user_id)
            except Exception as fail_error:
                logger.error("Could not record failure of run %s: %s", run_id, fail_error)

    def complete_analysis(self, run_id: str, ctx: AnalysisContext) -> None:
        """Mark the run completed and the snapshot analyzed. No-op if terminal."""
        updated = self.runs.complete(run_id, ctx.metrics.to_dict())
        if updated is None:
            logger.debug("Run %s already terminal; completion ignored", run_id)
            return
        self.snapshots.transition(updated.snapshot_id, SnapshotStatus.ANALYZED)
        self.audit.record(
            "update",
            ENTITY_RUN,
            run_id,
            ctx.organization_id,
            ctx.user_id,
            {"phase_status": updated.phase_status.value, **ctx.metrics.to_dict()},
        )
        logger.info(
            "Analysis run %s completed: %d files, %d findings",
            run_id,
            ctx.metrics.files_analyzed,
            ctx.metrics.findings_generated,
        )

    def fail_analysis(
        self,
        run_id: str,
        error_message: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Mark the run failed and its snapshot failed. No-op if terminal."""
        updated = self.runs.fail(run_id, error_message)
        if updated is None:
            logger.debug("Run %s missing or terminal; failure ignored", run_id)
            return

        snapshot = self.snapshots.get(updated.snapshot_id)
        if snapshot is not None:
            self.snapshots.transition(snapshot.id, SnapshotStatus.FAILED, error_message)
            organization_id = organization_id or snapshot.organization_id
        self.audit.record(
            "update",
            ENTITY_RUN,
            run_id,
            organization_id or "",
            user_id,
            {"phase_status": updated.phase_status.value, "error": error_message},
        )

    def get_analysis_status(self, run_id: str, organization_id: str) -> AnalysisRun:
        try:
            run = self.runs.get_scoped(run_id, organization_id)
            if run is None:
                raise NotFoundError("Analysis run not found", details={"run_id": run_id})
            return run
        except Exception as e:
            logger.error("Failed to get analysis status for %s: %s", run_id, e)
            raise wrap_unexpected(
                e, "Failed to get analysis status", ErrorCode.ANALYSIS_STATUS_ERROR
            ) from e

    # ── Executor control ──────────────────────────────────────────

    def wait_for_run(self, run_id: str, timeout: Optional[float] = None) -> Optional[AnalysisRun]:
        """Block until a run submitted by this orchestrator finishes.

        Runs that already finished, or were started elsewhere, are read
        straight from the database.

        Raises:
            AnalysisTimeoutError: If *timeout* elapses first
        """
        with self._futures_lock:
            future = self._futures.get(run_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                raise AnalysisTimeoutError(timeout or 0) from None
        return self.runs.get(run_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _forget(self, run_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(run_id, None)

    # ── Internals ─────────────────────────────────────────────────

    def _run_phase(self, phase: Phase, ctx: AnalysisContext, deps: PhaseDependencies) -> None:
        """Run one phase within the remaining run budget."""
        remaining = ctx.remaining()
        if remaining <= 0:
            raise AnalysisTimeoutError(ctx.budget_seconds, phase.name)

        # Not a with-block: leaving it would join the overrunning phase thread
        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"phase-{ctx.run_id[:8]}"
        )
        try:
            future = pool.submit(phase.run, ctx, deps)
            try:
                future.result(timeout=remaining)
            except concurrent.futures.TimeoutError:
                raise AnalysisTimeoutError(ctx.budget_seconds, phase.name) from None
        finally:
            pool.shutdown(wait=False)


def _normalize_frameworks(frameworks: Sequence[str]) -> list[str]:
    """Canonical names, de-duplicated, order preserved. Unknown names kept as given."""
    seen: list[str] = []
    for name in frameworks or ():
        if not name or not str(name).strip():
            continue
        resolved = Framework.parse(name)
        canonical = resolved.value if resolved else str(name).strip()
        if canonical not in seen:
            seen.append(canonical)
    return seen
