"""Tests for analysis/orchestrator.py - admission, phase execution, terminal states."""

import threading
import time

import pytest

from conftest import ORG, OTHER_ORG, USER
from repo_compliance.analysis import AnalysisContext, AnalysisOrchestrator, Phase
from repo_compliance.config import ScanConfig
from repo_compliance.controls import FindingStatus
from repo_compliance.exceptions import (
    AppError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from repo_compliance.persistence import (
    AnalysisDepth,
    FindingFilters,
    FindingsStore,
    PhaseStatus,
    SnapshotStatus,
)
from repo_compliance.scanning import list_candidate_files


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _blocking_phase(gate, name="Blocked"):
    def run(ctx, deps):
        gate.wait(10)

    return Phase(name, "Waits for the test to release it", run)


class TestStartAnalysis:
    def test_returns_run_id_and_moves_snapshot_to_analyzing(self, db, snapshots, indexed_snapshot, gate):
        with AnalysisOrchestrator(db, phases=[_blocking_phase(gate)]) as orch:
            result = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER)

            run = orch.get_analysis_status(result.run_id, ORG)
            assert run.snapshot_id == indexed_snapshot.id
            assert run.frameworks == ["SOC2"]
            assert run.analysis_depth is AnalysisDepth.FULL
            assert run.phase_status in (PhaseStatus.PENDING, PhaseStatus.RUNNING)
            assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.ANALYZING
            gate.set()

    def test_running_run_reports_current_phase(self, db, indexed_snapshot, gate):
        with AnalysisOrchestrator(db, phases=[_blocking_phase(gate, "Inventory")]) as orch:
            run_id = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id

            assert _wait_until(
                lambda: orch.get_analysis_status(run_id, ORG).phase_status is PhaseStatus.RUNNING
            )
            run = orch.get_analysis_status(run_id, ORG)
            assert run.phase == "Inventory"
            assert run.progress == 0
            gate.set()

    def test_framework_aliases_normalized(self, db, indexed_snapshot, gate):
        with AnalysisOrchestrator(db, phases=[_blocking_phase(gate)]) as orch:
            run_id = orch.start_analysis(
                indexed_snapshot.id, ["soc 2", "SOC2", "nist800-53"], "full", ORG, USER
            ).run_id
            assert orch.get_analysis_status(run_id, ORG).frameworks == ["SOC2", "NIST80053"]
            gate.set()

    def test_snapshot_not_indexed(self, db, snapshots, orchestrator, tmp_path):
        uploaded = snapshots.register(ORG, str(tmp_path / "archive"), status=SnapshotStatus.UPLOADED)

        with pytest.raises(ValidationError, match="must be indexed"):
            orchestrator.start_analysis(uploaded.id, ["SOC2"], "full", ORG, USER)
        assert orchestrator.runs.list_for_snapshot(uploaded.id) == []
        assert snapshots.get(uploaded.id).status is SnapshotStatus.UPLOADED

    def test_unknown_snapshot(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.start_analysis("missing", ["SOC2"], "full", ORG, USER)

    def test_cross_tenant_snapshot_is_not_found(self, orchestrator, indexed_snapshot):
        with pytest.raises(NotFoundError):
            orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "full", OTHER_ORG, USER)

    def test_no_frameworks(self, orchestrator, indexed_snapshot):
        with pytest.raises(ValidationError):
            orchestrator.start_analysis(indexed_snapshot.id, [], "full", ORG, USER)

    def test_unknown_depth(self, orchestrator, indexed_snapshot):
        with pytest.raises(ValidationError):
            orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "deep", ORG, USER)

    def test_second_start_conflicts(self, db, indexed_snapshot, gate):
        with AnalysisOrchestrator(db, phases=[_blocking_phase(gate)]) as orch:
            orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER)
            with pytest.raises(ConflictError):
                orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER)
            assert len(orch.runs.list_for_snapshot(indexed_snapshot.id)) == 1
            gate.set()

    def test_concurrent_starts_admit_exactly_one(self, db, indexed_snapshot, gate):
        attempts = 8
        barrier = threading.Barrier(attempts)
        lock = threading.Lock()
        started, rejected = [], []

        with AnalysisOrchestrator(db, phases=[_blocking_phase(gate)]) as orch:

            def attempt():
                barrier.wait()
                try:
                    result = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER)
                except AppError as e:
                    with lock:
                        rejected.append(e)
                else:
                    with lock:
                        started.append(result)

            threads = [threading.Thread(target=attempt) for _ in range(attempts)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

            assert len(started) == 1
            assert len(rejected) == attempts - 1
            assert all(isinstance(e, ConflictError) for e in rejected)
            assert len(orch.runs.list_for_snapshot(indexed_snapshot.id)) == 1

            gate.set()
            run = orch.wait_for_run(started[0].run_id, timeout=10)
            assert run.phase_status is PhaseStatus.COMPLETED

    def test_start_after_shutdown_fails_admitted_run(self, db, snapshots, indexed_snapshot):
        orch = AnalysisOrchestrator(db)
        orch.shutdown()

        with pytest.raises(AppError) as exc_info:
            orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER)
        assert exc_info.value.code is ErrorCode.ANALYSIS_START_ERROR

        (run,) = orch.runs.list_for_snapshot(indexed_snapshot.id)
        assert run.phase_status is PhaseStatus.FAILED
        assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.FAILED


class TestExecuteAnalysis:
    def test_full_pipeline_completes(self, orchestrator, db, snapshots, indexed_snapshot, sample_repo):
        run_id = orchestrator.start_analysis(
            indexed_snapshot.id, ["SOC2", "ISO27001"], "full", ORG, USER
        ).run_id
        run = orchestrator.wait_for_run(run_id, timeout=30)

        assert run.phase_status is PhaseStatus.COMPLETED
        assert run.progress == 100
        assert run.phase == "Gap Identification"
        assert run.error_message is None
        assert run.completed_at is not None
        assert run.files_analyzed == len(list_candidate_files(str(sample_repo)))
        assert run.findings_generated == 8 + 6

        snapshot = snapshots.get(indexed_snapshot.id)
        assert snapshot.status is SnapshotStatus.ANALYZED
        assert snapshot.analysis_completed_at is not None

    def test_findings_reflect_repository(self, orchestrator, db, indexed_snapshot):
        run_id = orchestrator.start_analysis(
            indexed_snapshot.id, ["SOC2", "ISO27001"], "full", ORG, USER
        ).run_id
        orchestrator.wait_for_run(run_id, timeout=30)

        findings = FindingsStore(db).get_findings(indexed_snapshot.id, ORG, FindingFilters(limit=100))
        by_control = {f.control_id: f for f in findings.findings}

        assert by_control["CC6.1"].status is FindingStatus.PASS
        assert by_control["CC6.3"].status is FindingStatus.PASS
        assert by_control["CC8.1"].status is FindingStatus.PASS
        # The sample repo hardcodes an API key
        assert by_control["A.9.4.3"].status is FindingStatus.FAIL
        assert by_control["A.9.4.3"].signal_type == "secrets_api_key"

    def test_unknown_framework_produces_no_findings(self, orchestrator, indexed_snapshot):
        run_id = orchestrator.start_analysis(
            indexed_snapshot.id, ["SOC2", "HIPAA"], "full", ORG, USER
        ).run_id
        run = orchestrator.wait_for_run(run_id, timeout=30)

        assert run.phase_status is PhaseStatus.COMPLETED
        assert run.frameworks == ["SOC2", "HIPAA"]
        assert run.findings_generated == 8

    def test_structure_only_scans_no_contents(self, orchestrator, db, indexed_snapshot):
        run_id = orchestrator.start_analysis(
            indexed_snapshot.id, ["SOC2"], "structure_only", ORG, USER
        ).run_id
        run = orchestrator.wait_for_run(run_id, timeout=30)

        assert run.phase_status is PhaseStatus.COMPLETED
        assert run.files_analyzed > 0
        summary = FindingsStore(db).get_findings_summary(indexed_snapshot.id, ORG)
        assert summary.by_status == {"fail": 8}

    def test_phase_error_fails_run_and_snapshot(self, db, snapshots, indexed_snapshot):
        def explode(ctx, deps):
            raise RuntimeError("boom")

        with AnalysisOrchestrator(db, phases=[Phase("Explode", "Always fails", explode)]) as orch:
            run_id = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
            run = orch.wait_for_run(run_id, timeout=10)

            assert run.phase_status is PhaseStatus.FAILED
            assert run.error_message == "boom"
            assert run.completed_at is not None

            snapshot = snapshots.get(indexed_snapshot.id)
            assert snapshot.status is SnapshotStatus.FAILED
            assert snapshot.error_message == "boom"

            actions = [e.action for e in orch.audit.events_for("repository_analysis_run", run_id)]
            assert actions == ["create", "update"]

    def test_timeout_fails_run(self, db, snapshots, indexed_snapshot, gate):
        config = ScanConfig(run_timeout_seconds=1)
        with AnalysisOrchestrator(db, config, phases=[_blocking_phase(gate, "Slow")]) as orch:
            run_id = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
            run = orch.wait_for_run(run_id, timeout=10)

            assert run.phase_status is PhaseStatus.FAILED
            assert "exceeded its 1s budget" in run.error_message
            assert "Slow" in run.error_message
            assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.FAILED
            gate.set()

    def test_later_phases_skipped_after_failure(self, db, indexed_snapshot):
        reached = []

        def explode(ctx, deps):
            raise ValueError("bad input")

        def record(ctx, deps):
            reached.append(ctx.run_id)

        phases = [Phase("First", "", explode), Phase("Second", "", record)]
        with AnalysisOrchestrator(db, phases=phases) as orch:
            run_id = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
            run = orch.wait_for_run(run_id, timeout=10)

        assert run.phase_status is PhaseStatus.FAILED
        assert run.phase == "First"
        assert reached == []


class TestTerminalRuns:
    def test_fail_after_completion_is_ignored(self, orchestrator, snapshots, indexed_snapshot):
        run_id = orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
        orchestrator.wait_for_run(run_id, timeout=30)

        orchestrator.fail_analysis(run_id, "late failure")

        run = orchestrator.get_analysis_status(run_id, ORG)
        assert run.phase_status is PhaseStatus.COMPLETED
        assert run.error_message is None
        assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.ANALYZED

    def test_complete_after_failure_is_ignored(self, db, snapshots, indexed_snapshot):
        def explode(ctx, deps):
            raise RuntimeError("boom")

        with AnalysisOrchestrator(db, phases=[Phase("Explode", "", explode)]) as orch:
            run_id = orch.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
            orch.wait_for_run(run_id, timeout=10)

            ctx = AnalysisContext.start(
                snapshot_id=indexed_snapshot.id,
                run_id=run_id,
                extracted_path=indexed_snapshot.extracted_path,
                frameworks=["SOC2"],
                depth=AnalysisDepth.FULL,
                organization_id=ORG,
                user_id=USER,
                budget_seconds=60,
            )
            orch.complete_analysis(run_id, ctx)

            run = orch.get_analysis_status(run_id, ORG)
            assert run.phase_status is PhaseStatus.FAILED
            assert run.error_message == "boom"
            assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.FAILED

    def test_analyzed_snapshot_cannot_be_rerun(self, orchestrator, indexed_snapshot):
        run_id = orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
        orchestrator.wait_for_run(run_id, timeout=30)

        with pytest.raises(ValidationError):
            orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER)


class TestGetAnalysisStatus:
    def test_unknown_run(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_analysis_status("missing", ORG)

    def test_cross_tenant_is_not_found(self, orchestrator, indexed_snapshot):
        run_id = orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
        orchestrator.wait_for_run(run_id, timeout=30)

        with pytest.raises(NotFoundError):
            orchestrator.get_analysis_status(run_id, OTHER_ORG)


class TestExecutorBookkeeping:
    def test_finished_runs_are_released_without_waiting(self, orchestrator, snapshots, sample_repo):
        run_ids = [
            orchestrator.start_analysis(
                snapshots.register(ORG, str(sample_repo), name=f"svc-{i}").id, ["SOC2"], "full", ORG, USER
            ).run_id
            for i in range(3)
        ]

        assert _wait_until(
            lambda: all(
                orchestrator.get_analysis_status(run_id, ORG).is_terminal for run_id in run_ids
            ),
            timeout=30,
        )
        assert _wait_until(lambda: not orchestrator._futures)

    def test_wait_for_released_run_reads_database(self, orchestrator, indexed_snapshot):
        run_id = orchestrator.start_analysis(indexed_snapshot.id, ["SOC2"], "full", ORG, USER).run_id
        assert _wait_until(lambda: not orchestrator._futures, timeout=30)

        run = orchestrator.wait_for_run(run_id, timeout=1)
        assert run.phase_status is PhaseStatus.COMPLETED
