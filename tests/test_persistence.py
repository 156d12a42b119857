"""Tests for the compliance database, snapshot/run state machines and audit log."""

import logging
import sqlite3
from unittest.mock import patch

import pytest

from conftest import ORG, OTHER_ORG, USER
from repo_compliance.exceptions import ConflictError, NotFoundError, ValidationError
from repo_compliance.persistence import (
    AnalysisDepth,
    AuditLog,
    ComplianceDB,
    PhaseStatus,
    RunStore,
    SnapshotStatus,
)


class TestDatabaseSchema:
    def test_creates_tables(self, db):
        tables = db.fetchall("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        table_names = {r["name"] for r in tables}

        assert {
            "schema_version",
            "snapshots",
            "analysis_runs",
            "repository_findings",
            "repository_tasks",
            "audit_events",
        } <= table_names

    def test_one_active_run_index(self, db):
        indexes = {r["name"] for r in db.fetchall("SELECT name FROM sqlite_master WHERE type='index'")}
        assert "idx_runs_one_active" in indexes

    def test_file_database_reopens(self, tmp_path):
        path = str(tmp_path / ".repo-compliance" / "compliance.db")
        with ComplianceDB(path) as db:
            db.execute(
                "INSERT INTO snapshots (id, organization_id, status, created_at, updated_at) "
                "VALUES ('s1', 'o', 'indexed', 'now', 'now')"
            )
        with ComplianceDB(path) as db:
            assert db.fetchone("SELECT id FROM snapshots")["id"] == "s1"
            assert db.fetchone("SELECT version FROM schema_version")["version"] == 1
        assert (tmp_path / ".repo-compliance" / ".gitignore").exists()

    def test_transaction_rolls_back(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO snapshots (id, organization_id, status, created_at, updated_at) "
                    "VALUES ('s1', 'o', 'indexed', 'now', 'now')"
                )
                raise RuntimeError("abort")
        assert db.fetchone("SELECT COUNT(*) AS n FROM snapshots")["n"] == 0

    def test_not_connected(self):
        with pytest.raises(RuntimeError):
            ComplianceDB().conn


class TestSnapshotStore:
    def test_register_requires_directory(self, snapshots, tmp_path):
        with pytest.raises(ValidationError):
            snapshots.register(ORG, str(tmp_path / "missing"))

    def test_register_requires_organization(self, snapshots, sample_repo):
        with pytest.raises(ValidationError):
            snapshots.register("", str(sample_repo))

    def test_scoped_reads(self, snapshots, indexed_snapshot):
        assert snapshots.get(indexed_snapshot.id, ORG).name == "payments"
        assert snapshots.get(indexed_snapshot.id, OTHER_ORG) is None
        with pytest.raises(NotFoundError):
            snapshots.require(indexed_snapshot.id, OTHER_ORG)
        assert [s.id for s in snapshots.list_for_organization(ORG)] == [indexed_snapshot.id]

    def test_illegal_transition_refused(self, snapshots, indexed_snapshot):
        assert not snapshots.transition(indexed_snapshot.id, SnapshotStatus.ANALYZED)
        assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.INDEXED

    def test_lifecycle_timestamps(self, snapshots, indexed_snapshot):
        assert snapshots.transition(indexed_snapshot.id, SnapshotStatus.ANALYZING)
        assert snapshots.transition(indexed_snapshot.id, SnapshotStatus.FAILED, "disk full")

        snapshot = snapshots.get(indexed_snapshot.id)
        assert snapshot.analysis_started_at is not None
        assert snapshot.error_message == "disk full"
        assert not snapshots.transition(indexed_snapshot.id, SnapshotStatus.ANALYZING)


class TestRunStore:
    @pytest.fixture
    def runs(self, db, snapshots):
        return RunStore(db, snapshots)

    def test_create_run(self, runs, snapshots, indexed_snapshot, sample_repo):
        run, extracted_path = runs.create_run(
            indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL, "Repository Overview"
        )

        assert run.phase_status is PhaseStatus.PENDING
        assert run.phase == "Repository Overview"
        assert run.progress == 0
        assert extracted_path == str(sample_repo.resolve())
        assert snapshots.get(indexed_snapshot.id).status is SnapshotStatus.ANALYZING

    def test_active_run_conflicts(self, runs, indexed_snapshot):
        runs.create_run(indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL)
        with pytest.raises(ConflictError):
            runs.create_run(indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL)

    def test_unique_index_backs_the_check(self, db, runs, indexed_snapshot):
        runs.create_run(indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL)
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO analysis_runs (id, snapshot_id, analysis_depth, phase_status) "
                "VALUES ('dup', ?, 'full', 'running')",
                (indexed_snapshot.id,),
            )

    def test_state_machine(self, runs, indexed_snapshot):
        run, _ = runs.create_run(indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL)

        assert runs.mark_running(run.id)
        assert not runs.mark_running(run.id)

        runs.update_phase(run.id, "Data Protection", 57)
        assert runs.get(run.id).progress == 57

        completed = runs.complete(run.id, {"files_analyzed": 12, "findings_generated": 8})
        assert completed.phase_status is PhaseStatus.COMPLETED
        assert completed.progress == 100
        assert completed.files_analyzed == 12

        assert runs.fail(run.id, "late") is None
        runs.update_phase(run.id, "Gap Identification", 86)
        assert runs.get(run.id).progress == 100

    def test_create_run_raises_when_row_cannot_be_read_back(self, runs, indexed_snapshot):
        with patch.object(RunStore, "get", return_value=None):
            with pytest.raises(NotFoundError):
                runs.create_run(indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL)

    def test_get_scoped(self, runs, indexed_snapshot):
        run, _ = runs.create_run(indexed_snapshot.id, ORG, ["SOC2"], AnalysisDepth.FULL)
        assert runs.get_scoped(run.id, ORG).id == run.id
        assert runs.get_scoped(run.id, OTHER_ORG) is None


class TestAuditLog:
    def test_record_and_read(self, db):
        audit = AuditLog(db)
        audit.record("create", "repository_findings", "snap-1", ORG, USER, {"findings_created": 2})

        (event,) = audit.events_for("repository_findings", "snap-1")
        assert event.action == "create"
        assert event.organization_id == ORG
        assert event.metadata == {"findings_created": 2}

    def test_record_never_raises(self, caplog):
        db = ComplianceDB()
        db.connect()
        db.close()

        with caplog.at_level(logging.WARNING, logger="repo_compliance"):
            AuditLog(db).record("delete", "repository_findings", "snap-1", ORG, USER)
        assert "Audit write failed" in caplog.text
