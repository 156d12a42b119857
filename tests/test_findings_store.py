"""Tests for persistence/findings.py - findings, tasks, reviews, audit."""

from unittest.mock import patch

import pytest

from conftest import ORG, OTHER_ORG, USER
from repo_compliance.controls import ControlFinding, EvidenceReference, FindingStatus
from repo_compliance.exceptions import AppError, ErrorCode, NotFoundError, ValidationError
from repo_compliance.persistence import (
    AuditLog,
    FindingFilters,
    FindingReview,
    FindingsStore,
    HumanOverride,
    TaskCategory,
    TaskPriority,
)
from repo_compliance.signals import Confidence


def _finding(control_id, status, confidence=Confidence.MEDIUM, framework="SOC2"):
    return ControlFinding(
        control_id=control_id,
        framework=framework,
        status=status,
        confidence_level=confidence,
        signal_type="auth_jwt",
        summary=f"{control_id} summary",
        recommendation=f"{control_id} recommendation",
        details={"control_title": control_id},
        evidence_references=(EvidenceReference("src/auth.js", 3, 9, "jwt.sign("),),
    )


@pytest.fixture
def store(db):
    return FindingsStore(db)


@pytest.fixture
def created(store, indexed_snapshot):
    return store.create_findings(
        indexed_snapshot.id,
        ORG,
        [
            _finding("CC6.1", FindingStatus.PASS, Confidence.HIGH),
            _finding("CC6.2", FindingStatus.PARTIAL),
            _finding("CC6.3", FindingStatus.FAIL, Confidence.HIGH),
        ],
        USER,
    )


class TestCreateFindings:
    def test_persists_every_field(self, created, indexed_snapshot):
        by_control = {f.control_id: f for f in created}
        cc61 = by_control["CC6.1"]

        assert len(created) == 3
        assert cc61.snapshot_id == indexed_snapshot.id
        assert cc61.organization_id == ORG
        assert cc61.status is FindingStatus.PASS
        assert cc61.confidence_level is Confidence.HIGH
        assert cc61.details == {"control_title": "CC6.1"}
        assert cc61.evidence_references == [EvidenceReference("src/auth.js", 3, 9, "jwt.sign(")]
        assert cc61.reviewed_by is None

    def test_tasks_only_for_fail_and_partial(self, store, created, indexed_snapshot):
        tasks = store.get_tasks(indexed_snapshot.id, ORG)
        by_finding = {t.finding_id: t for t in tasks}
        by_control = {f.control_id: f for f in created}

        assert len(tasks) == 2
        assert by_control["CC6.1"].id not in by_finding

        fail_task = by_finding[by_control["CC6.3"].id]
        assert fail_task.priority is TaskPriority.CRITICAL
        assert fail_task.category is TaskCategory.CODE_CHANGE
        assert fail_task.title == "Fix: CC6.3 - CC6.3 summary"
        assert "CC6.3 recommendation" in fail_task.description

        partial_task = by_finding[by_control["CC6.2"].id]
        assert partial_task.priority is TaskPriority.MEDIUM
        assert partial_task.category is TaskCategory.MISSING_EVIDENCE
        assert partial_task.title.startswith("Review: CC6.2")

    def test_fail_with_medium_confidence_is_high_priority(self, store, indexed_snapshot):
        store.create_findings(indexed_snapshot.id, ORG, [_finding("CC7.2", FindingStatus.FAIL)], USER)
        (task,) = store.get_tasks(indexed_snapshot.id, ORG)
        assert task.priority is TaskPriority.HIGH

    def test_task_failure_does_not_lose_findings(self, store, indexed_snapshot):
        with patch.object(
            FindingsStore, "_create_task", side_effect=RuntimeError("task table locked")
        ) as create_task:
            created = store.create_findings(
                indexed_snapshot.id, ORG, [_finding("CC6.3", FindingStatus.FAIL)], USER
            )
        create_task.assert_called_once()

        assert len(created) == 1
        assert store.get_findings(indexed_snapshot.id, ORG).total == 1
        assert store.get_tasks(indexed_snapshot.id, ORG) == []

    def test_unknown_snapshot(self, store):
        with pytest.raises(NotFoundError):
            store.create_findings("missing", ORG, [_finding("CC6.1", FindingStatus.PASS)], USER)

    def test_cross_tenant_snapshot_is_not_found(self, store, indexed_snapshot):
        with pytest.raises(NotFoundError):
            store.create_findings(
                indexed_snapshot.id, OTHER_ORG, [_finding("CC6.1", FindingStatus.PASS)], USER
            )

    def test_unexpected_failure_wrapped(self, db, indexed_snapshot):
        class ExplodingDB:
            def fetchone(self, *args):
                raise RuntimeError("disk I/O error")

        store = FindingsStore(ExplodingDB(), audit=AuditLog(db))
        with pytest.raises(AppError) as exc_info:
            store.create_findings(indexed_snapshot.id, ORG, [], USER)
        assert exc_info.value.code is ErrorCode.FINDINGS_CREATE_ERROR

    def test_audit_event_recorded(self, store, created, indexed_snapshot):
        (event,) = store.audit.events_for("repository_findings", indexed_snapshot.id)
        assert event.action == "create"
        assert event.user_id == USER
        assert event.metadata == {"findings_created": 3, "frameworks": ["SOC2"]}


class TestGetFindings:
    def test_default_page(self, store, created, indexed_snapshot):
        page = store.get_findings(indexed_snapshot.id, ORG)
        assert page.total == 3
        assert page.page == 1
        assert page.limit == 50
        assert len(page.findings) == 3

    def test_limit_clamped(self, store, created, indexed_snapshot):
        page = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(limit=500))
        assert page.limit == 100

    def test_pagination(self, store, created, indexed_snapshot):
        first = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(page=1, limit=2))
        second = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(page=2, limit=2))
        assert len(first.findings) == 2
        assert len(second.findings) == 1
        ids = {f.id for f in first.findings} | {f.id for f in second.findings}
        assert ids == {f.id for f in created}

    def test_newest_first(self, store, indexed_snapshot):
        store.create_findings(indexed_snapshot.id, ORG, [_finding("OLD", FindingStatus.PASS)], USER)
        store.create_findings(indexed_snapshot.id, ORG, [_finding("NEW", FindingStatus.PASS)], USER)
        page = store.get_findings(indexed_snapshot.id, ORG)
        assert [f.control_id for f in page.findings] == ["NEW", "OLD"]

    def test_filters(self, store, created, indexed_snapshot):
        fails = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(status="fail"))
        assert [f.control_id for f in fails.findings] == ["CC6.3"]

        high = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(confidence_level="high"))
        assert {f.control_id for f in high.findings} == {"CC6.1", "CC6.3"}

        control = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(control_id="CC6.2"))
        assert control.total == 1

        other = store.get_findings(indexed_snapshot.id, ORG, FindingFilters(framework="NIST80053"))
        assert other.total == 0

    def test_unknown_filter_values_ignored(self, store, created, indexed_snapshot):
        page = store.get_findings(
            indexed_snapshot.id, ORG, FindingFilters(status="bogus", confidence_level="extreme")
        )
        assert page.total == 3

    def test_cross_tenant_is_not_found(self, store, created, indexed_snapshot):
        with pytest.raises(NotFoundError):
            store.get_findings(indexed_snapshot.id, OTHER_ORG)

    def test_get_finding_by_id_scoped(self, store, created):
        finding = created[0]
        assert store.get_finding_by_id(finding.id, ORG).id == finding.id
        with pytest.raises(NotFoundError):
            store.get_finding_by_id(finding.id, OTHER_ORG)


class TestReviewFinding:
    def _cc63(self, created):
        return next(f for f in created if f.control_id == "CC6.3")

    def test_plain_status_change(self, store, created):
        finding = self._cc63(created)
        updated = store.review_finding(finding.id, ORG, USER, FindingReview(status="needs_human"))

        assert updated.status is FindingStatus.NEEDS_HUMAN
        assert updated.reviewed_by == USER
        assert updated.reviewed_at is not None
        assert updated.human_override is None

    def test_override_sets_status_and_is_stored_verbatim(self, store, created):
        finding = self._cc63(created)
        override = HumanOverride(
            original_status="fail",
            new_status="pass",
            reason="RBAC enforced by the API gateway",
            evidence="gateway-policy.yaml",
        )
        updated = store.review_finding(finding.id, ORG, USER, FindingReview(human_override=override))

        assert updated.status is FindingStatus.PASS
        assert updated.human_override == override

    def test_conflicting_status_rejected(self, store, created):
        finding = self._cc63(created)
        override = HumanOverride(original_status="fail", new_status="pass", reason="ok")
        with pytest.raises(ValidationError):
            store.review_finding(
                finding.id, ORG, USER, FindingReview(status="partial", human_override=override)
            )
        assert store.get_finding_by_id(finding.id, ORG).status is FindingStatus.FAIL

    def test_unknown_status_rejected(self, store, created):
        with pytest.raises(ValidationError):
            store.review_finding(created[0].id, ORG, USER, FindingReview(status="maybe"))

    def test_cross_tenant_review_is_not_found(self, store, created):
        with pytest.raises(NotFoundError):
            store.review_finding(created[0].id, OTHER_ORG, USER, FindingReview(status="pass"))

    def test_review_audited(self, store, created):
        finding = self._cc63(created)
        override = HumanOverride(original_status="fail", new_status="not_applicable", reason="internal tool")
        store.review_finding(finding.id, ORG, USER, FindingReview(human_override=override))

        (event,) = store.audit.events_for("repository_finding", finding.id)
        assert event.action == "update"
        assert event.metadata == {
            "original_status": "fail",
            "new_status": "not_applicable",
            "had_human_override": True,
        }


class TestSummaryAndDelete:
    def test_summary_counts(self, store, created, indexed_snapshot):
        summary = store.get_findings_summary(indexed_snapshot.id, ORG)

        assert summary.total == 3
        assert summary.by_status == {"pass": 1, "partial": 1, "fail": 1}
        assert summary.by_framework == {"SOC2": 3}
        assert summary.by_confidence == {"high": 2, "medium": 1}
        assert summary.critical_count == 1

    def test_empty_summary(self, store, indexed_snapshot):
        summary = store.get_findings_summary(indexed_snapshot.id, ORG)
        assert summary.total == 0
        assert summary.critical_count == 0

    def test_delete_returns_count_and_removes_tasks(self, store, created, indexed_snapshot):
        assert store.delete_snapshot_findings(indexed_snapshot.id, ORG, USER) == 3
        assert store.get_findings(indexed_snapshot.id, ORG).total == 0
        assert store.get_tasks(indexed_snapshot.id, ORG) == []

        delete_events = [
            e for e in store.audit.events_for("repository_findings", indexed_snapshot.id)
            if e.action == "delete"
        ]
        assert delete_events[0].metadata == {"findings_deleted": 3}

    def test_delete_cross_tenant_is_not_found(self, store, created, indexed_snapshot):
        with pytest.raises(NotFoundError):
            store.delete_snapshot_findings(indexed_snapshot.id, OTHER_ORG, USER)
        assert store.get_findings(indexed_snapshot.id, ORG).total == 3
