"""Findings store: persisted control findings, remediation tasks and reviews.

Every read and write is scoped to an organization. A finding or snapshot
owned by another organization is reported as NotFound.
"""

import json
from collections import Counter
from typing import Optional

from ..config import ScanConfig
from ..controls.models import ControlFinding, FindingStatus
from ..exceptions import ErrorCode, NotFoundError, ValidationError, wrap_unexpected
from ..logging_config import get_logger
from ..signals.models import Confidence
from .audit import AuditLog
from .database import ComplianceDB, new_id, utcnow
from .models import (
    FindingFilters,
    FindingReview,
    FindingsPage,
    FindingsSummary,
    RepositoryFinding,
    RepositoryTask,
    TaskCategory,
    TaskPriority,
)

logger = get_logger(__name__)

ENTITY_FINDINGS = "repository_findings"
ENTITY_FINDING = "repository_finding"


class FindingsStore:
    def __init__(
        self,
        db: ComplianceDB,
        audit: Optional[AuditLog] = None,
        config: Optional[ScanConfig] = None,
    ) -> None:
        self.db = db
        self.audit = audit or AuditLog(db)
        self.config = config or ScanConfig()

    # ── writes ────────────────────────────────────────────────────

    def create_findings(
        self,
        snapshot_id: str,
        organization_id: str,
        findings: list[ControlFinding],
        actor_user_id: Optional[str],
    ) -> list[RepositoryFinding]:
        """Persist mapper output for a snapshot.

        Findings are inserted in one transaction. A task is then generated
        for each fail/partial finding; a task that cannot be written is
        logged and skipped without touching the findings.

        Raises:
            NotFoundError: Snapshot unknown to the organization
            AppError: FINDINGS_CREATE_ERROR for unexpected failures
        """
        try:
            self._require_snapshot(snapshot_id, organization_id)

            now = utcnow()
            rows = []
            for finding in findings:
                rows.append(
                    (
                        new_id(),
                        snapshot_id,
                        organization_id,
                        finding.control_id,
                        finding.framework,
                        finding.status.value,
                        finding.confidence_level.value,
                        finding.signal_type,
                        finding.summary,
                        json.dumps(finding.details, default=str),
                        json.dumps([r.to_dict() for r in finding.evidence_references]),
                        finding.recommendation,
                        finding.ai_model,
                        now,
                        now,
                    )
                )

            with self.db.transaction() as conn:
                conn.executemany(
                    """
                    INSERT INTO repository_findings (
                        id, snapshot_id, organization_id, control_id, framework, status,
                        confidence_level, signal_type, summary, details, evidence_references,
                        recommendation, ai_model, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )

            created = [self._load(row[0]) for row in rows]

            tasks_created = 0
            for finding in created:
                if not finding.status.is_actionable:
                    continue
                try:
                    self._create_task(finding, organization_id)
                    tasks_created += 1
                except Exception as e:
                    logger.warning("Failed to create task for finding %s: %s", finding.id, e)

            frameworks = sorted({f.framework for f in findings})
            self.audit.record(
                "create",
                ENTITY_FINDINGS,
                snapshot_id,
                organization_id,
                actor_user_id,
                {"findings_created": len(created), "frameworks": frameworks},
            )
            logger.info(
                "Created %d findings and %d tasks for snapshot %s",
                len(created),
                tasks_created,
                snapshot_id,
            )
            return created
        except Exception as e:
            logger.error("Failed to create findings for snapshot %s: %s", snapshot_id, e)
            raise wrap_unexpected(
                e, "Failed to create repository findings", ErrorCode.FINDINGS_CREATE_ERROR
            ) from e

    def review_finding(
        self,
        finding_id: str,
        organization_id: str,
        reviewer_user_id: str,
        review: FindingReview,
    ) -> RepositoryFinding:
        """Apply a human review to a finding.

        With an override, its ``new_status`` becomes the status and the
        override is stored verbatim. An explicit status that disagrees with
        the override is rejected.
        """
        try:
            existing = self.get_finding_by_id(finding_id, organization_id)
            new_status = self._review_status(review)

            now = utcnow()
            assignments = ["reviewed_by = ?", "reviewed_at = ?", "updated_at = ?"]
            params: list = [reviewer_user_id, now, now]
            if new_status is not None:
                assignments.append("status = ?")
                params.append(new_status.value)
            if review.human_override is not None:
                assignments.append("human_override = ?")
                params.append(json.dumps(review.human_override.to_dict()))
            params.append(finding_id)

            self.db.execute(
                f"UPDATE repository_findings SET {', '.join(assignments)} WHERE id = ?", params
            )

            self.audit.record(
                "update",
                ENTITY_FINDING,
                finding_id,
                organization_id,
                reviewer_user_id,
                {
                    "original_status": existing.status.value,
                    "new_status": new_status.value if new_status else None,
                    "had_human_override": review.human_override is not None,
                },
            )
            logger.info(
                "Finding %s reviewed by %s: %s -> %s",
                finding_id,
                reviewer_user_id,
                existing.status.value,
                new_status.value if new_status else existing.status.value,
            )
            return self._load(finding_id)
        except Exception as e:
            logger.error("Failed to review finding %s: %s", finding_id, e)
            raise wrap_unexpected(e, "Failed to review finding", ErrorCode.FINDING_REVIEW_ERROR) from e

    def delete_snapshot_findings(
        self, snapshot_id: str, organization_id: str, actor_user_id: Optional[str]
    ) -> int:
        """Delete a snapshot's findings and their tasks; returns the count."""
        try:
            self._require_snapshot(snapshot_id, organization_id)
            with self.db.transaction() as conn:
                conn.execute(
                    "DELETE FROM repository_tasks WHERE snapshot_id = ? AND organization_id = ?",
                    (snapshot_id, organization_id),
                )
                deleted = conn.execute(
                    "DELETE FROM repository_findings WHERE snapshot_id = ? AND organization_id = ?",
                    (snapshot_id, organization_id),
                ).rowcount

            self.audit.record(
                "delete",
                ENTITY_FINDINGS,
                snapshot_id,
                organization_id,
                actor_user_id,
                {"findings_deleted": deleted},
            )
            logger.info("Deleted %d findings for snapshot %s", deleted, snapshot_id)
            return deleted
        except Exception as e:
            logger.error("Failed to delete findings for snapshot %s: %s", snapshot_id, e)
            raise wrap_unexpected(
                e, "Failed to delete repository findings", ErrorCode.FINDINGS_DELETE_ERROR
            ) from e

    # ── reads ─────────────────────────────────────────────────────

    def get_findings(
        self,
        snapshot_id: str,
        organization_id: str,
        filters: Optional[FindingFilters] = None,
    ) -> FindingsPage:
        """Page through a snapshot's findings, newest first."""
        filters = filters or FindingFilters()
        try:
            self._require_snapshot(snapshot_id, organization_id)

            limit = filters.limit or self.config.findings_default_limit
            limit = max(1, min(limit, self.config.findings_max_limit))
            page = max(1, filters.page or 1)

            where = ["snapshot_id = ?", "organization_id = ?"]
            params: list = [snapshot_id, organization_id]
            if filters.status and FindingStatus.parse(filters.status) is not None:
                where.append("status = ?")
                params.append(filters.status)
            if filters.confidence_level and filters.confidence_level in _CONFIDENCE_VALUES:
                where.append("confidence_level = ?")
                params.append(filters.confidence_level)
            if filters.framework:
                where.append("framework = ?")
                params.append(filters.framework)
            if filters.signal_type:
                where.append("signal_type = ?")
                params.append(filters.signal_type)
            if filters.control_id:
                where.append("control_id = ?")
                params.append(filters.control_id)
            clause = " AND ".join(where)

            total = self.db.fetchone(
                f"SELECT COUNT(*) AS n FROM repository_findings WHERE {clause}", params
            )["n"]
            rows = self.db.fetchall(
                f"""
                SELECT * FROM repository_findings WHERE {clause}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, (page - 1) * limit),
            )
            return FindingsPage(
                findings=[RepositoryFinding.from_row(r) for r in rows],
                total=total,
                page=page,
                limit=limit,
            )
        except Exception as e:
            logger.error("Failed to retrieve findings for snapshot %s: %s", snapshot_id, e)
            raise wrap_unexpected(
                e, "Failed to retrieve repository findings", ErrorCode.FINDINGS_RETRIEVE_ERROR
            ) from e

    def get_finding_by_id(self, finding_id: str, organization_id: str) -> RepositoryFinding:
        try:
            row = self.db.fetchone(
                """
                SELECT f.* FROM repository_findings f
                JOIN snapshots s ON s.id = f.snapshot_id
                WHERE f.id = ? AND s.organization_id = ?
                """,
                (finding_id, organization_id),
            )
            if row is None:
                raise NotFoundError("Finding not found", details={"finding_id": finding_id})
            return RepositoryFinding.from_row(row)
        except Exception as e:
            logger.error("Failed to get finding %s: %s", finding_id, e)
            raise wrap_unexpected(e, "Failed to retrieve finding", ErrorCode.FINDING_RETRIEVE_ERROR) from e

    def get_findings_summary(self, snapshot_id: str, organization_id: str) -> FindingsSummary:
        """Counts by status, framework and confidence.

        ``critical_count`` counts findings that fail with high confidence.
        """
        try:
            self._require_snapshot(snapshot_id, organization_id)
            rows = self.db.fetchall(
                """
                SELECT status, framework, confidence_level FROM repository_findings
                WHERE snapshot_id = ? AND organization_id = ?
                """,
                (snapshot_id, organization_id),
            )
            by_status: Counter = Counter()
            by_framework: Counter = Counter()
            by_confidence: Counter = Counter()
            critical = 0
            for row in rows:
                by_status[row["status"]] += 1
                by_framework[row["framework"]] += 1
                by_confidence[row["confidence_level"]] += 1
                if (
                    row["status"] == FindingStatus.FAIL.value
                    and row["confidence_level"] == Confidence.HIGH.value
                ):
                    critical += 1
            return FindingsSummary(
                total=len(rows),
                by_status=dict(by_status),
                by_framework=dict(by_framework),
                by_confidence=dict(by_confidence),
                critical_count=critical,
            )
        except Exception as e:
            logger.error("Failed to summarize findings for snapshot %s: %s", snapshot_id, e)
            raise wrap_unexpected(
                e, "Failed to get findings summary", ErrorCode.FINDINGS_SUMMARY_ERROR
            ) from e

    def get_tasks(self, snapshot_id: str, organization_id: str) -> list[RepositoryTask]:
        """Remediation tasks generated for a snapshot, oldest first."""
        try:
            self._require_snapshot(snapshot_id, organization_id)
            rows = self.db.fetchall(
                """
                SELECT * FROM repository_tasks
                WHERE snapshot_id = ? AND organization_id = ?
                ORDER BY created_at, rowid
                """,
                (snapshot_id, organization_id),
            )
            return [RepositoryTask.from_row(r) for r in rows]
        except Exception as e:
            logger.error("Failed to retrieve tasks for snapshot %s: %s", snapshot_id, e)
            raise wrap_unexpected(
                e, "Failed to retrieve repository findings", ErrorCode.FINDINGS_RETRIEVE_ERROR
            ) from e

    # ── helpers ───────────────────────────────────────────────────

    def _require_snapshot(self, snapshot_id: str, organization_id: str) -> None:
        row = self.db.fetchone(
            "SELECT id FROM snapshots WHERE id = ? AND organization_id = ?",
            (snapshot_id, organization_id),
        )
        if row is None:
            raise NotFoundError("Repository snapshot not found", details={"snapshot_id": snapshot_id})

    def _load(self, finding_id: str) -> RepositoryFinding:
        row = self.db.fetchone("SELECT * FROM repository_findings WHERE id = ?", (finding_id,))
        if row is None:
            raise NotFoundError("Finding not found", details={"finding_id": finding_id})
        return RepositoryFinding.from_row(row)

    def _create_task(self, finding: RepositoryFinding, organization_id: str) -> RepositoryTask:
        task = build_task(finding)
        self.db.execute(
            """
            INSERT INTO repository_tasks (
                id, snapshot_id, organization_id, finding_id, title, description,
                category, priority, status, assigned_to_role, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.snapshot_id,
                organization_id,
                task.finding_id,
                task.title,
                task.description,
                task.category.value,
                task.priority.value,
                task.status,
                task.assigned_to_role,
                task.created_at,
            ),
        )
        logger.debug(
            "Task created for %s (%s, %s)", finding.control_id, task.priority.value, task.category.value
        )
        return task

    @staticmethod
    def _review_status(review: FindingReview) -> Optional[FindingStatus]:
        explicit = None
        if review.status is not None:
            explicit = FindingStatus.parse(review.status)
            if explicit is None:
                raise ValidationError(
                    f"Unknown finding status '{review.status}'",
                    details={"status": review.status},
                )

        if review.human_override is None:
            return explicit

        overridden = FindingStatus.parse(review.human_override.new_status)
        if overridden is None:
            raise ValidationError(
                f"Unknown finding status '{review.human_override.new_status}'",
                details={"status": review.human_override.new_status},
            )
        if explicit is not None and explicit is not overridden:
            raise ValidationError(
                "Review status conflicts with the override's new status",
                details={"status": explicit.value, "new_status": overridden.value},
            )
        return overridden


_CONFIDENCE_VALUES = frozenset(c.value for c in Confidence)


def build_task(finding: RepositoryFinding) -> RepositoryTask:
    """Remediation task for a fail/partial finding."""
    failed = finding.status is FindingStatus.FAIL
    verb = "Fix" if failed else "Review"

    if failed and finding.confidence_level is Confidence.HIGH:
        priority = TaskPriority.CRITICAL
    elif failed:
        priority = TaskPriority.HIGH
    else:
        priority = TaskPriority.MEDIUM

    evidence = "\n".join(f"- {ref.file_path}" for ref in finding.evidence_references) or "- none"
    description = (
        f"Control: {finding.control_id} ({finding.framework})\n"
        f"Status: {finding.status.value}\n"
        f"Confidence: {finding.confidence_level.value}\n\n"
        f"Summary:\n{finding.summary}\n\n"
        f"Recommendation:\n{finding.recommendation}\n\n"
        f"Evidence:\n{evidence}"
    )
    return RepositoryTask(
        id=new_id(),
        snapshot_id=finding.snapshot_id,
        finding_id=finding.id,
        title=f"{verb}: {finding.control_id} - {finding.summary}",
        description=description,
        category=TaskCategory.CODE_CHANGE if failed else TaskCategory.MISSING_EVIDENCE,
        priority=priority,
        created_at=utcnow(),
    )
