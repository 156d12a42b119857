"""Persisted records: snapshots, analysis runs, findings, tasks, audit events."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..controls.models import EvidenceReference, FindingStatus
from ..signals.models import Confidence


class SnapshotStatus(Enum):
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    INDEXED = "indexed"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    FAILED = "failed"


# Legal snapshot transitions. The pipeline only drives the last two rows.
SNAPSHOT_TRANSITIONS: dict[SnapshotStatus, frozenset[SnapshotStatus]] = {
    SnapshotStatus.UPLOADED: frozenset({SnapshotStatus.EXTRACTING, SnapshotStatus.FAILED}),
    SnapshotStatus.EXTRACTING: frozenset({SnapshotStatus.INDEXED, SnapshotStatus.FAILED}),
    SnapshotStatus.INDEXED: frozenset({SnapshotStatus.ANALYZING}),
    SnapshotStatus.ANALYZING: frozenset({SnapshotStatus.ANALYZED, SnapshotStatus.FAILED}),
    SnapshotStatus.ANALYZED: frozenset(),
    SnapshotStatus.FAILED: frozenset(),
}


class PhaseStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PhaseStatus.COMPLETED, PhaseStatus.FAILED)


RUN_TRANSITIONS: dict[PhaseStatus, frozenset[PhaseStatus]] = {
    PhaseStatus.PENDING: frozenset({PhaseStatus.RUNNING, PhaseStatus.FAILED}),
    PhaseStatus.RUNNING: frozenset({PhaseStatus.COMPLETED, PhaseStatus.FAILED}),
    PhaseStatus.COMPLETED: frozenset(),
    PhaseStatus.FAILED: frozenset(),
}


class AnalysisDepth(Enum):
    STRUCTURE_ONLY = "structure_only"
    SECURITY_RELEVANT = "security_relevant"
    FULL = "full"

    @classmethod
    def parse(cls, value: "str | AnalysisDepth") -> Optional["AnalysisDepth"]:
        if isinstance(value, AnalysisDepth):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class TaskPriority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


class TaskCategory(Enum):
    CODE_CHANGE = "code_change"
    MISSING_EVIDENCE = "missing_evidence"


def _loads(value: Optional[str], default: Any) -> Any:
    if value is None or value == "":
        return default
    return json.loads(value)


@dataclass
class Snapshot:
    id: str
    organization_id: str
    status: SnapshotStatus
    extracted_path: Optional[str]
    name: Optional[str] = None
    error_message: Optional[str] = None
    analysis_started_at: Optional[str] = None
    analysis_completed_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Snapshot":
        return cls(
            id=row["id"],
            organization_id=row["organization_id"],
            status=SnapshotStatus(row["status"]),
            extracted_path=row["extracted_path"],
            name=row["name"],
            error_message=row["error_message"],
            analysis_started_at=row["analysis_started_at"],
            analysis_completed_at=row["analysis_completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "status": self.status.value,
            "extracted_path": self.extracted_path,
            "name": self.name,
            "error_message": self.error_message,
            "analysis_started_at": self.analysis_started_at,
            "analysis_completed_at": self.analysis_completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class AnalysisRun:
    """One execution of the phase pipeline against a snapshot."""

    id: str
    snapshot_id: str
    frameworks: list[str]
    analysis_depth: AnalysisDepth
    phase: Optional[str]
    phase_status: PhaseStatus
    progress: int = 0
    files_analyzed: int = 0
    findings_generated: int = 0
    llm_calls_made: int = 0
    tokens_used: int = 0
    cost_estimate: float = 0.0
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase_status.is_terminal

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AnalysisRun":
        return cls(
            id=row["id"],
            snapshot_id=row["snapshot_id"],
            frameworks=_loads(row["frameworks"], []),
            analysis_depth=AnalysisDepth(row["analysis_depth"]),
            phase=row["phase"],
            phase_status=PhaseStatus(row["phase_status"]),
            progress=row["progress"],
            files_analyzed=row["files_analyzed"],
            findings_generated=row["findings_generated"],
            llm_calls_made=row["llm_calls_made"],
            tokens_used=row["tokens_used"],
            cost_estimate=row["cost_estimate"],
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "frameworks": list(self.frameworks),
            "analysis_depth": self.analysis_depth.value,
            "phase": self.phase,
            "phase_status": self.phase_status.value,
            "progress": self.progress,
            "files_analyzed": self.files_analyzed,
            "findings_generated": self.findings_generated,
            "llm_calls_made": self.llm_calls_made,
            "tokens_used": self.tokens_used,
            "cost_estimate": self.cost_estimate,
            "error_message": self.error_message,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class HumanOverride:
    """A reviewer's explicit change of verdict, stored verbatim."""

    original_status: str
    new_status: str
    reason: str
    evidence: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HumanOverride":
        return cls(
            original_status=data["original_status"],
            new_status=data["new_status"],
            reason=data.get("reason", ""),
            evidence=data.get("evidence"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "original_status": self.original_status,
            "new_status": self.new_status,
            "reason": self.reason,
        }
        if self.evidence is not None:
            data["evidence"] = self.evidence
        return data


@dataclass
class RepositoryFinding:
    id: str
    snapshot_id: str
    organization_id: str
    control_id: str
    framework: str
    status: FindingStatus
    confidence_level: Confidence
    signal_type: str
    summary: str
    details: dict[str, Any]
    evidence_references: list[EvidenceReference]
    recommendation: str
    ai_model: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    human_override: Optional[HumanOverride] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RepositoryFinding":
        override = _loads(row["human_override"], None)
        return cls(
            id=row["id"],
            snapshot_id=row["snapshot_id"],
            organization_id=row["organization_id"],
            control_id=row["control_id"],
            framework=row["framework"],
            status=FindingStatus(row["status"]),
            confidence_level=Confidence(row["confidence_level"]),
            signal_type=row["signal_type"],
            summary=row["summary"],
            details=_loads(row["details"], {}),
            evidence_references=[
                EvidenceReference.from_dict(r) for r in _loads(row["evidence_references"], [])
            ],
            recommendation=row["recommendation"],
            ai_model=row["ai_model"],
            reviewed_by=row["reviewed_by"],
            reviewed_at=row["reviewed_at"],
            human_override=HumanOverride.from_dict(override) if override else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "organization_id": self.organization_id,
            "control_id": self.control_id,
            "framework": self.framework,
            "status": self.status.value,
            "confidence_level": self.confidence_level.value,
            "signal_type": self.signal_type,
            "summary": self.summary,
            "details": self.details,
            "evidence_references": [r.to_dict() for r in self.evidence_references],
            "recommendation": self.recommendation,
            "ai_model": self.ai_model,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
            "human_override": self.human_override.to_dict() if self.human_override else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RepositoryTask:
    id: str
    snapshot_id: str
    finding_id: str
    title: str
    description: str
    category: TaskCategory
    priority: TaskPriority
    status: str = "open"
    assigned_to_role: str = "user"
    created_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RepositoryTask":
        return cls(
            id=row["id"],
            snapshot_id=row["snapshot_id"],
            finding_id=row["finding_id"],
            title=row["title"],
            description=row["description"],
            category=TaskCategory(row["category"]),
            priority=TaskPriority(row["priority"]),
            status=row["status"],
            assigned_to_role=row["assigned_to_role"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "finding_id": self.finding_id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "priority": self.priority.value,
            "status": self.status,
            "assigned_to_role": self.assigned_to_role,
            "created_at": self.created_at,
        }


@dataclass
class AuditEvent:
    action: str
    entity_type: str
    entity_id: str
    organization_id: str
    user_id: Optional[str]
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AuditEvent":
        return cls(
            id=row["id"],
            action=row["action"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            organization_id=row["organization_id"],
            user_id=row["user_id"],
            metadata=_loads(row["metadata"], {}),
            created_at=row["created_at"],
        )


# ── Query and command shapes ──────────────────────────────────────


@dataclass
class FindingFilters:
    """Filters for ``FindingsStore.get_findings``.

    Unknown ``status`` / ``confidence_level`` values are ignored rather
    than rejected.
    """

    page: int = 1
    limit: Optional[int] = None
    status: Optional[str] = None
    confidence_level: Optional[str] = None
    framework: Optional[str] = None
    signal_type: Optional[str] = None
    control_id: Optional[str] = None


@dataclass
class FindingsPage:
    findings: list[RepositoryFinding]
    total: int
    page: int
    limit: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
        }


@dataclass
class FindingReview:
    status: Optional[str] = None
    human_override: Optional[HumanOverride] = None


@dataclass
class FindingsSummary:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_framework: dict[str, int] = field(default_factory=dict)
    by_confidence: dict[str, int] = field(default_factory=dict)
    critical_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_framework": dict(self.by_framework),
            "by_confidence": dict(self.by_confidence),
            "critical_count": self.critical_count,
        }
