"""SQLite persistence for snapshots, analysis runs, findings and audit events."""

from .audit import AuditLog
from .database import ComplianceDB
from .findings import FindingsStore, build_task
from .models import (
    AnalysisDepth,
    AnalysisRun,
    AuditEvent,
    FindingFilters,
    FindingReview,
    FindingsPage,
    FindingsSummary,
    HumanOverride,
    PhaseStatus,
    RepositoryFinding,
    RepositoryTask,
    Snapshot,
    SnapshotStatus,
    TaskCategory,
    TaskPriority,
)
from .runs import RunStore
from .snapshots import SnapshotStore

__all__ = [
    "ComplianceDB",
    "AuditLog",
    "FindingsStore",
    "RunStore",
    "SnapshotStore",
    "build_task",
    "AnalysisDepth",
    "AnalysisRun",
    "AuditEvent",
    "FindingFilters",
    "FindingReview",
    "FindingsPage",
    "FindingsSummary",
    "HumanOverride",
    "PhaseStatus",
    "RepositoryFinding",
    "RepositoryTask",
    "Snapshot",
    "SnapshotStatus",
    "TaskCategory",
    "TaskPriority",
]
