"""Analysis run rows and their state machine.

Runs move ``pending -> running -> completed | failed``. Terminal runs are
never written again; every update is guarded on the current status.
"""

import json
import sqlite3
from typing import Any, Optional

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..logging_config import get_logger
from .database import ComplianceDB, new_id, utcnow
from .models import (
    RUN_TRANSITIONS,
    AnalysisDepth,
    AnalysisRun,
    PhaseStatus,
    SnapshotStatus,
)
from .snapshots import SnapshotStore

logger = get_logger(__name__)

_ACTIVE = (PhaseStatus.PENDING.value, PhaseStatus.RUNNING.value)


class RunStore:
    def __init__(self, db: ComplianceDB, snapshots: Optional[SnapshotStore] = None) -> None:
        self.db = db
        self.snapshots = snapshots or SnapshotStore(db)

    def create_run(
        self,
        snapshot_id: str,
        organization_id: str,
        frameworks: list[str],
        depth: AnalysisDepth,
        initial_phase: Optional[str] = None,
    ) -> tuple[AnalysisRun, str]:
        """Atomically admit a new run for an indexed snapshot.

        The snapshot check, the active-run check, the insert and the
        snapshot's move to ``analyzing`` share one immediate transaction.

        Returns:
            The pending run and the snapshot's extracted path

        Raises:
            NotFoundError: Snapshot missing or owned by another organization
            ValidationError: Snapshot is not ``indexed``
            ConflictError: A pending or running run already exists
        """
        try:
            with self.db.transaction(immediate=True) as conn:
                snapshot = self.snapshots.require(snapshot_id, organization_id)

                active = conn.execute(
                    "SELECT id FROM analysis_runs WHERE snapshot_id = ? AND phase_status IN (?, ?)",
                    (snapshot_id, *_ACTIVE),
                ).fetchone()
                if active is not None:
                    raise _already_running(snapshot_id, active["id"])

                if snapshot.status is not SnapshotStatus.INDEXED:
                    raise ValidationError(
                        "Repository must be indexed before analysis",
                        details={"snapshot_id": snapshot_id, "status": snapshot.status.value},
                    )

                run_id = new_id()
                now = utcnow()
                conn.execute(
                    """
                    INSERT INTO analysis_runs (
                        id, snapshot_id, frameworks, analysis_depth, phase, phase_status,
                        progress, started_at
                    ) VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                    """,
                    (
                        run_id,
                        snapshot_id,
                        json.dumps(frameworks),
                        depth.value,
                        initial_phase,
                        PhaseStatus.PENDING.value,
                        now,
                    ),
                )
                self.snapshots.transition(snapshot_id, SnapshotStatus.ANALYZING, conn=conn)
        except sqlite3.IntegrityError as e:
            # Partial unique index caught a concurrent writer
            raise _already_running(snapshot_id, None) from e

        run = self.get(run_id)
        if run is None:
            raise NotFoundError("Analysis run not found", details={"run_id": run_id})
        return run, snapshot.extracted_path or ""

    def get(self, run_id: str) -> Optional[AnalysisRun]:
        row = self.db.fetchone("SELECT * FROM analysis_runs WHERE id = ?", (run_id,))
        return AnalysisRun.from_row(row) if row is not None else None

    def get_scoped(self, run_id: str, organization_id: str) -> Optional[AnalysisRun]:
        """Load a run only if its snapshot belongs to *organization_id*."""
        row = self.db.fetchone(
            """
            SELECT r.* FROM analysis_runs r
            JOIN snapshots s ON s.id = r.snapshot_id
            WHERE r.id = ? AND s.organization_id = ?
            """,
            (run_id, organization_id),
        )
        return AnalysisRun.from_row(row) if row is not None else None

    def list_for_snapshot(self, snapshot_id: str) -> list[AnalysisRun]:
        rows = self.db.fetchall(
            "SELECT * FROM analysis_runs WHERE snapshot_id = ? ORDER BY started_at",
            (snapshot_id,),
        )
        return [AnalysisRun.from_row(r) for r in rows]

    def mark_running(self, run_id: str) -> bool:
        """``pending -> running``. False if the run is not pending."""
        return self._transition(run_id, PhaseStatus.RUNNING) is not None

    def update_phase(self, run_id: str, phase: str, progress: int) -> None:
        """Record the current phase; ignored once the run is terminal."""
        self.db.execute(
            "UPDATE analysis_runs SET phase = ?, progress = ? WHERE id = ? AND phase_status = ?",
            (phase, progress, run_id, PhaseStatus.RUNNING.value),
        )

    def complete(self, run_id: str, metrics: dict[str, Any]) -> Optional[AnalysisRun]:
        """Mark a run completed with its final metrics.

        Returns the updated run, or None when the run was already terminal.
        """
        return self._transition(
            run_id,
            PhaseStatus.COMPLETED,
            {
                "progress": 100,
                "files_analyzed": int(metrics.get("files_analyzed", 0)),
                "findings_generated": int(metrics.get("findings_generated", 0)),
                "llm_calls_made": int(metrics.get("llm_calls_made", 0)),
                "tokens_used": int(metrics.get("tokens_used", 0)),
                "cost_estimate": float(metrics.get("cost_estimate", 0.0)),
                "completed_at": utcnow(),
            },
        )

    def fail(self, run_id: str, error_message: str) -> Optional[AnalysisRun]:
        """Mark a run failed. Returns None when it was already terminal."""
        return self._transition(
            run_id,
            PhaseStatus.FAILED,
            {"error_message": error_message, "completed_at": utcnow()},
        )

    def _transition(
        self, run_id: str, new_status: PhaseStatus, fields: Optional[dict[str, Any]] = None
    ) -> Optional[AnalysisRun]:
        fields = dict(fields or {})
        with self.db.transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT phase_status FROM analysis_runs WHERE id = ?", (run_id,)
            ).fetchone()
            if row is None:
                return None
            current = PhaseStatus(row["phase_status"])
            if new_status not in RUN_TRANSITIONS[current]:
                logger.debug(
                    "Ignoring run %s transition %s -> %s", run_id, current.value, new_status.value
                )
                return None

            fields["phase_status"] = new_status.value
            assignments = ", ".join(f"{name} = ?" for name in fields)
            conn.execute(
                f"UPDATE analysis_runs SET {assignments} WHERE id = ? AND phase_status = ?",
                (*fields.values(), run_id, current.value),
            )
        return self.get(run_id)


def _already_running(snapshot_id: str, run_id: Optional[str]) -> ConflictError:
    details = {"snapshot_id": snapshot_id}
    if run_id:
        details["run_id"] = run_id
    return ConflictError("An analysis is already running for this repository", details=details)
