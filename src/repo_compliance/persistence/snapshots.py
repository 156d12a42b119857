"""Snapshot rows: the ingestion boundary and status transitions."""

import sqlite3
from contextlib import nullcontext
from pathlib import Path
from typing import Optional

from ..exceptions import NotFoundError, ValidationError
from ..logging_config import get_logger
from .database import ComplianceDB, new_id, utcnow
from .models import SNAPSHOT_TRANSITIONS, Snapshot, SnapshotStatus

logger = get_logger(__name__)


class SnapshotStore:
    """Reads and transitions repository snapshots.

    Uploading and extracting archives happens elsewhere; ``register``
    records a snapshot that is already extracted on disk.
    """

    def __init__(self, db: ComplianceDB) -> None:
        self.db = db

    def register(
        self,
        organization_id: str,
        extracted_path: str,
        name: Optional[str] = None,
        status: SnapshotStatus = SnapshotStatus.INDEXED,
    ) -> Snapshot:
        """Insert a snapshot row for an already-extracted tree."""
        if not organization_id:
            raise ValidationError("organization_id is required")
        path = Path(extracted_path)
        if status is SnapshotStatus.INDEXED and not path.is_dir():
            raise ValidationError(
                f"Extracted path is not a directory: {extracted_path}",
                details={"extracted_path": str(extracted_path)},
            )

        snapshot_id = new_id()
        now = utcnow()
        self.db.execute(
            """
            INSERT INTO snapshots (
                id, organization_id, name, status, extracted_path, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot_id,
                organization_id,
                name or path.name,
                status.value,
                str(path.resolve()) if path.exists() else str(path),
                now,
                now,
            ),
        )
        logger.info("Registered snapshot %s (%s) for %s", snapshot_id, status.value, organization_id)
        return self.require(snapshot_id, organization_id)

    def get(self, snapshot_id: str, organization_id: Optional[str] = None) -> Optional[Snapshot]:
        """Load a snapshot, scoped to *organization_id* when given."""
        if organization_id is None:
            row = self.db.fetchone("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,))
        else:
            row = self.db.fetchone(
                "SELECT * FROM snapshots WHERE id = ? AND organization_id = ?",
                (snapshot_id, organization_id),
            )
        return Snapshot.from_row(row) if row is not None else None

    def require(self, snapshot_id: str, organization_id: str) -> Snapshot:
        snapshot = self.get(snapshot_id, organization_id)
        if snapshot is None:
            raise NotFoundError("Repository snapshot not found", details={"snapshot_id": snapshot_id})
        return snapshot

    def list_for_organization(self, organization_id: str) -> list[Snapshot]:
        rows = self.db.fetchall(
            "SELECT * FROM snapshots WHERE organization_id = ? ORDER BY created_at DESC",
            (organization_id,),
        )
        return [Snapshot.from_row(r) for r in rows]

    def transition(
        self,
        snapshot_id: str,
        new_status: SnapshotStatus,
        error_message: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Move a snapshot along its lifecycle.

        Illegal transitions are refused (returns False) rather than applied.
        Pass *conn* to take part in an enclosing transaction.
        """
        c = conn if conn is not None else self.db.conn
        with self.db.transaction() if conn is None else nullcontext(c):
            row = c.execute("SELECT status FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
            if row is None:
                return False
            current = SnapshotStatus(row["status"])
            if new_status not in SNAPSHOT_TRANSITIONS[current]:
                logger.warning(
                    "Refusing snapshot %s transition %s -> %s",
                    snapshot_id,
                    current.value,
                    new_status.value,
                )
                return False

            now = utcnow()
            assignments = ["status = ?", "updated_at = ?"]
            params: list = [new_status.value, now]
            if new_status is SnapshotStatus.ANALYZING:
                assignments += ["analysis_started_at = ?", "analysis_completed_at = NULL", "error_message = NULL"]
                params.append(now)
            elif new_status is SnapshotStatus.ANALYZED:
                assignments.append("analysis_completed_at = ?")
                params.append(now)
            elif new_status is SnapshotStatus.FAILED:
                assignments.append("error_message = ?")
                params.append(error_message)
            params.append(snapshot_id)
            c.execute(f"UPDATE snapshots SET {', '.join(assignments)} WHERE id = ?", params)

        logger.debug("Snapshot %s -> %s", snapshot_id, new_status.value)
        return True
