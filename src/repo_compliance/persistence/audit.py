"""Best-effort audit trail for state-changing operations."""

import json
from typing import Any, Optional

from ..logging_config import get_logger
from .database import ComplianceDB, utcnow
from .models import AuditEvent

logger = get_logger(__name__)


class AuditLog:
    """Records one audit event per state-changing operation.

    ``record`` never raises: a failed write is logged at warning and the
    calling operation carries on.
    """

    def __init__(self, db: ComplianceDB) -> None:
        self.db = db

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        organization_id: str,
        user_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            self.db.execute(
                """
                INSERT INTO audit_events (
                    action, entity_type, entity_id, organization_id, user_id, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    action,
                    entity_type,
                    entity_id,
                    organization_id,
                    user_id,
                    json.dumps(metadata or {}, default=str),
                    utcnow(),
                ),
            )
        except Exception as e:
            logger.warning(
                "Audit write failed for %s %s/%s: %s", action, entity_type, entity_id, e
            )
            return
        logger.debug("Audit: %s %s/%s by %s", action, entity_type, entity_id, user_id)

    def events_for(self, entity_type: str, entity_id: Optional[str] = None) -> list[AuditEvent]:
        """Events for an entity type (optionally one entity), oldest first."""
        if entity_id is None:
            rows = self.db.fetchall(
                "SELECT * FROM audit_events WHERE entity_type = ? ORDER BY id", (entity_type,)
            )
        else:
            rows = self.db.fetchall(
                "SELECT * FROM audit_events WHERE entity_type = ? AND entity_id = ? ORDER BY id",
                (entity_type, entity_id),
            )
        return [AuditEvent.from_row(r) for r in rows]
