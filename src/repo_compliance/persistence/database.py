"""SQLite-backed compliance database (snapshots, runs, findings, tasks, audit)."""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from ..logging_config import get_logger

logger = get_logger(__name__)

# Current schema version (bump when tables change).
_SCHEMA_VERSION = 1

MEMORY = ":memory:"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> str:
    """ISO-8601 UTC timestamp with microseconds, sortable as text."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class ComplianceDB:
    """Manages the compliance SQLite database.

    A single connection is shared by every thread; all access goes through
    an ``RLock``. The connection runs in autocommit mode and multi-statement
    work is wrapped in :meth:`transaction`.

    Usage::

        with ComplianceDB(".repo-compliance/compliance.db") as db:
            with db.transaction(immediate=True) as conn:
                conn.execute(...)
    """

    def __init__(self, db_path: str = MEMORY) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        """Return the active connection. Raises if not connected."""
        if self._conn is None:
            raise RuntimeError("ComplianceDB is not connected. Use as context manager or call connect().")
        return self._conn

    # ── lifecycle ─────────────────────────────────────────────────

    def _ensure_dir(self) -> None:
        """Create the database directory with a .gitignore so it stays untracked."""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)
        gitignore = db_dir / ".gitignore"
        if db_dir.name == ".repo-compliance" and not gitignore.exists():
            gitignore.write_text("*\n")

    def connect(self) -> sqlite3.Connection:
        """Open (or create) the database and run migrations."""
        with self._lock:
            if self._conn is not None:
                return self._conn
            if self.db_path != MEMORY:
                self._ensure_dir()
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            if self.db_path != MEMORY:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.row_factory = sqlite3.Row
            self._conn = conn
            self._migrate()
            logger.debug("Compliance DB connected at %s", self.db_path)
            return conn

    def close(self) -> None:
        """Close the connection if open."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ComplianceDB":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ── access ────────────────────────────────────────────────────

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block atomically.

        ``immediate=True`` takes the write lock up front (``BEGIN IMMEDIATE``)
        so a check-then-insert cannot interleave with another writer.
        """
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute one statement; returns the affected row count."""
        with self._lock:
            return self.conn.execute(sql, params).rowcount

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # ── migration ─────────────────────────────────────────────────

    def _migrate(self) -> None:
        """Idempotently create / upgrade all tables."""
        c = self.conn

        c.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER NOT NULL
            )
            """
        )
        row = c.execute("SELECT version FROM schema_version").fetchone()
        if row is None:
            c.execute("INSERT INTO schema_version (version) VALUES (?)", (_SCHEMA_VERSION,))

        # ── snapshots ────────────────────────────────────────────
        c.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                id                    TEXT PRIMARY KEY,
                organization_id       TEXT NOT NULL,
                name                  TEXT,
                status                TEXT NOT NULL,
                extracted_path        TEXT,
                error_message         TEXT,
                analysis_started_at   TEXT,
                analysis_completed_at TEXT,
                created_at            TEXT NOT NULL,
                updated_at            TEXT NOT NULL
            )
            """
        )

        # ── analysis_runs ────────────────────────────────────────
        c.execute(
            """
            CREATE TABLE IF NOT EXISTS analysis_runs (
                id                 TEXT PRIMARY KEY,
                snapshot_id        TEXT NOT NULL REFERENCES snapshots(id) ON DELETE CASCADE,
                frameworks         TEXT NOT NULL DEFAULT '[]',
                analysis_depth     TEXT NOT NULL,
                phase              TEXT,
                phase_status       TEXT NOT NULL,
                progress           INTEGER NOT NULL DEFAULT 0,
                files_analyzed     INTEGER NOT NULL DEFAULT 0,
                findings_generated INTEGER NOT NULL DEFAULT 0,
                llm_calls_made     INTEGER NOT NULL DEFAULT 0,
                tokens_used        INTEGER NOT NULL DEFAULT 0,
                cost_estimate      REAL    NOT NULL DEFAULT 0,
                error_message      TEXT,
                started_at         TEXT,
                completed_at       TEXT
            )
            """
        )

        # ── repository_findings ──────────────────────────────────
        c.execute(
            """
            CREATE TABLE IF NOT EXISTS repository_findings (
                id                  TEXT PRIMARY KEY,
                snapshot_id         TEXT NOT NULL REFERENCES snapshots(id) ON DELETE CASCADE,
                organization_id     TEXT NOT NULL,
                control_id          TEXT NOT NULL,
                framework           TEXT NOT NULL,
                status              TEXT NOT NULL,
                confidence_level    TEXT NOT NULL,
                signal_type         TEXT NOT NULL,
                summary             TEXT NOT NULL,
                details             TEXT NOT NULL DEFAULT '{}',
                evidence_references TEXT NOT NULL DEFAULT '[]',
                recommendation      TEXT NOT NULL DEFAULT '',
                ai_model            TEXT,
                reviewed_by         TEXT,
                reviewed_at         TEXT,
                human_override      TEXT,
                created_at          TEXT NOT NULL,
                updated_at          TEXT NOT NULL
            )
            """
        )

        # ── repository_tasks ─────────────────────────────────────
        c.execute(
            """
            CREATE TABLE IF NOT EXISTS repository_tasks (
                id               TEXT PRIMARY KEY,
                snapshot_id      TEXT NOT NULL REFERENCES snapshots(id) ON DELETE CASCADE,
                organization_id  TEXT NOT NULL,
                finding_id       TEXT NOT NULL REFERENCES repository_findings(id) ON DELETE CASCADE,
                title            TEXT NOT NULL,
                description      TEXT NOT NULL DEFAULT '',
                category         TEXT NOT NULL,
                priority         TEXT NOT NULL,
                status           TEXT NOT NULL DEFAULT 'open',
                assigned_to_role TEXT NOT NULL DEFAULT 'user',
                created_at       TEXT NOT NULL
            )
            """
        )

        # ── audit_events ─────────────────────────────────────────
        c.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_events (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                action          TEXT NOT NULL,
                entity_type     TEXT NOT NULL,
                entity_id       TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                user_id         TEXT,
                metadata        TEXT NOT NULL DEFAULT '{}',
                created_at      TEXT NOT NULL
            )
            """
        )

        # ── indexes ──────────────────────────────────────────────
        c.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_org ON snapshots(organization_id)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_runs_snapshot ON analysis_runs(snapshot_id)")
        # At most one pending/running run per snapshot
        c.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_one_active
            ON analysis_runs(snapshot_id)
            WHERE phase_status IN ('pending', 'running')
            """
        )
        c.execute(
            "CREATE INDEX IF NOT EXISTS idx_findings_snapshot ON repository_findings(snapshot_id, organization_id)"
        )
        c.execute("CREATE INDEX IF NOT EXISTS idx_tasks_snapshot ON repository_tasks(snapshot_id)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_tasks_finding ON repository_tasks(finding_id)")
        c.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_events(entity_type, entity_id)"
        )
