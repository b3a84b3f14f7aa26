"""SQLite database management for the VitalSync local store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- One immutable row per observation; corrections point at the record they replace
CREATE TABLE IF NOT EXISTS vital_records (
    id                 TEXT PRIMARY KEY,
    subject_id         TEXT NOT NULL,
    timestamp          TEXT NOT NULL,
    source             TEXT NOT NULL,
    quality_confidence REAL NOT NULL,
    supersedes         TEXT,

    -- Encrypted JSON blob of the measurements
    vitals_enc         TEXT NOT NULL,

    created_at         TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS notifications (
    id              TEXT PRIMARY KEY,
    subject_id      TEXT NOT NULL,
    type            TEXT NOT NULL,
    severity        TEXT NOT NULL,
    message_enc     TEXT NOT NULL,
    anomalies_json  TEXT,
    timestamp       TEXT NOT NULL,
    acknowledged    INTEGER NOT NULL DEFAULT 0,
    action_required INTEGER NOT NULL DEFAULT 0,
    dedupe_key      TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS patients (
    id                      TEXT PRIMARY KEY,
    display_name            TEXT NOT NULL DEFAULT '',
    contact_enc             TEXT,
    device_connection_state TEXT NOT NULL DEFAULT 'unknown',
    sos_active              INTEGER NOT NULL DEFAULT 0,
    sos_triggered_at        TEXT,
    last_updated            TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_vitals_subject_ts    ON vital_records(subject_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_vitals_supersedes    ON vital_records(supersedes);
CREATE INDEX IF NOT EXISTS idx_notifications_subject ON notifications(subject_id, timestamp);
"""

# ---------------------------------------------------------------------------
# V2: Durable offline sync queue
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS sync_queue (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT NOT NULL UNIQUE,
    namespace   TEXT NOT NULL,
    action      TEXT NOT NULL,
    payload_enc TEXT NOT NULL,
    enqueued_at TEXT NOT NULL,
    attempts    INTEGER NOT NULL DEFAULT 0,
    last_error  TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_queue_ns ON sync_queue(namespace, seq);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class HealthDatabase:
    """SQLite database manager for the vitals store and the sync queue.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing and when no encryption key is set.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        conn = db.connection
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and ensure the schema exists. Idempotent."""
        if self._conn is not None:
            return

        try:
            if self._db_path != ":memory:":
                db_file = Path(self._db_path).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(db_file))
            else:
                self._conn = sqlite3.connect(":memory:")
        except (OSError, sqlite3.Error) as exc:
            raise DatabaseError(f"Cannot open database {self._db_path}: {exc}") from exc

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Vitals database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = self.connection
        conn.executescript(_SCHEMA_V1)

        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: sync_queue table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Vitals database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
