"""Vitals repository: CRUD over the encrypted local store.

Mediates between domain objects (VitalRecord, HealthNotification) and the
SQLite database, using FieldEncryptor for the sensitive columns.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from vitalsync.core.storage.database import HealthDatabase
from vitalsync.core.storage.encryption import FieldEncryptor
from vitalsync.core.storage.models import PatientRecord
from vitalsync.domains.vitals.domain_logic.models import (
    HealthNotification,
    VitalRecord,
    parse_instant,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def to_storage_instant(value: datetime | str) -> str:
    """Fixed-width UTC ISO string, so lexical order equals time order."""
    if isinstance(value, str):
        value = parse_instant(value)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class VitalsRepository:
    """CRUD repository for vital records, notifications and the patient directory.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = VitalsRepository(db, FieldEncryptor(key))

        repo.save_vital_record(record)
        history = repo.list_vital_records("patient-1", since="2026-01-01T00:00:00Z")
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Vital records
    # ------------------------------------------------------------------

    def save_vital_record(self, record: VitalRecord) -> bool:
        """Persist a record. Idempotent on ``record.id``.

        Returns:
            True if the record was newly inserted, False if it already existed
            (e.g. a queued write replayed after a crash mid-flush).
        """
        conn = self._db.connection
        try:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO vital_records (
                    id, subject_id, timestamp, source, quality_confidence,
                    supersedes, vitals_enc
                ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.subject_id,
                    to_storage_instant(record.timestamp),
                    record.source,
                    record.quality_confidence,
                    record.supersedes,
                    self._enc.encrypt(record.measurements()),
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to save vital record {record.id}: {exc}") from exc

        inserted = cursor.rowcount == 1
        if inserted:
            logger.info("Saved vital record %s (subject=%s)", record.id, record.subject_id)
        else:
            logger.debug("Vital record %s already stored; ignoring replay", record.id)
        return inserted

    def get_vital_record(self, record_id: str) -> VitalRecord | None:
        row = self._db.connection.execute(
            "SELECT * FROM vital_records WHERE id = ?", (record_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list_vital_records(
        self,
        subject_id: str,
        *,
        since: str | None = None,
        until: str | None = None,
        limit: int = 500,
    ) -> list[VitalRecord]:
        """Query a subject's records.

        Args:
            subject_id: The patient.
            since: ISO 8601 lower bound (inclusive).
            until: ISO 8601 upper bound (inclusive).
            limit: Maximum results; the most recent ``limit`` are kept.

        Returns:
            Records in ascending time order.
        """
        conditions = ["subject_id = ?"]
        params: list[Any] = [subject_id]
        if since:
            conditions.append("timestamp >= ?")
            params.append(to_storage_instant(since))
        if until:
            conditions.append("timestamp <= ?")
            params.append(to_storage_instant(until))

        query = (
            "SELECT * FROM vital_records WHERE "
            + " AND ".join(conditions)
            + " ORDER BY timestamp DESC, created_at DESC LIMIT ?"
        )
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in reversed(rows)]

    def get_latest_vital_record(self, subject_id: str) -> VitalRecord | None:
        results = self.list_vital_records(subject_id, limit=1)
        return results[0] if results else None

    def count_vital_records(self, subject_id: str | None = None) -> int:
        conn = self._db.connection
        if subject_id is None:
            row = conn.execute("SELECT COUNT(*) FROM vital_records").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) FROM vital_records WHERE subject_id = ?", (subject_id,)
            ).fetchone()
        return row[0]

    def get_corrections(self, record_id: str) -> list[VitalRecord]:
        """Records that supersede ``record_id``, oldest first."""
        rows = self._db.connection.execute(
            "SELECT * FROM vital_records WHERE supersedes = ? ORDER BY timestamp ASC",
            (record_id,),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> VitalRecord:
        measurements = self._enc.decrypt(row["vitals_enc"]) or {}
        return VitalRecord(
            id=row["id"],
            subject_id=row["subject_id"],
            timestamp=parse_instant(row["timestamp"]),
            source=row["source"],
            quality_confidence=row["quality_confidence"],
            supersedes=row["supersedes"],
            **measurements,
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def save_notification(self, notification: HealthNotification, dedupe_key: str) -> bool:
        """Persist a notification unless one with the same dedupe key exists.

        Returns:
            True if stored, False if it was a duplicate.
        """
        conn = self._db.connection
        try:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO notifications (
                    id, subject_id, type, severity, message_enc, anomalies_json,
                    timestamp, acknowledged, action_required, dedupe_key
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    notification.id,
                    notification.subject_id,
                    notification.type,
                    notification.severity,
                    self._enc.encrypt(notification.message),
                    json.dumps(list(notification.anomalies), separators=(",", ":")),
                    to_storage_instant(notification.timestamp),
                    int(notification.acknowledged),
                    int(notification.action_required),
                    dedupe_key,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to save notification: {exc}") from exc
        return cursor.rowcount == 1

    def get_notification(self, notification_id: str) -> HealthNotification | None:
        row = self._db.connection.execute(
            "SELECT * FROM notifications WHERE id = ?", (notification_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    def list_notifications(
        self,
        subject_id: str | None = None,
        *,
        unacknowledged_only: bool = False,
        limit: int = 100,
    ) -> list[HealthNotification]:
        """Notifications, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if subject_id:
            conditions.append("subject_id = ?")
            params.append(subject_id)
        if unacknowledged_only:
            conditions.append("acknowledged = 0")

        query = "SELECT * FROM notifications"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def acknowledge_notification(self, notification_id: str) -> bool:
        """Set ``acknowledged``. One-way and idempotent.

        Returns:
            True if the notification exists (acknowledged now or earlier).
        """
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE notifications SET acknowledged = 1 WHERE id = ? AND acknowledged = 0",
            (notification_id,),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info("Acknowledged notification %s", notification_id)
            return True
        return self.get_notification(notification_id) is not None

    def _row_to_notification(self, row: sqlite3.Row) -> HealthNotification:
        return HealthNotification(
            id=row["id"],
            subject_id=row["subject_id"],
            type=row["type"],
            severity=row["severity"],
            message=self._enc.decrypt(row["message_enc"]) or "",
            timestamp=parse_instant(row["timestamp"]),
            acknowledged=bool(row["acknowledged"]),
            action_required=bool(row["action_required"]),
            anomalies=tuple(json.loads(row["anomalies_json"] or "[]")),
        )

    # ------------------------------------------------------------------
    # Patient directory
    # ------------------------------------------------------------------

    def upsert_patient(self, patient: PatientRecord) -> str:
        """Insert or update a patient, leaving the SOS state untouched on update."""
        conn = self._db.connection
        pid = patient.id or self._new_id()
        conn.execute(
            """INSERT INTO patients (
                id, display_name, contact_enc, device_connection_state, last_updated
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                display_name = excluded.display_name,
                contact_enc = excluded.contact_enc,
                device_connection_state = excluded.device_connection_state,
                last_updated = excluded.last_updated""",
            (
                pid,
                patient.display_name,
                self._enc.encrypt(patient.emergency_contact or None),
                patient.device_connection_state,
                patient.last_updated or self._now_iso(),
            ),
        )
        conn.commit()
        return pid

    def touch_patient(
        self, patient_id: str, *, device_connection_state: str | None = None
    ) -> None:
        """Ensure a directory row exists for a subject and bump ``last_updated``."""
        now = self._now_iso()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO patients (id, device_connection_state, last_updated)
               VALUES (?, COALESCE(?, 'unknown'), ?)
               ON CONFLICT(id) DO UPDATE SET
                   device_connection_state = COALESCE(?, device_connection_state),
                   last_updated = excluded.last_updated""",
            (patient_id, device_connection_state, now, device_connection_state),
        )
        conn.commit()

    def get_patient(self, patient_id: str) -> PatientRecord | None:
        row = self._db.connection.execute(
            "SELECT * FROM patients WHERE id = ?", (patient_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_patient(row)

    def list_patients(self) -> list[PatientRecord]:
        rows = self._db.connection.execute(
            "SELECT * FROM patients ORDER BY display_name, id"
        ).fetchall()
        return [self._row_to_patient(row) for row in rows]

    def set_sos(self, patient_id: str) -> None:
        """Flag a manual SOS. Creates the patient row if it does not exist yet."""
        now = self._now_iso()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO patients (id, sos_active, sos_triggered_at, last_updated)
               VALUES (?, 1, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   sos_active = 1,
                   sos_triggered_at = excluded.sos_triggered_at,
                   last_updated = excluded.last_updated""",
            (patient_id, now, now),
        )
        conn.commit()
        logger.info("Manual SOS flagged for patient %s", patient_id)

    def clear_sos(self, patient_id: str) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE patients SET sos_active = 0, last_updated = ? WHERE id = ?",
            (self._now_iso(), patient_id),
        )
        conn.commit()
        return cursor.rowcount == 1

    def _row_to_patient(self, row: sqlite3.Row) -> PatientRecord:
        return PatientRecord(
            id=row["id"],
            display_name=row["display_name"] or "",
            emergency_contact=self._enc.decrypt(row["contact_enc"] or "") or {},
            device_connection_state=row["device_connection_state"],
            sos_active=bool(row["sos_active"]),
            sos_triggered_at=row["sos_triggered_at"],
            last_updated=row["last_updated"] or "",
        )
