"""Durable backing store for the offline sync queue.

Entries live in the ``sync_queue`` table under a fixed namespace, ordered by
an autoincrement sequence, so FIFO order survives process restarts. Payloads
are encrypted like every other health field.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from vitalsync.core.storage.database import HealthDatabase
from vitalsync.core.storage.encryption import FieldEncryptor
from vitalsync.core.storage.repository import RepositoryError
from vitalsync.domains.vitals.domain_logic.models import SyncQueueEntry

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "vitalsync_offline_data"


class SyncQueueStore:
    """Append/remove list of pending writes. Never reorders.

    Usage::

        store = SyncQueueStore(db, encryptor)
        entry = store.append("ADD_VITALS", record.to_dict())
        for entry in store.entries():
            ...
            store.remove(entry.id)
    """

    def __init__(
        self,
        database: HealthDatabase,
        encryptor: FieldEncryptor,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self._db = database
        self._enc = encryptor
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def append(self, action: str, payload: dict[str, Any]) -> SyncQueueEntry:
        entry = SyncQueueEntry(
            id=str(uuid.uuid4()),
            action=action,
            payload=payload,
            enqueued_at=datetime.now(timezone.utc).isoformat(),
        )
        conn = self._db.connection
        try:
            conn.execute(
                """INSERT INTO sync_queue (id, namespace, action, payload_enc, enqueued_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    self._namespace,
                    entry.action,
                    self._enc.encrypt(entry.payload),
                    entry.enqueued_at,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to enqueue {action}: {exc}") from exc
        logger.info("Queued %s entry %s", action, entry.id)
        return entry

    def entries(self) -> list[SyncQueueEntry]:
        """All pending entries in enqueue order."""
        rows = self._db.connection.execute(
            """SELECT id, action, payload_enc, enqueued_at, attempts, last_error
               FROM sync_queue WHERE namespace = ? ORDER BY seq ASC""",
            (self._namespace,),
        ).fetchall()
        return [
            SyncQueueEntry(
                id=row["id"],
                action=row["action"],
                payload=self._enc.decrypt(row["payload_enc"]) or {},
                enqueued_at=row["enqueued_at"],
                attempts=row["attempts"],
                last_error=row["last_error"],
            )
            for row in rows
        ]

    def remove(self, entry_id: str) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            "DELETE FROM sync_queue WHERE id = ? AND namespace = ?",
            (entry_id, self._namespace),
        )
        conn.commit()
        return cursor.rowcount == 1

    def record_failure(self, entry_id: str, error: str) -> int:
        """Increment the attempt counter of an entry.

        Returns:
            The new attempt count (0 if the entry no longer exists).
        """
        conn = self._db.connection
        conn.execute(
            """UPDATE sync_queue SET attempts = attempts + 1, last_error = ?
               WHERE id = ? AND namespace = ?""",
            (error, entry_id, self._namespace),
        )
        conn.commit()
        row = conn.execute(
            "SELECT attempts FROM sync_queue WHERE id = ? AND namespace = ?",
            (entry_id, self._namespace),
        ).fetchone()
        return row[0] if row is not None else 0

    def count(self) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM sync_queue WHERE namespace = ?", (self._namespace,)
        ).fetchone()
        return row[0]
