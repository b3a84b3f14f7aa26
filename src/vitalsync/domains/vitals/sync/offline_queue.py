"""Offline sync queue: durable FIFO of pending writes with replay on reconnect.

States::

    DISCONNECTED --(online)--> FLUSHING --(drained or stopped)--> IDLE
    DISCONNECTED --(online, nothing queued)--> IDLE

Replay is strictly FIFO. An entry is removed only after its write succeeds;
the first failure stops the flush, bumps that entry's attempt counter and
leaves it (and everything behind it) in place for the next trigger. Entries
are never dropped automatically.

Triggers are a reconnect, an explicit flush, and any write submitted while
online behind a backlog, which starts a background flush.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from vitalsync.core.storage.queue_store import SyncQueueStore
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import SyncQueueEntry

logger = logging.getLogger(__name__)

ADD_VITALS = "ADD_VITALS"
ACK_NOTIFICATION = "ACK_NOTIFICATION"

QueueState = Literal["DISCONNECTED", "FLUSHING", "IDLE"]
WriteHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class SubmitResult:
    """Outcome of a write submitted through the queue."""

    status: Literal["written", "queued"]
    action: str
    entry_id: str | None = None
    result: Any = None


@dataclass
class FlushReport:
    replayed: list[str] = field(default_factory=list)
    failed_entry_id: str | None = None
    error: str | None = None
    remaining: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "replayed": list(self.replayed),
            "failed_entry_id": self.failed_entry_id,
            "error": self.error,
            "remaining": self.remaining,
        }


class OfflineSyncQueue:
    """Write path that tolerates disconnection.

    Usage::

        queue = OfflineSyncQueue(store, {ADD_VITALS: save_vitals})
        await queue.submit(ADD_VITALS, record.to_dict())   # written or queued
        await queue.set_online(False)
        await queue.submit(ADD_VITALS, other.to_dict())    # queued
        await queue.set_online(True)                        # replays in order

    ``flush()`` is single-flight: a caller arriving while a flush runs awaits
    that same flush. Entries enqueued during a flush are replayed by a follow-up
    flush once it finishes without a failure.
    """

    def __init__(
        self,
        store: SyncQueueStore,
        handlers: dict[str, WriteHandler] | None = None,
        *,
        online: bool = True,
    ) -> None:
        self._store = store
        self._handlers: dict[str, WriteHandler] = dict(handlers or {})
        self._online = online
        self._flush_task: asyncio.Task[FlushReport] | None = None

    def register_handler(self, action: str, handler: WriteHandler) -> None:
        self._handlers[action] = handler

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def flushing(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    @property
    def state(self) -> QueueState:
        if self.flushing:
            return "FLUSHING"
        if not self._online:
            return "DISCONNECTED"
        return "IDLE"

    def pending_count(self) -> int:
        return self._store.count()

    def pending(self) -> list[SyncQueueEntry]:
        return self._store.entries()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(self, action: str, payload: dict[str, Any]) -> SyncQueueEntry:
        """Append a write to the durable queue without attempting it."""
        if action not in self._handlers:
            raise ValueError(f"No write handler registered for action {action!r}")
        return self._store.append(action, payload)

    async def submit(self, action: str, payload: dict[str, Any]) -> SubmitResult:
        """Write through when online with nothing queued ahead; otherwise enqueue.

        A write that fails with ``DependencyUnavailable`` is enqueued instead of
        surfaced. Any other exception (bad payload) propagates to the caller.
        """
        handler = self._handlers.get(action)
        if handler is None:
            raise ValueError(f"No write handler registered for action {action!r}")

        if self._online and not self.flushing:
            if self._store.count() == 0:
                try:
                    result = await handler(payload)
                    return SubmitResult(status="written", action=action, result=result)
                except DependencyUnavailable as exc:
                    logger.warning("%s write failed (%s); queueing for replay", action, exc)
            else:
                # Online with a backlog: queue behind it and replay in the background.
                entry = self._store.append(action, payload)
                self.schedule_flush()
                return SubmitResult(status="queued", action=action, entry_id=entry.id)

        entry = self._store.append(action, payload)
        return SubmitResult(status="queued", action=action, entry_id=entry.id)

    # ------------------------------------------------------------------
    # Connectivity and replay
    # ------------------------------------------------------------------

    async def set_online(self, online: bool) -> FlushReport | None:
        """Observe a connectivity change. Going online triggers a flush."""
        was_online = self._online
        self._online = online
        if online == was_online:
            return None
        if not online:
            logger.info("Sync queue DISCONNECTED (%d pending)", self._store.count())
            return None
        if self._store.count() == 0:
            logger.info("Sync queue online; nothing to replay")
            return FlushReport()
        return await self.flush()

    async def flush(self) -> FlushReport:
        """Replay queued writes in FIFO order. Joins an in-progress flush."""
        if self._flush_task is not None and not self._flush_task.done():
            return await asyncio.shield(self._flush_task)
        if not self._online:
            return FlushReport(remaining=self._store.count())

        return await asyncio.shield(self._start_flush())

    def schedule_flush(self) -> bool:
        """Start a background flush when online and idle with entries pending.

        Returns True if a flush is now running (started here or already running).
        """
        if self.flushing:
            return True
        if not self._online or self._store.count() == 0:
            return False
        self._start_flush()
        return True

    async def wait_idle(self) -> None:
        """Wait until no flush (foreground or background) is running."""
        while self._flush_task is not None and not self._flush_task.done():
            await asyncio.shield(self._flush_task)

    def _start_flush(self) -> asyncio.Task[FlushReport]:
        self._flush_task = asyncio.ensure_future(self._drain())
        self._flush_task.add_done_callback(self._flush_done)
        return self._flush_task

    def _flush_done(self, task: asyncio.Task[FlushReport]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync queue flush aborted: %s", type(exc).__name__)
            return
        report = task.result()
        # Entries appended while this flush ran were not in its snapshot.
        if report.failed_entry_id is None and report.remaining and self._online:
            self.schedule_flush()

    async def _drain(self) -> FlushReport:
        snapshot = self._store.entries()
        report = FlushReport()
        logger.info("Sync queue FLUSHING %d entries", len(snapshot))

        for entry in snapshot:
            if not self._online:
                logger.info("Connectivity lost during flush; stopping")
                break
            handler = self._handlers.get(entry.action)
            try:
                if handler is None:
                    raise DependencyUnavailable("sync", f"no handler for {entry.action}")
                await handler(entry.payload)
            except Exception as exc:
                detail = f"{type(exc).__name__}: {exc}"
                attempts = self._store.record_failure(entry.id, detail)
                logger.warning(
                    "Replay of %s entry %s failed (attempt %d): %s",
                    entry.action,
                    entry.id,
                    attempts,
                    type(exc).__name__,
                )
                report.failed_entry_id = entry.id
                report.error = detail
                break
            self._store.remove(entry.id)
            report.replayed.append(entry.id)

        report.remaining = self._store.count()
        logger.info(
            "Sync queue IDLE (replayed=%d, remaining=%d)", len(report.replayed), report.remaining
        )
        return report
