"""Admin monitoring loop: periodic poll of the patient directory.

Each successful tick replaces the patient list wholesale. A failed tick keeps
the previous list. Emergency flags are sticky: once a patient is flagged
(critical vitals or manual SOS) the flag stays until an admin resolves it,
and an :class:`EmergencyEscalation` event is emitted only on the transition
into the flagged state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from vitalsync.domains.vitals.connectors import PatientDirectory
from vitalsync.domains.vitals.domain_logic.models import (
    PatientSnapshot,
    RiskAssessment,
    utcnow,
)
from vitalsync.domains.vitals.domain_logic.risk_rules import (
    classify_by_rules,
    emergency_type_for,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
MANUAL_SOS = "Manual SOS"


class NotAuthenticatedError(PermissionError):
    """Raised when monitoring is started without an authenticated admin session."""


@dataclass(frozen=True)
class AdminSession:
    token: str
    admin_id: str = "admin"

    @property
    def authenticated(self) -> bool:
        return bool(self.token and self.token.strip())


@dataclass(frozen=True)
class EmergencyEscalation:
    """Emitted once when a patient enters the emergency state."""

    patient_id: str
    emergency_type: str
    detected_at: datetime
    assessment: RiskAssessment | None = None


EscalationListener = Callable[[EmergencyEscalation], None]


class PollHandle:
    """Handle returned by :meth:`AdminMonitor.start`; ``stop()`` cancels the loop."""

    def __init__(self, monitor: AdminMonitor, task: asyncio.Task[None]) -> None:
        self._monitor = monitor
        self._task = task

    @property
    def running(self) -> bool:
        return not self._task.done()

    def stop(self) -> None:
        self._monitor.stop()


@dataclass
class _EmergencyState:
    emergency_type: str
    since: datetime


class AdminMonitor:
    """Owns the admin console's live patient state.

    Usage::

        monitor = AdminMonitor(directory, interval_seconds=3.0)
        monitor.subscribe(on_emergency)
        handle = monitor.start(session)
        ...
        handle.stop()   # on logout
    """

    def __init__(
        self,
        directory: PatientDirectory,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._directory = directory
        self._interval = interval_seconds
        self._patients: list[PatientSnapshot] = []
        self._emergencies: dict[str, _EmergencyState] = {}
        self._listeners: list[EscalationListener] = []
        self._task: asyncio.Task[None] | None = None
        self._handle: PollHandle | None = None
        self._session: AdminSession | None = None
        self.last_refreshed: datetime | None = None
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, session: AdminSession) -> PollHandle:
        """Start polling. Must be called from a running event loop.

        Raises:
            NotAuthenticatedError: If the session carries no token.
        """
        if not session.authenticated:
            raise NotAuthenticatedError("Admin session is not authenticated")
        if self.running and self._handle is not None:
            return self._handle

        self._session = session
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._handle = PollHandle(self, self._task)
        logger.info(
            "Admin monitoring started by %s (interval=%.1fs)", session.admin_id, self._interval
        )
        return self._handle

    def stop(self) -> None:
        """Cancel the poll loop immediately. Safe to call when not running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("Admin monitoring stopped")
        self._task = None
        self._session = None

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self._interval)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def tick(self) -> bool:
        """Fetch the directory once and rebuild the patient list.

        Returns:
            True on success; False if the fetch failed (previous list kept).
        """
        try:
            fetched = await self._directory.list_patients()
        except Exception as exc:
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Patient directory poll failed (%s); keeping previous snapshot",
                           type(exc).__name__)
            return False

        now = utcnow()
        rebuilt: list[PatientSnapshot] = []
        events: list[EmergencyEscalation] = []
        for snapshot in fetched:
            updated, event = self._derive(snapshot, now)
            rebuilt.append(updated)
            if event is not None:
                events.append(event)

        self._patients = rebuilt
        self.last_refreshed = now
        self.last_error = None

        for event in events:
            self._emit(event)
        return True

    def _derive(
        self, snapshot: PatientSnapshot, now: datetime
    ) -> tuple[PatientSnapshot, EmergencyEscalation | None]:
        assessment = (
            classify_by_rules(snapshot.latest_vitals) if snapshot.latest_vitals else None
        )

        current_type: str | None = None
        if snapshot.is_emergency:
            current_type = snapshot.emergency_type or MANUAL_SOS
        elif assessment is not None and assessment.risk_level == "critical":
            current_type = emergency_type_for(snapshot.latest_vitals) or "Critical Vitals"

        event = None
        existing = self._emergencies.get(snapshot.patient_id)
        if existing is None and current_type is not None:
            existing = _EmergencyState(emergency_type=current_type, since=now)
            self._emergencies[snapshot.patient_id] = existing
            event = EmergencyEscalation(
                patient_id=snapshot.patient_id,
                emergency_type=current_type,
                detected_at=now,
                assessment=assessment,
            )

        updated = replace(
            snapshot,
            latest_assessment=assessment,
            is_emergency=existing is not None,
            emergency_type=existing.emergency_type if existing is not None else None,
        )
        return updated, event

    # ------------------------------------------------------------------
    # Resolution and events
    # ------------------------------------------------------------------

    async def resolve_emergency(self, patient_id: str) -> bool:
        """Clear a patient's emergency flag (and manual SOS).

        Returns:
            False if the patient was not flagged. A patient whose vitals are
            still critical is flagged again (with a new event) on the next tick.
        """
        if patient_id not in self._emergencies:
            return False
        await self._directory.clear_sos(patient_id)
        del self._emergencies[patient_id]
        self._patients = [
            replace(p, is_emergency=False, emergency_type=None)
            if p.patient_id == patient_id
            else p
            for p in self._patients
        ]
        logger.info("Emergency for patient %s resolved", patient_id)
        return True

    def subscribe(self, listener: EscalationListener) -> Callable[[], None]:
        """Register an escalation listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: EmergencyEscalation) -> None:
        logger.info("Emergency escalation: patient=%s type=%s", event.patient_id,
                    event.emergency_type)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Escalation listener failed for patient %s", event.patient_id)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def patients(self) -> list[PatientSnapshot]:
        return list(self._patients)

    def get_patient(self, patient_id: str) -> PatientSnapshot | None:
        for patient in self._patients:
            if patient.patient_id == patient_id:
                return patient
        return None

    def emergencies(self) -> list[PatientSnapshot]:
        return [p for p in self._patients if p.is_emergency]

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self._patients),
            "emergencies": sum(1 for p in self._patients if p.is_emergency),
            "connected": sum(1 for p in self._patients if p.device_connection_state == "connected"),
        }


@dataclass(eq=False)
class RecordingListener:
    """Listener that keeps every event it receives."""

    events: list[EmergencyEscalation] = field(default_factory=list)

    def __call__(self, event: EmergencyEscalation) -> None:
        self.events.append(event)
