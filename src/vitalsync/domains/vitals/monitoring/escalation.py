"""Manual SOS escalation: locate, call, notify contacts, share location.

Each step is independent. A failing step raises ``EscalationStepFailure``
from its own method and is reported per step by :meth:`trigger_sos`; it
never cancels the others. Every step can be retried on its own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from vitalsync.domains.vitals.connectors import (
    ContactNotifier,
    GeoPosition,
    Geolocator,
    LocationSharer,
    PatientDirectory,
    Telephony,
    maps_link,
)
from vitalsync.domains.vitals.domain_logic.errors import EscalationStepFailure

logger = logging.getLogger(__name__)

DEFAULT_EMERGENCY_NUMBER = "108"
DEFAULT_GEOLOCATION_TIMEOUT_SECONDS = 5.0

StepName = Literal["flag_sos", "capture_location", "call", "notify_contacts", "share_location"]


@dataclass
class StepOutcome:
    step: StepName
    ok: bool
    detail: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "ok": self.ok, "detail": self.detail, **self.data}


@dataclass
class EscalationReport:
    subject_id: str
    position: GeoPosition | None = None
    steps: list[StepOutcome] = field(default_factory=list)

    @property
    def any_succeeded(self) -> bool:
        return any(s.ok for s in self.steps if s.step != "capture_location")

    @property
    def failed_steps(self) -> list[str]:
        return [s.step for s in self.steps if not s.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "position": (
                {"latitude": self.position.latitude, "longitude": self.position.longitude}
                if self.position
                else None
            ),
            "map_link": maps_link(self.position) if self.position else None,
            "steps": [s.to_dict() for s in self.steps],
            "failed_steps": self.failed_steps,
        }


class EscalationCoordinator:
    """Runs the patient-side emergency flow against host collaborators.

    Usage::

        coordinator = EscalationCoordinator(geolocator, telephony, notifier, sharer, directory)
        report = await coordinator.trigger_sos("patient-1")
        if "call" in report.failed_steps:
            await coordinator.call_emergency_services()   # retry just that step
    """

    def __init__(
        self,
        geolocator: Geolocator,
        telephony: Telephony,
        notifier: ContactNotifier,
        sharer: LocationSharer,
        directory: PatientDirectory | None = None,
        *,
        emergency_number: str = DEFAULT_EMERGENCY_NUMBER,
        geolocation_timeout_seconds: float = DEFAULT_GEOLOCATION_TIMEOUT_SECONDS,
    ) -> None:
        self._geolocator = geolocator
        self._telephony = telephony
        self._notifier = notifier
        self._sharer = sharer
        self._directory = directory
        self._emergency_number = emergency_number
        self._geo_timeout = geolocation_timeout_seconds

    # ------------------------------------------------------------------
    # Individual steps
    # ------------------------------------------------------------------

    async def capture_location(self) -> GeoPosition:
        try:
            return await asyncio.wait_for(
                self._geolocator.get_current_position(
                    high_accuracy=True, timeout_seconds=self._geo_timeout
                ),
                timeout=self._geo_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EscalationStepFailure(
                "capture_location", f"timed out after {self._geo_timeout:.0f}s"
            ) from exc
        except Exception as exc:
            raise EscalationStepFailure("capture_location", str(exc) or type(exc).__name__) from exc

    async def call_emergency_services(self) -> str:
        try:
            await self._telephony.dial(self._emergency_number)
        except Exception as exc:
            raise EscalationStepFailure("call", str(exc) or type(exc).__name__) from exc
        return self._emergency_number

    async def notify_contacts(self, subject_id: str, position: GeoPosition | None) -> int:
        message = "Emergency alert: I need help. This is an automated SOS message."
        try:
            return await self._notifier.notify_contacts(subject_id, message, position)
        except Exception as exc:
            raise EscalationStepFailure("notify_contacts", str(exc) or type(exc).__name__) from exc

    async def share_location(self, position: GeoPosition | None) -> str:
        if position is None:
            raise EscalationStepFailure("share_location", "no location available to share")
        url = maps_link(position)
        try:
            await self._sharer.share(
                "Emergency Location", "I need help. Here's my current location:", url
            )
        except Exception as exc:
            raise EscalationStepFailure("share_location", str(exc) or type(exc).__name__) from exc
        return url

    # ------------------------------------------------------------------
    # Full flow
    # ------------------------------------------------------------------

    async def trigger_sos(self, subject_id: str) -> EscalationReport:
        """Flag the SOS, then attempt every step and report each outcome."""
        report = EscalationReport(subject_id=subject_id)

        if self._directory is not None:
            try:
                await self._directory.flag_sos(subject_id)
                report.steps.append(StepOutcome("flag_sos", True))
            except Exception as exc:
                logger.error("SOS flag failed for %s: %s", subject_id, type(exc).__name__)
                report.steps.append(StepOutcome("flag_sos", False, str(exc)))

        try:
            report.position = await self.capture_location()
            report.steps.append(StepOutcome("capture_location", True))
        except EscalationStepFailure as exc:
            logger.error("Escalation step %s failed: %s", exc.step, exc.detail)
            report.steps.append(StepOutcome(exc.step, False, exc.detail))

        try:
            number = await self.call_emergency_services()
            report.steps.append(StepOutcome("call", True, data={"number": number}))
        except EscalationStepFailure as exc:
            logger.error("Escalation step %s failed: %s", exc.step, exc.detail)
            report.steps.append(StepOutcome(exc.step, False, exc.detail))

        try:
            reached = await self.notify_contacts(subject_id, report.position)
            report.steps.append(StepOutcome("notify_contacts", True, data={"contacts": reached}))
        except EscalationStepFailure as exc:
            logger.error("Escalation step %s failed: %s", exc.step, exc.detail)
            report.steps.append(StepOutcome(exc.step, False, exc.detail))

        try:
            url = await self.share_location(report.position)
            report.steps.append(StepOutcome("share_location", True, data={"url": url}))
        except EscalationStepFailure as exc:
            logger.error("Escalation step %s failed: %s", exc.step, exc.detail)
            report.steps.append(StepOutcome(exc.step, False, exc.detail))

        logger.info(
            "SOS for %s finished (failed steps: %s)",
            subject_id,
            ", ".join(report.failed_steps) or "none",
        )
        return report
