"""MCP tools for the patient-side emergency (SOS) flow.

The client supplies its position with each request and performs the actual
dial, contact messages and share; the responses tell it what to do. Each
step is also exposed as its own tool so a failed step can be retried alone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from vitalsync.domains.vitals.connectors import GeoPosition
from vitalsync.domains.vitals.connectors.host import (
    DirectoryContactNotifier,
    LinkLocationSharer,
    ProvidedPositionGeolocator,
    TelLinkTelephony,
)
from vitalsync.domains.vitals.connectors.local_store import RepositoryPatientDirectory
from vitalsync.domains.vitals.domain_logic.errors import EscalationStepFailure
from vitalsync.domains.vitals.monitoring.escalation import EscalationCoordinator
from vitalsync.domains.vitals.tools import responses

if TYPE_CHECKING:
    from vitalsync.core.storage.repository import VitalsRepository

logger = logging.getLogger(__name__)


def _position(latitude: float | None, longitude: float | None) -> GeoPosition | None:
    if latitude is None or longitude is None:
        return None
    return GeoPosition(latitude=latitude, longitude=longitude)


def register_emergency_tools(
    mcp: FastMCP,
    repository: VitalsRepository,
    *,
    emergency_number: str = "108",
    geolocation_timeout_seconds: float = 5.0,
) -> None:
    """Register SOS tools on the MCP server."""

    directory = RepositoryPatientDirectory(repository)

    def _coordinator(position: GeoPosition | None) -> tuple[EscalationCoordinator, dict[str, Any]]:
        host: dict[str, Any] = {
            "telephony": TelLinkTelephony(),
            "notifier": DirectoryContactNotifier(repository),
            "sharer": LinkLocationSharer(),
        }
        coordinator = EscalationCoordinator(
            ProvidedPositionGeolocator(position),
            host["telephony"],
            host["notifier"],
            host["sharer"],
            directory,
            emergency_number=emergency_number,
            geolocation_timeout_seconds=geolocation_timeout_seconds,
        )
        return coordinator, host

    def _client_actions(host: dict[str, Any]) -> dict[str, Any]:
        return {
            "dial": list(host["telephony"].links),
            "messages": [
                {"recipient": m.recipient, "text": m.text} for m in host["notifier"].outbox
            ],
            "share": [
                {"title": s.title, "text": s.text, "url": s.url} for s in host["sharer"].shared
            ],
        }

    @mcp.tool
    async def trigger_emergency_sos(
        ctx: Context,
        subject_id: str,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> str:
        """Raise a manual SOS: flag the patient, call for help, alert contacts, share location.

        Every step is attempted even if an earlier one fails; the response
        lists each step's outcome.

        Args:
            subject_id: The patient in distress.
            latitude: Current latitude, if the device could determine it.
            longitude: Current longitude, if the device could determine it.
        """
        coordinator, host = _coordinator(_position(latitude, longitude))
        report = await coordinator.trigger_sos(subject_id)
        return responses.ok(
            {**report.to_dict(), "client_actions": _client_actions(host)},
            status="partial" if report.failed_steps else "escalated",
        )

    @mcp.tool
    async def emergency_call_services(ctx: Context) -> str:
        """Call emergency services (retry of the call step)."""
        coordinator, host = _coordinator(None)
        try:
            number = await coordinator.call_emergency_services()
        except EscalationStepFailure as exc:
            return responses.error(exc)
        return responses.ok({"number": number, "client_actions": _client_actions(host)})

    @mcp.tool
    async def emergency_notify_contacts(
        ctx: Context,
        subject_id: str,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> str:
        """Alert the patient's emergency contacts (retry of the notify step).

        Args:
            subject_id: The patient in distress.
            latitude: Optional current latitude, included in the message.
            longitude: Optional current longitude, included in the message.
        """
        coordinator, host = _coordinator(None)
        try:
            reached = await coordinator.notify_contacts(subject_id, _position(latitude, longitude))
        except EscalationStepFailure as exc:
            return responses.error(exc)
        return responses.ok({"contacts": reached, "client_actions": _client_actions(host)})

    @mcp.tool
    async def emergency_share_location(ctx: Context, latitude: float, longitude: float) -> str:
        """Share the current location as a map link (retry of the share step).

        Args:
            latitude: Current latitude.
            longitude: Current longitude.
        """
        position = _position(latitude, longitude)
        coordinator, host = _coordinator(position)
        try:
            located = await coordinator.capture_location()
            url = await coordinator.share_location(located)
        except EscalationStepFailure as exc:
            return responses.error(exc)
        return responses.ok({"url": url, "client_actions": _client_actions(host)})
