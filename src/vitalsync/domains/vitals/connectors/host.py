"""Host-environment adapters for the emergency flow when served over MCP.

Over MCP the "host" is the client application: it supplies the device
position with the request and performs the actual dial, message delivery
and share. These adapters validate the inputs and record what the client
must do, so the tool response can hand it back.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from vitalsync.core.storage.repository import VitalsRepository
from vitalsync.domains.vitals.connectors import GeoPosition, maps_link
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

_DIALABLE = re.compile(r"^\+?[0-9]{2,15}$")


class ProvidedPositionGeolocator:
    """Geolocator answering with the position the client sent, if any."""

    def __init__(self, position: GeoPosition | None = None) -> None:
        self._position = position

    async def get_current_position(
        self, *, high_accuracy: bool = True, timeout_seconds: float = 5.0
    ) -> GeoPosition:
        if self._position is None:
            raise DependencyUnavailable("geolocation", "location unavailable or permission denied")
        lat, lng = self._position.latitude, self._position.longitude
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            raise DependencyUnavailable("geolocation", f"invalid coordinates {lat},{lng}")
        return self._position


class TelLinkTelephony:
    """Telephony that produces a ``tel:`` link for the client to open."""

    def __init__(self) -> None:
        self.links: list[str] = []

    async def dial(self, number: str) -> None:
        cleaned = re.sub(r"[\s\-()]", "", number or "")
        if not _DIALABLE.match(cleaned):
            raise ValueError(f"Not a dialable number: {number!r}")
        self.links.append(f"tel:{cleaned}")


@dataclass
class OutboundMessage:
    recipient: dict[str, Any]
    text: str


class DirectoryContactNotifier:
    """Prepares messages to the emergency contacts stored in the patient directory."""

    def __init__(self, repository: VitalsRepository) -> None:
        self._repo = repository
        self.outbox: list[OutboundMessage] = []

    async def notify_contacts(
        self, subject_id: str, message: str, position: GeoPosition | None
    ) -> int:
        patient = self._repo.get_patient(subject_id)
        contact = patient.emergency_contact if patient is not None else {}
        recipients = contact.get("contacts") if isinstance(contact.get("contacts"), list) else [contact]
        recipients = [r for r in recipients if isinstance(r, dict) and r.get("phone")]
        if not recipients:
            raise DependencyUnavailable("contacts", f"no emergency contact on file for {subject_id}")

        text = message
        if position is not None:
            text += f" Location: {maps_link(position)}"
        for recipient in recipients:
            self.outbox.append(OutboundMessage(recipient=recipient, text=text))
        logger.info("Prepared %d emergency contact message(s) for %s", len(recipients), subject_id)
        return len(recipients)


@dataclass
class SharedLink:
    title: str
    text: str
    url: str


@dataclass
class LinkLocationSharer:
    """Collects share payloads for the client's share sheet."""

    shared: list[SharedLink] = field(default_factory=list)

    async def share(self, title: str, text: str, url: str) -> None:
        if not url:
            raise ValueError("Nothing to share: empty location link")
        self.shared.append(SharedLink(title=title, text=text, url=url))
