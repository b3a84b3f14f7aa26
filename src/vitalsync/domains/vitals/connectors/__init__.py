"""External collaborator interfaces for the vitals pipeline.

The pipeline depends only on these protocols. Concrete implementations live
next to this module (remote analysis, repository-backed stores, host
adapters) and tests substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from vitalsync.domains.vitals.domain_logic.models import (
    PatientProfile,
    PatientSnapshot,
    VitalRecord,
)


@runtime_checkable
class AuthProvider(Protocol):
    """Supplies authentication headers for outbound calls."""

    def get_auth_headers(self) -> dict[str, str]:
        """Return headers to attach; empty when no session token is available."""
        ...


class StaticTokenAuth:
    """AuthProvider backed by a fixed bearer token (empty token = unauthenticated)."""

    def __init__(self, token: str = "") -> None:
        self._token = token

    def get_auth_headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}


@runtime_checkable
class VitalsStore(Protocol):
    """Persistence for vital records."""

    async def save_vital_record(self, record: VitalRecord) -> bool:
        """Persist a record. Idempotent on ``record.id``."""
        ...

    async def list_vital_records(
        self,
        subject_id: str,
        since: str | None = None,
        until: str | None = None,
    ) -> list[VitalRecord]:
        """Return the subject's records, oldest first."""
        ...


@runtime_checkable
class PatientDirectory(Protocol):
    """Bulk patient view used by the admin console."""

    async def list_patients(self) -> list[PatientSnapshot]:
        """Return every patient with their latest vitals."""
        ...

    async def flag_sos(self, patient_id: str) -> None:
        """Record that the patient triggered a manual SOS."""
        ...

    async def clear_sos(self, patient_id: str) -> None:
        """Clear a manual SOS after an admin resolves it."""
        ...


@runtime_checkable
class RemoteAnalysisService(Protocol):
    """Optional, unreliable remote AI service."""

    async def analyze(
        self, record: VitalRecord, profile: PatientProfile | None
    ) -> dict[str, Any]:
        """Return a RiskAssessment-like payload (camelCase keys)."""
        ...

    async def chat(self, message: str, context: dict[str, Any] | None) -> str:
        """Return a free-text answer."""
        ...

    async def predict(
        self, history: list[VitalRecord], profile: PatientProfile | None, period: str
    ) -> dict[str, Any]:
        """Return a HealthPrediction-like payload (camelCase keys) for ``period``."""
        ...


@dataclass(frozen=True)
class GeoPosition:
    latitude: float
    longitude: float
    accuracy_m: float | None = None


def maps_link(position: GeoPosition) -> str:
    """Shareable map URL for a position."""
    return f"https://maps.google.com/?q={position.latitude},{position.longitude}"


@runtime_checkable
class Geolocator(Protocol):
    """Host geolocation. May be denied by the user or time out."""

    async def get_current_position(
        self, *, high_accuracy: bool = True, timeout_seconds: float = 5.0
    ) -> GeoPosition: ...


@runtime_checkable
class Telephony(Protocol):
    """Host dialer."""

    async def dial(self, number: str) -> None: ...


@runtime_checkable
class ContactNotifier(Protocol):
    """Alerts a subject's emergency contacts."""

    async def notify_contacts(
        self, subject_id: str, message: str, position: GeoPosition | None
    ) -> int:
        """Return the number of contacts reached."""
        ...


@runtime_checkable
class LocationSharer(Protocol):
    """Shares a location link (share sheet, clipboard, SMS...)."""

    async def share(self, title: str, text: str, url: str) -> None: ...
