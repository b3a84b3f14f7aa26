"""Record builders and fakes for external collaborators, shared by the test suites."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from vitalsync.domains.vitals.connectors import GeoPosition
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import VitalRecord

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_record(
    id: str = "rec-1",
    subject_id: str = "patient-1",
    heart_rate: int = 72,
    blood_pressure_systolic: int | None = 118,
    blood_pressure_diastolic: int | None = 76,
    oxygen_saturation: float = 98.0,
    body_temperature: float = 98.4,
    timestamp: datetime | None = None,
    source: str = "manual",
    **extra: Any,
) -> VitalRecord:
    """Create a validated record with normal vitals by default."""
    return VitalRecord(
        id=id,
        subject_id=subject_id,
        heart_rate=heart_rate,
        blood_pressure_systolic=blood_pressure_systolic,
        blood_pressure_diastolic=blood_pressure_diastolic,
        oxygen_saturation=oxygen_saturation,
        body_temperature=body_temperature,
        timestamp=timestamp or NOW,
        source=source,
        quality_confidence=1.0,
        **extra,
    )


def make_series(metric: str, values: list[float], subject_id: str = "patient-1") -> list[VitalRecord]:
    """Records one minute apart, ascending, with ``metric`` set from ``values``."""
    return [
        make_record(
            id=f"rec-{i}",
            subject_id=subject_id,
            timestamp=NOW + timedelta(minutes=i),
            **{metric: value},
        )
        for i, value in enumerate(values)
    ]


# ---------------------------------------------------------------------------
# Fakes for external collaborators
# ---------------------------------------------------------------------------

class FakeRemoteAnalysis:
    """RemoteAnalysisService double: canned payloads, optional failure or stall."""

    def __init__(
        self,
        payload: dict[str, Any] | None = None,
        *,
        error: Exception | None = None,
        delay_seconds: float = 0.0,
        chat_text: str = "Remote answer.",
        prediction: dict[str, Any] | None = None,
    ) -> None:
        self.payload = payload if payload is not None else {
            "riskLevel": "low",
            "anomalies": [],
            "recommendations": ["Keep it up."],
            "confidence": 0.93,
            "analysis": "Looks fine.",
        }
        self.error = error
        self.delay_seconds = delay_seconds
        self.chat_text = chat_text
        self.prediction = prediction if prediction is not None else {
            "analysis": "Stable outlook.",
            "predictedConditions": [],
            "riskFactors": [],
            "confidence": 0.9,
            "recommendedActions": ["Keep logging readings."],
            "urgencyLevel": "low",
            "shouldConsultDoctor": False,
        }
        self.analyze_calls = 0
        self.chat_calls = 0
        self.predict_calls = 0

    async def _maybe_fail(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error

    async def analyze(self, record, profile):
        self.analyze_calls += 1
        await self._maybe_fail()
        return self.payload

    async def chat(self, message, context):
        self.chat_calls += 1
        await self._maybe_fail()
        return self.chat_text

    async def predict(self, history, profile, period):
        self.predict_calls += 1
        await self._maybe_fail()
        return self.prediction


class FakeGeolocator:
    def __init__(self, position: GeoPosition | None = None, *, error: Exception | None = None,
                 delay_seconds: float = 0.0) -> None:
        self.position = position or GeoPosition(latitude=12.9716, longitude=77.5946)
        self.error = error
        self.delay_seconds = delay_seconds
        self.requests: list[dict[str, Any]] = []

    async def get_current_position(self, *, high_accuracy=True, timeout_seconds=5.0):
        self.requests.append({"high_accuracy": high_accuracy, "timeout_seconds": timeout_seconds})
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return self.position


class FakeTelephony:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.dialed: list[str] = []

    async def dial(self, number):
        if self.error is not None:
            raise self.error
        self.dialed.append(number)


class FakeContactNotifier:
    def __init__(self, *, reached: int = 2, error: Exception | None = None) -> None:
        self.reached = reached
        self.error = error
        self.sent: list[tuple[str, str, GeoPosition | None]] = []

    async def notify_contacts(self, subject_id, message, position):
        if self.error is not None:
            raise self.error
        self.sent.append((subject_id, message, position))
        return self.reached


class FakeLocationSharer:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.shared: list[tuple[str, str, str]] = []

    async def share(self, title, text, url):
        if self.error is not None:
            raise self.error
        self.shared.append((title, text, url))


class FakePatientDirectory:
    """PatientDirectory double whose snapshot list tests mutate between ticks."""

    def __init__(self, patients=None) -> None:
        self.patients = list(patients or [])
        self.fail = False
        self.flagged: list[str] = []
        self.cleared: list[str] = []

    async def list_patients(self):
        if self.fail:
            raise DependencyUnavailable("patient-directory", "connection refused")
        return list(self.patients)

    async def flag_sos(self, patient_id):
        self.flagged.append(patient_id)

    async def clear_sos(self, patient_id):
        self.cleared.append(patient_id)
