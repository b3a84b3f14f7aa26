"""Vitals domain models: records, assessments, notifications, queue entries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

RiskLevel = Literal["low", "medium", "high", "critical"]
RecordSource = Literal["manual", "device"]
AssessmentSource = Literal["rule-engine", "remote-ai"]
NotificationType = Literal["improvement", "decline", "anomaly", "emergency"]
NotificationSeverity = Literal["info", "warning", "critical"]
TrendDirection = Literal["up", "down", "stable"]

# Ordinal order matters: index is the severity rank.
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")

METRICS: tuple[str, ...] = (
    "heart_rate",
    "blood_pressure_systolic",
    "blood_pressure_diastolic",
    "oxygen_saturation",
    "body_temperature",
    "steps",
    "sleep_hours",
)


def risk_rank(level: str) -> int:
    """Return the ordinal rank of a risk level (low=0 .. critical=3)."""
    return RISK_LEVELS.index(level)


def max_risk(*levels: str) -> str:
    """Return the most severe of the given risk levels."""
    return max(levels, key=risk_rank, default="low")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 instant; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class PatientProfile:
    """Optional context passed to the classifier."""

    age: int | None = None
    gender: str = ""
    medical_history: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VitalRecord:
    """One immutable, validated observation.

    Corrections never mutate a record; they create a new one whose
    ``supersedes`` points at the record being corrected.
    """

    id: str
    subject_id: str
    heart_rate: int
    oxygen_saturation: float
    body_temperature: float
    timestamp: datetime
    source: RecordSource
    quality_confidence: float
    blood_pressure_systolic: int | None = None
    blood_pressure_diastolic: int | None = None
    steps: int | None = None
    sleep_hours: float | None = None
    supersedes: str | None = None

    def metric_value(self, metric: str) -> float | None:
        """Return the value of a named metric, or None when it was not measured."""
        if metric not in METRICS:
            raise KeyError(f"Unknown metric: {metric!r}")
        return getattr(self, metric)

    def measurements(self) -> dict[str, Any]:
        """Return only the physiological measurements (the encrypted part at rest)."""
        return {metric: getattr(self, metric) for metric in METRICS}

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VitalRecord:
        """Rebuild a record previously produced by :meth:`to_dict`."""
        values = dict(data)
        ts = values.get("timestamp")
        if isinstance(ts, str):
            values["timestamp"] = parse_instant(ts)
        return cls(**values)


@dataclass
class RiskAssessment:
    """Derived classification of one VitalRecord. Recomputable, never a system of record.

    ``anomaly_ids`` maps a stable identity per out-of-range finding
    (``"metric:category"``, e.g. ``"heart_rate:tachycardia"``) to its display
    text. The text embeds the measured value; the identity does not.
    """

    risk_level: RiskLevel
    anomalies: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    confidence: float = 0.85
    source: AssessmentSource = "rule-engine"
    analysis: str = ""
    record_id: str = ""
    recorded_at: str = ""
    anomaly_ids: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HealthNotification:
    """A user-facing notification derived from a change in risk.

    ``type == "emergency"`` implies ``severity == "critical"``, which in turn
    implies ``action_required``.
    """

    id: str
    subject_id: str
    type: NotificationType
    severity: NotificationSeverity
    message: str
    timestamp: datetime
    acknowledged: bool = False
    action_required: bool = False
    anomalies: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.type == "emergency" and self.severity != "critical":
            raise ValueError("emergency notifications must have critical severity")
        if self.severity == "critical" and not self.action_required:
            raise ValueError("critical notifications must require action")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["anomalies"] = list(self.anomalies)
        return data


@dataclass
class SyncQueueEntry:
    """A pending write recorded while offline (or after a transient failure)."""

    id: str
    action: str
    payload: dict[str, Any]
    enqueued_at: str
    attempts: int = 0
    last_error: str | None = None


@dataclass
class PatientSnapshot:
    """Admin view of one patient, rebuilt wholesale on every poll."""

    patient_id: str
    name: str = ""
    latest_vitals: VitalRecord | None = None
    latest_assessment: RiskAssessment | None = None
    is_emergency: bool = False
    emergency_type: str | None = None
    device_connection_state: str = "unknown"
    last_updated: str = ""
    emergency_contact: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_id": self.patient_id,
            "name": self.name,
            "latest_vitals": self.latest_vitals.to_dict() if self.latest_vitals else None,
            "latest_assessment": (
                self.latest_assessment.to_dict() if self.latest_assessment else None
            ),
            "is_emergency": self.is_emergency,
            "emergency_type": self.emergency_type,
            "device_connection_state": self.device_connection_state,
            "last_updated": self.last_updated,
        }
