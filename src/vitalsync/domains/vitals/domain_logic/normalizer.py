"""Vitals normalizer: raw device payloads or manual forms -> VitalRecord.

Parsing happens in two steps. ``parse_reading`` resolves an untyped mapping
into a tagged ``DeviceReading`` or ``ManualReading``; ``normalize`` validates
and canonicalizes it, returning a ``NormalizationResult`` that carries either
a complete record or the error. A partially filled record is never produced.

Range policy:
    SpO2 is physically bounded, so it is clamped to [0, 100].
    Heart rate, temperature and blood pressure outside plausible bounds are
    reported as ``OutOfRangeError``; silently coercing them would hide a
    sensor fault.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from vitalsync.domains.vitals.domain_logic.errors import OutOfRangeError, ValidationError
from vitalsync.domains.vitals.domain_logic.models import VitalRecord, parse_instant, utcnow

HEART_RATE_BOUNDS = (20.0, 300.0)
TEMPERATURE_F_BOUNDS = (80.0, 115.0)
SYSTOLIC_BOUNDS = (50.0, 300.0)
DIASTOLIC_BOUNDS = (20.0, 200.0)
SLEEP_HOURS_BOUNDS = (0.0, 24.0)

# Wearable firmware reports Celsius; anything this low cannot be Fahrenheit.
CELSIUS_CUTOFF = 50.0

DEFAULT_DEVICE_CONFIDENCE = 0.9
DEFAULT_MANUAL_CONFIDENCE = 1.0
TIMESTAMP_PARSE_PENALTY = 0.2
DEFAULT_CLOCK_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class DeviceReading:
    """A wearable payload. Blood pressure is optional (wristbands don't measure it)."""

    subject_id: Any
    heart_rate: Any
    oxygen_saturation: Any
    body_temperature: Any
    blood_pressure_systolic: Any = None
    blood_pressure_diastolic: Any = None
    steps: Any = None
    sleep_hours: Any = None
    timestamp: Any = None
    confidence: Any = None
    device_id: str = ""
    id: Any = None
    supersedes: Any = None


@dataclass(frozen=True)
class ManualReading:
    """A manual-entry form. All four core vitals plus blood pressure are required."""

    subject_id: Any
    heart_rate: Any
    blood_pressure_systolic: Any
    blood_pressure_diastolic: Any
    oxygen_saturation: Any
    body_temperature: Any
    steps: Any = None
    sleep_hours: Any = None
    timestamp: Any = None
    id: Any = None
    supersedes: Any = None


Reading = DeviceReading | ManualReading


@dataclass(frozen=True)
class NormalizationResult:
    """Either a validated record or the error that prevented one."""

    record: VitalRecord | None = None
    error: ValidationError | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.record is not None

    def unwrap(self) -> VitalRecord:
        """Return the record or raise the stored error."""
        if self.record is None:
            raise self.error or ValidationError("reading", "normalization failed")
        return self.record


# ---------------------------------------------------------------------------
# Step 1: untyped mapping -> tagged reading
# ---------------------------------------------------------------------------

def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def parse_reading(raw: Mapping[str, Any]) -> Reading:
    """Resolve a raw mapping into a DeviceReading or ManualReading.

    The tag is ``source`` when present; otherwise a payload carrying device
    metadata (``device_id``, ``deviceInfo``) or wearable-style keys
    (``spo2``, ``temperature``) is treated as a device reading.

    Raises:
        ValidationError: If the mapping is not a mapping or has an unknown source tag.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("reading", f"expected a mapping, got {type(raw).__name__}")

    source = raw.get("source")
    device_info = raw.get("deviceInfo") or raw.get("device_info") or {}
    if source is None:
        looks_like_device = bool(device_info) or any(
            k in raw for k in ("device_id", "deviceId", "spo2", "temperature")
        )
        source = "device" if looks_like_device else "manual"

    subject_id = _pick(raw, "subjectId", "subject_id", "userId", "user_id")
    common = dict(
        subject_id=subject_id,
        heart_rate=_pick(raw, "heartRate", "heart_rate"),
        oxygen_saturation=_pick(raw, "oxygenSaturation", "oxygen_saturation", "spo2"),
        body_temperature=_pick(raw, "bodyTemperature", "body_temperature", "temperature"),
        blood_pressure_systolic=_pick(
            raw, "bloodPressureSystolic", "blood_pressure_systolic", "systolic"
        ),
        blood_pressure_diastolic=_pick(
            raw, "bloodPressureDiastolic", "blood_pressure_diastolic", "diastolic"
        ),
        steps=raw.get("steps"),
        sleep_hours=_pick(raw, "sleepHours", "sleep_hours"),
        timestamp=raw.get("timestamp"),
        id=raw.get("id"),
        supersedes=_pick(raw, "supersedes", "correctionOf", "correction_of"),
    )

    if source == "device":
        quality = raw.get("dataQuality") or raw.get("data_quality") or {}
        confidence = _pick(raw, "qualityConfidence", "quality_confidence", "confidence")
        if confidence is None and isinstance(quality, Mapping):
            confidence = quality.get("confidence")
        device_id = _pick(raw, "deviceId", "device_id")
        if device_id is None and isinstance(device_info, Mapping):
            device_id = device_info.get("deviceId") or device_info.get("device_id")
        return DeviceReading(confidence=confidence, device_id=str(device_id or ""), **common)
    if source == "manual":
        return ManualReading(**common)
    raise ValidationError("source", f"unknown reading source {source!r}")


# ---------------------------------------------------------------------------
# Step 2: tagged reading -> VitalRecord
# ---------------------------------------------------------------------------

def _number(name: str, value: Any) -> float | None:
    """Coerce a numeric field. None stays None; non-finite values are rejected."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(name, "expected a number, got a boolean")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(name, f"not a number: {value!r}") from None
    if not math.isfinite(number):
        raise ValidationError(name, "value must be finite")
    return number


def _required(name: str, value: Any) -> float:
    number = _number(name, value)
    if number is None:
        raise ValidationError(name, "required")
    return number


def _in_range(name: str, value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    if not low <= value <= high:
        raise OutOfRangeError(name, value, low, high)
    return value


def _parse_timestamp(value: Any) -> datetime | None:
    """Best-effort timestamp parsing. Returns None when the value is unusable."""
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            seconds = value / 1000 if value > 1e12 else value
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif isinstance(value, str):
            parsed = parse_instant(value.strip())
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize(
    raw: Mapping[str, Any] | Reading,
    *,
    now: datetime | None = None,
    clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
) -> NormalizationResult:
    """Validate and canonicalize a raw reading.

    Args:
        raw: A raw mapping (device payload or manual form) or an already
            tagged ``DeviceReading`` / ``ManualReading``.
        now: Reference time (injectable for tests). Defaults to UTC now.
        clock_skew: How far in the future a timestamp may be before it is rejected.

    Returns:
        A ``NormalizationResult``. Pure: nothing is persisted.
    """
    try:
        reading = raw if isinstance(raw, (DeviceReading, ManualReading)) else parse_reading(raw)
        record, warnings = _build_record(reading, now or utcnow(), clock_skew)
    except ValidationError as exc:
        return NormalizationResult(error=exc)
    return NormalizationResult(record=record, warnings=tuple(warnings))


def _build_record(
    reading: Reading, now: datetime, clock_skew: timedelta
) -> tuple[VitalRecord, list[str]]:
    warnings: list[str] = []
    is_device = isinstance(reading, DeviceReading)

    subject_id = reading.subject_id
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise ValidationError("subject_id", "required")

    heart_rate = _in_range("heart_rate", _required("heart_rate", reading.heart_rate), HEART_RATE_BOUNDS)

    spo2 = _required("oxygen_saturation", reading.oxygen_saturation)
    clamped = max(0.0, min(100.0, spo2))
    if clamped != spo2:
        warnings.append(f"oxygen_saturation clamped from {spo2} to {clamped}")

    temperature = _required("body_temperature", reading.body_temperature)
    if is_device and temperature < CELSIUS_CUTOFF:
        temperature = round(temperature * 9 / 5 + 32, 1)
        warnings.append("body_temperature converted from Celsius")
    _in_range("body_temperature", temperature, TEMPERATURE_F_BOUNDS)

    systolic = _number("blood_pressure_systolic", reading.blood_pressure_systolic)
    diastolic = _number("blood_pressure_diastolic", reading.blood_pressure_diastolic)
    if not is_device:
        if systolic is None:
            raise ValidationError("blood_pressure_systolic", "required")
        if diastolic is None:
            raise ValidationError("blood_pressure_diastolic", "required")
    if (systolic is None) != (diastolic is None):
        missing = "blood_pressure_diastolic" if diastolic is None else "blood_pressure_systolic"
        raise ValidationError(missing, "blood pressure needs both systolic and diastolic")
    if systolic is not None and diastolic is not None:
        _in_range("blood_pressure_systolic", systolic, SYSTOLIC_BOUNDS)
        _in_range("blood_pressure_diastolic", diastolic, DIASTOLIC_BOUNDS)
        if diastolic >= systolic:
            raise ValidationError("blood_pressure_diastolic", "must be lower than systolic")

    steps = _number("steps", reading.steps)
    if steps is not None and steps < 0:
        raise ValidationError("steps", "must not be negative")
    sleep_hours = _number("sleep_hours", reading.sleep_hours)
    if sleep_hours is not None:
        _in_range("sleep_hours", sleep_hours, SLEEP_HOURS_BOUNDS)

    if is_device:
        confidence = _number("quality_confidence", reading.confidence)
        if confidence is None:
            confidence = DEFAULT_DEVICE_CONFIDENCE
    else:
        confidence = DEFAULT_MANUAL_CONFIDENCE
    confidence = max(0.0, min(1.0, confidence))

    if reading.timestamp is None or reading.timestamp == "":
        timestamp = now
    else:
        parsed = _parse_timestamp(reading.timestamp)
        if parsed is None:
            timestamp = now
            confidence = max(0.0, confidence - TIMESTAMP_PARSE_PENALTY)
            warnings.append("timestamp unparseable; using ingestion time")
        else:
            timestamp = parsed
    if timestamp > now + clock_skew:
        raise ValidationError("timestamp", "is in the future beyond clock-skew tolerance")

    record = VitalRecord(
        id=str(reading.id) if reading.id else str(uuid.uuid4()),
        subject_id=subject_id.strip(),
        heart_rate=int(round(heart_rate)),
        oxygen_saturation=round(clamped, 1),
        body_temperature=round(temperature, 1),
        timestamp=timestamp,
        source="device" if is_device else "manual",
        quality_confidence=round(confidence, 4),
        blood_pressure_systolic=int(round(systolic)) if systolic is not None else None,
        blood_pressure_diastolic=int(round(diastolic)) if diastolic is not None else None,
        steps=int(steps) if steps is not None else None,
        sleep_hours=round(sleep_hours, 2) if sleep_hours is not None else None,
        supersedes=str(reading.supersedes) if reading.supersedes else None,
    )
    return record, warnings
