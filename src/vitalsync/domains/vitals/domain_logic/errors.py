"""Error taxonomy for the vitals pipeline."""

from __future__ import annotations


class VitalsError(Exception):
    """Base exception for vitals pipeline errors."""


class ValidationError(VitalsError):
    """A raw reading could not be turned into a VitalRecord.

    Surfaced to the caller immediately; never queued or retried.
    """

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class OutOfRangeError(ValidationError):
    """A reading is physiologically implausible (likely a sensor fault)."""

    def __init__(self, field: str, value: float, low: float, high: float) -> None:
        super().__init__(field, f"value {value} outside plausible range [{low}, {high}]")
        self.value = value
        self.low = low
        self.high = high


class DependencyUnavailable(VitalsError):
    """A remote dependency (analysis service, persistence) could not be reached."""

    def __init__(self, dependency: str, detail: str = "") -> None:
        message = f"{dependency} unavailable"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.dependency = dependency
        self.detail = detail


class EscalationStepFailure(VitalsError):
    """One step of an emergency escalation failed. Other steps still run."""

    def __init__(self, step: str, detail: str = "") -> None:
        message = f"Escalation step '{step}' failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.step = step
        self.detail = detail
