"""Predictive health: deviation from a personal baseline and a short-term outlook.

Two pieces:

- :func:`detect_health_changes` compares one reading against the average of
  the subject's earlier readings and reports metrics that moved past a
  relative threshold (15%, or 5% for oxygen saturation).
- :class:`HealthForecaster` asks the remote analysis tier for an outlook over
  the next week, two weeks or month, and answers from a deterministic rule
  summary of the last seven readings when the remote tier is unavailable.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from vitalsync.domains.vitals.connectors import AuthProvider, RemoteAnalysisService
from vitalsync.domains.vitals.domain_logic.errors import ValidationError
from vitalsync.domains.vitals.domain_logic.models import (
    RISK_LEVELS,
    PatientProfile,
    RiskLevel,
    VitalRecord,
    risk_rank,
)

logger = logging.getLogger(__name__)

ChangeTrend = Literal["improving", "concerning"]
ChangeSignificance = Literal["moderate", "significant", "critical"]
PredictionPeriod = Literal["1week", "2week", "1month"]

PERIOD_DAYS: dict[str, int] = {"1week": 7, "2week": 14, "1month": 30}

DEFAULT_CHANGE_THRESHOLD = 0.15
OXYGEN_CHANGE_THRESHOLD = 0.05
RECENT_WINDOW = 7
REMOTE_HISTORY_LIMIT = 50
FALLBACK_CONFIDENCE = 0.75


@dataclass(frozen=True)
class HealthChange:
    """One metric that moved away from the subject's historical average."""

    metric: str
    trend: ChangeTrend
    change_percentage: float
    significance: ChangeSignificance
    current: float
    baseline: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "trend": self.trend,
            "change_percentage": round(self.change_percentage, 1),
            "significance": self.significance,
            "current": self.current,
            "baseline": round(self.baseline, 1),
        }


# metric -> (threshold, critical cut, grade above cut, grade below cut, higher is worse)
_CHANGE_RULES: dict[str, tuple[float | None, float, str, str, bool]] = {
    "heart_rate": (None, 0.30, "critical", "moderate", True),
    "blood_pressure_systolic": (None, 0.25, "significant", "moderate", True),
    "oxygen_saturation": (OXYGEN_CHANGE_THRESHOLD, 0.10, "critical", "significant", False),
}


def historical_average(history: Sequence[VitalRecord], metric: str) -> float | None:
    values = [v for v in (r.metric_value(metric) for r in history) if v is not None]
    if not values:
        return None
    return statistics.mean(values)


def detect_health_changes(
    current: VitalRecord,
    history: Sequence[VitalRecord],
    threshold: float = DEFAULT_CHANGE_THRESHOLD,
) -> list[HealthChange]:
    """Metrics of ``current`` that deviate from the average of ``history``.

    ``history`` may include ``current`` itself; it is excluded from the
    baseline. Heart rate and systolic pressure use ``threshold``; oxygen
    saturation always uses 5%. A metric missing from the reading or from
    every earlier record is skipped, as is a zero baseline.

    Returns:
        One HealthChange per deviating metric, in the order heart rate,
        systolic pressure, oxygen saturation.
    """
    earlier = [r for r in history if r.id != current.id]
    changes: list[HealthChange] = []
    for metric, (fixed, cut, above, below, higher_is_worse) in _CHANGE_RULES.items():
        value = current.metric_value(metric)
        baseline = historical_average(earlier, metric)
        if value is None or not baseline:
            continue
        change = (value - baseline) / baseline
        if abs(change) <= (fixed if fixed is not None else threshold):
            continue
        worse = change > 0 if higher_is_worse else change < 0
        changes.append(
            HealthChange(
                metric=metric,
                trend="concerning" if worse else "improving",
                change_percentage=abs(change) * 100,
                significance=above if abs(change) > cut else below,  # type: ignore[arg-type]
                current=value,
                baseline=baseline,
            )
        )
    return changes


# ---------------------------------------------------------------------------
# Outlook
# ---------------------------------------------------------------------------


@dataclass
class HealthPrediction:
    period: PredictionPeriod
    analysis: str
    predicted_conditions: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    confidence: float = FALLBACK_CONFIDENCE
    recommended_actions: list[str] = field(default_factory=list)
    urgency: RiskLevel = "low"
    should_consult_doctor: bool = False
    doctor_specialty: str | None = None
    source: str = "fallback"  # 'remote-ai' | 'fallback'

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "period_days": PERIOD_DAYS[self.period],
            "analysis": self.analysis,
            "predicted_conditions": list(self.predicted_conditions),
            "risk_factors": list(self.risk_factors),
            "confidence": self.confidence,
            "recommended_actions": list(self.recommended_actions),
            "urgency": self.urgency,
            "should_consult_doctor": self.should_consult_doctor,
            "doctor_specialty": self.doctor_specialty,
            "source": self.source,
        }


def _check_period(period: str) -> None:
    if period not in PERIOD_DAYS:
        raise ValidationError("period", f"must be one of {', '.join(PERIOD_DAYS)}")


def fallback_prediction(period: PredictionPeriod, history: Sequence[VitalRecord]) -> HealthPrediction:
    """Rule outlook from the averages of the last seven readings."""
    _check_period(period)
    recent = list(history)[-RECENT_WINDOW:]
    if not recent:
        raise ValidationError("history", "at least one reading is required")

    risk_factors: list[str] = []
    heart_rate = historical_average(recent, "heart_rate")
    systolic = historical_average(recent, "blood_pressure_systolic")
    if heart_rate is not None and heart_rate > 100:
        risk_factors.append("Elevated resting heart rate")
    if systolic is not None and systolic > 140:
        risk_factors.append("Elevated blood pressure")

    urgency: RiskLevel = "medium" if risk_factors else "low"
    pattern = "some areas for attention" if risk_factors else "generally stable patterns"
    return HealthPrediction(
        period=period,
        analysis=f"Based on {len(recent)} recent readings, your health metrics show {pattern}.",
        predicted_conditions=["Cardiovascular monitoring recommended"] if risk_factors else [],
        risk_factors=risk_factors,
        confidence=FALLBACK_CONFIDENCE,
        recommended_actions=["Continue regular monitoring", "Maintain healthy lifestyle"],
        urgency=urgency,
        should_consult_doctor=urgency != "low",
        doctor_specialty="internal_medicine" if urgency != "low" else None,
        source="fallback",
    )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float))]


def prediction_from_remote(payload: dict[str, Any], period: PredictionPeriod) -> HealthPrediction:
    """Validate a remote outlook payload (camelCase keys), filling gaps with defaults."""
    urgency = payload.get("urgencyLevel")
    if urgency not in RISK_LEVELS:
        urgency = "low"
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = FALLBACK_CONFIDENCE
    specialty = payload.get("doctorSpecialty")
    analysis = payload.get("analysis")
    return HealthPrediction(
        period=period,
        analysis=analysis if isinstance(analysis, str) and analysis else (
            "Health prediction analysis completed"
        ),
        predicted_conditions=_string_list(payload.get("predictedConditions")),
        risk_factors=_string_list(payload.get("riskFactors")),
        confidence=min(max(float(confidence), 0.0), 1.0),
        recommended_actions=_string_list(payload.get("recommendedActions")),
        urgency=urgency,
        should_consult_doctor=payload.get("shouldConsultDoctor") is True,
        doctor_specialty=specialty if isinstance(specialty, str) and specialty else None,
        source="remote-ai",
    )


class HealthForecaster:
    """Short-term health outlook from a subject's stored history.

    Usage::

        forecaster = HealthForecaster(remote, auth)
        prediction = await forecaster.predict(history, profile, "2week")

    The remote outlook never reports a lower urgency than the rule outlook
    for the same history; when it would, urgency is raised and a doctor
    consultation is recommended.
    """

    def __init__(
        self,
        remote: RemoteAnalysisService | None = None,
        auth: AuthProvider | None = None,
        *,
        timeout_seconds: float = 8.0,
    ) -> None:
        self._remote = remote
        self._auth = auth
        self._timeout = timeout_seconds

    @property
    def remote_enabled(self) -> bool:
        return (
            self._remote is not None
            and self._auth is not None
            and bool(self._auth.get_auth_headers())
        )

    async def predict(
        self,
        history: Sequence[VitalRecord],
        profile: PatientProfile | None = None,
        period: PredictionPeriod = "1week",
    ) -> HealthPrediction:
        """Raises ValidationError for an unknown period or an empty history."""
        rules = fallback_prediction(period, history)
        if not self.remote_enabled:
            return rules

        try:
            payload = await asyncio.wait_for(
                self._remote.predict(list(history)[-REMOTE_HISTORY_LIMIT:], profile, period),
                timeout=self._timeout,
            )
            prediction = prediction_from_remote(payload, period)
        except Exception as exc:
            logger.warning("Remote prediction unavailable (%s); using rules", type(exc).__name__)
            return rules

        if risk_rank(prediction.urgency) < risk_rank(rules.urgency):
            prediction.urgency = rules.urgency
            prediction.should_consult_doctor = True
            prediction.doctor_specialty = prediction.doctor_specialty or rules.doctor_specialty
        return prediction
