"""Deterministic rule engine: fixed clinical bands -> RiskAssessment.

Each metric is scored independently into a risk band; the aggregate risk
level is the worst band. This module is pure arithmetic over an already
validated VitalRecord and does not raise.

Bands (inclusive):

    Heart rate      low 60-100 | medium 50-59, 101-120 | high 40-49, 121-129 | critical <40, >=130
    Systolic BP     low 90-120 | medium 121-140 | high 141-160, 70-89 | critical >160, <70
    Diastolic BP    low 60-80  | medium 81-90, <60 | high 91-100 | critical >100
    SpO2            low >=95   | medium 90-94 | critical <90
    Temperature F   low 97.0-99.5 | medium 96.0-96.9, 99.6-100.4 | high 95.0-95.9, 100.5-103.0 | critical <95, >103
"""

from __future__ import annotations

from dataclasses import dataclass

from vitalsync.domains.vitals.domain_logic.models import (
    PatientProfile,
    RiskAssessment,
    VitalRecord,
    max_risk,
    risk_rank,
)

RULE_ENGINE_CONFIDENCE = 0.85

ALL_NORMAL_RECOMMENDATION = (
    "All vital signs are within normal ranges. "
    "Continue maintaining healthy lifestyle habits."
)

URGENT_RECOMMENDATION = (
    "One or more readings are at a critical level. "
    "Seek immediate medical attention or use the emergency SOS."
)

CATEGORY_RECOMMENDATIONS: dict[str, str] = {
    "tachycardia": "Rest, avoid caffeine and stimulants, and recheck your heart rate in 15 minutes.",
    "bradycardia": "If you feel dizzy or faint with a low heart rate, contact your healthcare provider.",
    "hypertension": "Reduce sodium intake, stay hydrated, and recheck your blood pressure after resting.",
    "hypotension": "Sit or lie down, drink fluids, and rise slowly to avoid fainting.",
    "hypoxemia": "Sit upright and breathe slowly; seek care if oxygen stays below 95%.",
    "fever": "Stay hydrated, rest, and monitor your temperature every few hours.",
    "hypothermia": "Warm up gradually with blankets and warm fluids; seek care if it persists.",
}

# Labels match what the admin console shows for an emergency.
CATEGORY_EMERGENCY_LABELS: dict[tuple[str, str], str] = {
    ("heart_rate", "tachycardia"): "High Heart Rate",
    ("heart_rate", "bradycardia"): "Low Heart Rate",
    ("blood_pressure_systolic", "hypertension"): "High Blood Pressure",
    ("blood_pressure_systolic", "hypotension"): "Low Blood Pressure",
    ("blood_pressure_diastolic", "hypertension"): "High Blood Pressure",
    ("blood_pressure_diastolic", "hypotension"): "Low Blood Pressure",
    ("oxygen_saturation", "hypoxemia"): "Low Oxygen",
    ("body_temperature", "fever"): "High Temperature",
    ("body_temperature", "hypothermia"): "Low Temperature",
}


@dataclass(frozen=True)
class MetricFinding:
    """Band assignment for one metric of one record."""

    metric: str
    value: float
    level: str
    anomaly: str | None = None
    category: str | None = None


# ---------------------------------------------------------------------------
# Per-metric bands
# ---------------------------------------------------------------------------

def _heart_rate(hr: int) -> MetricFinding:
    if 60 <= hr <= 100:
        return MetricFinding("heart_rate", hr, "low")
    if 50 <= hr <= 120:
        level = "medium"
    elif 40 <= hr < 130:
        level = "high"
    else:
        level = "critical"
    return MetricFinding(
        "heart_rate",
        hr,
        level,
        f"Heart rate {hr} BPM is outside normal range (60-100 BPM)",
        "tachycardia" if hr > 100 else "bradycardia",
    )


def _systolic(sys_bp: int) -> MetricFinding:
    if 90 <= sys_bp <= 120:
        return MetricFinding("blood_pressure_systolic", sys_bp, "low")
    if sys_bp > 120:
        if sys_bp > 160:
            level = "critical"
        elif sys_bp > 140:
            level = "high"
        else:
            level = "medium"
        return MetricFinding(
            "blood_pressure_systolic",
            sys_bp,
            level,
            f"Systolic blood pressure {sys_bp} mmHg is above normal (120 mmHg or lower)",
            "hypertension",
        )
    return MetricFinding(
        "blood_pressure_systolic",
        sys_bp,
        "critical" if sys_bp < 70 else "high",
        f"Systolic blood pressure {sys_bp} mmHg indicates hypotension (below 90 mmHg)",
        "hypotension",
    )


def _diastolic(dia_bp: int) -> MetricFinding:
    if 60 <= dia_bp <= 80:
        return MetricFinding("blood_pressure_diastolic", dia_bp, "low")
    if dia_bp > 80:
        if dia_bp > 100:
            level = "critical"
        elif dia_bp > 90:
            level = "high"
        else:
            level = "medium"
        return MetricFinding(
            "blood_pressure_diastolic",
            dia_bp,
            level,
            f"Diastolic blood pressure {dia_bp} mmHg is above normal (80 mmHg or lower)",
            "hypertension",
        )
    return MetricFinding(
        "blood_pressure_diastolic",
        dia_bp,
        "medium",
        f"Diastolic blood pressure {dia_bp} mmHg is below normal (60 mmHg or higher)",
        "hypotension",
    )


def _oxygen(spo2: float) -> MetricFinding:
    if spo2 >= 95:
        return MetricFinding("oxygen_saturation", spo2, "low")
    return MetricFinding(
        "oxygen_saturation",
        spo2,
        "medium" if spo2 >= 90 else "critical",
        f"Oxygen saturation {spo2:g}% is below normal (95-100%)",
        "hypoxemia",
    )


def _temperature(temp_f: float) -> MetricFinding:
    if 97.0 <= temp_f <= 99.5:
        return MetricFinding("body_temperature", temp_f, "low")
    if 96.0 <= temp_f <= 100.4:
        level = "medium"
    elif 95.0 <= temp_f <= 103.0:
        level = "high"
    else:
        level = "critical"
    fever = temp_f > 99.5
    return MetricFinding(
        "body_temperature",
        temp_f,
        level,
        f"Body temperature {temp_f:g}°F indicates {'fever' if fever else 'hypothermia'}",
        "fever" if fever else "hypothermia",
    )


def evaluate_metrics(record: VitalRecord) -> list[MetricFinding]:
    """Score every measured metric of a record against its band table."""
    findings = [_heart_rate(record.heart_rate)]
    if record.blood_pressure_systolic is not None:
        findings.append(_systolic(record.blood_pressure_systolic))
    if record.blood_pressure_diastolic is not None:
        findings.append(_diastolic(record.blood_pressure_diastolic))
    findings.append(_oxygen(record.oxygen_saturation))
    findings.append(_temperature(record.body_temperature))
    return findings


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def finding_id(finding: MetricFinding) -> str:
    """Stable identity of a finding: metric and category, never the measured value."""
    return f"{finding.metric}:{finding.category}"


def anomaly_identities(record: VitalRecord) -> dict[str, str]:
    return {finding_id(f): f.anomaly for f in evaluate_metrics(record) if f.anomaly}


def profile_recommendations(profile: PatientProfile | None) -> list[str]:
    """Personalized additions driven by age and medical history."""
    if profile is None:
        return []
    extra: list[str] = []
    history = (profile.medical_history or "").lower()
    if profile.age is not None and profile.age > 60:
        extra.append("Consider regular cardiac monitoring given your age group.")
    if "diabetes" in history:
        extra.append("Monitor blood glucose levels regularly and maintain your medication schedule.")
    if "hypertension" in history:
        extra.append("Continue monitoring blood pressure and follow your prescribed regimen.")
    return extra


def classify_by_rules(
    record: VitalRecord, profile: PatientProfile | None = None
) -> RiskAssessment:
    """Classify a record with the fixed bands. Deterministic for a given input."""
    findings = evaluate_metrics(record)
    breaches = [f for f in findings if f.anomaly]
    risk_level = max_risk(*(f.level for f in findings))

    if not breaches:
        return RiskAssessment(
            risk_level="low",
            anomalies=[],
            recommendations=[ALL_NORMAL_RECOMMENDATION],
            confidence=RULE_ENGINE_CONFIDENCE,
            source="rule-engine",
            analysis="Your vital signs are within normal ranges.",
            record_id=record.id,
            recorded_at=record.timestamp.isoformat(),
        )

    recommendations: list[str] = []
    if risk_level == "critical":
        recommendations.append(URGENT_RECOMMENDATION)
    for finding in breaches:
        template = CATEGORY_RECOMMENDATIONS.get(finding.category or "")
        if template and template not in recommendations:
            recommendations.append(template)
    recommendations.extend(profile_recommendations(profile))

    return RiskAssessment(
        risk_level=risk_level,
        anomalies=[f.anomaly for f in breaches if f.anomaly],
        anomaly_ids={finding_id(f): f.anomaly for f in breaches if f.anomaly},
        recommendations=recommendations,
        confidence=RULE_ENGINE_CONFIDENCE,
        source="rule-engine",
        analysis=(
            f"{len(breaches)} parameter(s) outside normal ranges; "
            f"overall risk is {risk_level}."
        ),
        record_id=record.id,
        recorded_at=record.timestamp.isoformat(),
    )


def emergency_type_for(record: VitalRecord) -> str | None:
    """Label the worst critical finding of a record, or None when nothing is critical."""
    critical = [f for f in evaluate_metrics(record) if f.level == "critical"]
    if not critical:
        return None
    worst = critical[0]
    return CATEGORY_EMERGENCY_LABELS.get((worst.metric, worst.category or ""), "Critical Vitals")


def health_score(record: VitalRecord, profile: PatientProfile | None = None) -> float:
    """A 0-100 wellness score. Informational only; does not affect risk level."""
    score = 100.0
    target_hr = 75 if profile is not None and (profile.age or 0) >= 60 else 70
    score -= min(abs(record.heart_rate - target_hr) * 0.5, 20)

    systolic = record.blood_pressure_systolic
    diastolic = record.blood_pressure_diastolic
    if systolic is not None and diastolic is not None:
        if systolic > 140 or diastolic > 90:
            score -= 15
        elif systolic > 130 or diastolic > 80:
            score -= 10

    if record.oxygen_saturation < 95:
        score -= 20
    elif record.oxygen_saturation < 98:
        score -= 5

    if record.body_temperature > 100.4 or record.body_temperature < 97:
        score -= 10

    return max(score, 0.0)


def assessment_floor(record: VitalRecord) -> str:
    """The lowest risk level any assessment of this record may report."""
    return max_risk(*(f.level for f in evaluate_metrics(record)))


def is_at_least(level: str, floor: str) -> bool:
    return risk_rank(level) >= risk_rank(floor)
