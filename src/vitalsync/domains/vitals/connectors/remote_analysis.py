"""Remote analysis backends: an LLM provider or an HTTP analysis service.

Both convert transport and parsing failures into ``DependencyUnavailable`` so
the classifier can fall back to the rule engine without knowing which
backend is configured.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from vitalsync.core.llm.provider import LLMProvider
from vitalsync.core.llm.system_prompt import (
    HEALTH_CHAT_SYSTEM_PROMPT,
    HEALTH_PREDICTION_SYSTEM_PROMPT,
    VITALS_ANALYSIS_SYSTEM_PROMPT,
    build_analysis_user_message,
    build_chat_user_message,
    build_prediction_user_message,
)
from vitalsync.domains.vitals.connectors import AuthProvider
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import PatientProfile, VitalRecord
from vitalsync.domains.vitals.domain_logic.predictive import PERIOD_DAYS

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def vitals_payload(record: VitalRecord) -> dict[str, Any]:
    """Wire shape of a record for remote services (camelCase, like the web client)."""
    return {
        "heartRate": record.heart_rate,
        "bloodPressureSystolic": record.blood_pressure_systolic,
        "bloodPressureDiastolic": record.blood_pressure_diastolic,
        "oxygenSaturation": record.oxygen_saturation,
        "bodyTemperature": record.body_temperature,
        "steps": record.steps,
        "sleepHours": record.sleep_hours,
        "timestamp": record.timestamp.isoformat(),
    }


def profile_payload(profile: PatientProfile | None) -> dict[str, Any] | None:
    if profile is None:
        return None
    return {
        "age": profile.age,
        "gender": profile.gender,
        "medicalHistory": profile.medical_history,
    }


def _parse_json_object(content: str, source: str) -> dict[str, Any]:
    text = _FENCE.sub("", content.strip())
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise DependencyUnavailable(source, f"invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise DependencyUnavailable(source, f"expected JSON object, got {type(parsed).__name__}")
    return parsed


class LLMAnalysisService:
    """RemoteAnalysisService backed by an inner LLM provider."""

    def __init__(self, provider: LLMProvider) -> None:
        self.provider = provider

    async def analyze(
        self, record: VitalRecord, profile: PatientProfile | None
    ) -> dict[str, Any]:
        try:
            response = await self.provider.generate(
                system_message=VITALS_ANALYSIS_SYSTEM_PROMPT,
                user_message=build_analysis_user_message(
                    vitals_payload(record), profile_payload(profile)
                ),
            )
        except Exception as exc:
            raise DependencyUnavailable("llm", type(exc).__name__) from exc

        logger.info(
            "LLM analysis: record=%s, model=%s, tokens=%d+%d, latency=%.0fms",
            record.id,
            response.model,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
        )
        return _parse_json_object(response.content, "llm")

    async def chat(self, message: str, context: dict[str, Any] | None) -> str:
        try:
            response = await self.provider.generate(
                system_message=HEALTH_CHAT_SYSTEM_PROMPT,
                user_message=build_chat_user_message(message, context),
                temperature=0.4,
            )
        except Exception as exc:
            raise DependencyUnavailable("llm", type(exc).__name__) from exc
        if not response.content.strip():
            raise DependencyUnavailable("llm", "empty chat response")
        return response.content

    async def predict(
        self, history: list[VitalRecord], profile: PatientProfile | None, period: str
    ) -> dict[str, Any]:
        try:
            response = await self.provider.generate(
                system_message=HEALTH_PREDICTION_SYSTEM_PROMPT,
                user_message=build_prediction_user_message(
                    [vitals_payload(r) for r in history],
                    profile_payload(profile),
                    period,
                    PERIOD_DAYS.get(period, 7),
                ),
            )
        except Exception as exc:
            raise DependencyUnavailable("llm", type(exc).__name__) from exc

        logger.info(
            "LLM prediction: period=%s, readings=%d, model=%s, latency=%.0fms",
            period,
            len(history),
            response.model,
            response.latency_ms,
        )
        return _parse_json_object(response.content, "llm")


class HttpAnalysisService:
    """RemoteAnalysisService that POSTs to an HTTP analysis endpoint.

    Usage::

        service = HttpAnalysisService("https://portal.example/api/health", auth)
        payload = await service.analyze(record, profile)
    """

    def __init__(
        self,
        base_url: str,
        auth: AuthProvider,
        *,
        timeout_seconds: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = timeout_seconds
        self._transport = transport

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", **self._auth.get_auth_headers()}
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise DependencyUnavailable("analysis-service", type(exc).__name__) from exc

        if not resp.is_success:
            raise DependencyUnavailable("analysis-service", f"HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise DependencyUnavailable("analysis-service", "invalid JSON body") from exc
        if not isinstance(data, dict):
            raise DependencyUnavailable("analysis-service", "expected JSON object")
        return data

    async def analyze(
        self, record: VitalRecord, profile: PatientProfile | None
    ) -> dict[str, Any]:
        return await self._post(
            "/analyze",
            {"vitals": vitals_payload(record), "userProfile": profile_payload(profile) or {}},
        )

    async def chat(self, message: str, context: dict[str, Any] | None) -> str:
        data = await self._post("/chat", {"message": message, "healthContext": context})
        text = data.get("response")
        if not isinstance(text, str) or not text.strip():
            raise DependencyUnavailable("analysis-service", "missing chat response")
        return text

    async def predict(
        self, history: list[VitalRecord], profile: PatientProfile | None, period: str
    ) -> dict[str, Any]:
        return await self._post(
            "/predict",
            {
                "historicalData": [vitals_payload(r) for r in history],
                "userProfile": profile_payload(profile) or {},
                "predictionPeriod": period,
            },
        )


# ---------------------------------------------------------------------------
# Deterministic chat fallback
# ---------------------------------------------------------------------------

_CHAT_FALLBACKS: list[tuple[tuple[str, ...], str]] = [
    (
        ("blood pressure", "bp"),
        "Blood pressure is an important indicator of cardiovascular health. Normal blood "
        "pressure is typically around 120/80 mmHg. If you have concerns about your blood "
        "pressure, please consult your healthcare provider.",
    ),
    (
        ("heart rate", "pulse"),
        "A normal resting heart rate for adults ranges from 60 to 100 beats per minute. "
        "Fitness level, medications and emotions can all affect it. If you notice unusual "
        "changes, consider discussing them with your doctor.",
    ),
    (
        ("temperature", "fever"),
        "Normal body temperature is around 98.6°F (37°C). A fever is generally 100.4°F "
        "(38°C) or higher. If a fever persists, please consult a healthcare professional.",
    ),
    (
        ("oxygen", "spo2"),
        "Normal oxygen saturation is typically 95-100%. Lower levels may indicate "
        "respiratory or circulatory issues. If you consistently see readings below 95%, "
        "please seek medical attention.",
    ),
]

_GENERIC_CHAT_FALLBACK = (
    "I understand your health concern. For personalized medical advice, please consult "
    "your healthcare provider. I can provide general health information and guide you "
    "to appropriate resources."
)


def fallback_chat_response(message: str) -> str:
    """Keyword-matched canned answer used when the remote service is unavailable."""
    lowered = message.lower()
    for keywords, answer in _CHAT_FALLBACKS:
        if any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in keywords):
            return answer
    return _GENERIC_CHAT_FALLBACK
