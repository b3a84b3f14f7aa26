"""Tests for the remote analysis backends (LLM provider and HTTP service)."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from helpers import make_record

from vitalsync.core.llm.providers.mock import MockProvider
from vitalsync.domains.vitals.connectors import StaticTokenAuth
from vitalsync.domains.vitals.connectors.remote_analysis import (
    HttpAnalysisService,
    LLMAnalysisService,
    profile_payload,
    vitals_payload,
)
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import PatientProfile


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestPayloads:
    def test_vitals_payload_uses_camel_case(self):
        payload = vitals_payload(make_record(heart_rate=81))
        assert payload["heartRate"] == 81
        assert payload["bloodPressureSystolic"] == 118
        assert payload["timestamp"].startswith("2026-03-01T12:00:00")

    def test_profile_payload(self):
        assert profile_payload(None) is None
        assert profile_payload(PatientProfile(age=50, medical_history="asthma")) == {
            "age": 50,
            "gender": "",
            "medicalHistory": "asthma",
        }


class TestLLMAnalysisService:
    def test_analyze_parses_provider_json(self):
        provider = MockProvider()
        payload = _run(LLMAnalysisService(provider).analyze(make_record(), None))
        assert payload["riskLevel"] == "low"
        assert provider.call_count == 1
        assert '"heartRate": 72' in provider.last_user_message

    def test_code_fences_are_stripped(self):
        provider = MockProvider('```json\n{"riskLevel": "medium"}\n```')
        payload = _run(LLMAnalysisService(provider).analyze(make_record(), None))
        assert payload == {"riskLevel": "medium"}

    def test_invalid_json_is_dependency_failure(self):
        provider = MockProvider("I think you are fine.")
        with pytest.raises(DependencyUnavailable) as exc_info:
            _run(LLMAnalysisService(provider).analyze(make_record(), None))
        assert exc_info.value.dependency == "llm"

    def test_non_object_json_is_dependency_failure(self):
        provider = MockProvider("[1, 2, 3]")
        with pytest.raises(DependencyUnavailable):
            _run(LLMAnalysisService(provider).analyze(make_record(), None))

    def test_provider_error_is_wrapped(self):
        provider = MockProvider(error=ConnectionError("reset"))
        with pytest.raises(DependencyUnavailable, match="ConnectionError"):
            _run(LLMAnalysisService(provider).analyze(make_record(), None))

    def test_chat_returns_text(self):
        provider = MockProvider("Stay hydrated.")
        text = _run(LLMAnalysisService(provider).chat("tips?", {"heartRate": 70}))
        assert text == "Stay hydrated."
        assert "Question: tips?" in provider.last_user_message

    def test_empty_chat_is_dependency_failure(self):
        with pytest.raises(DependencyUnavailable):
            _run(LLMAnalysisService(MockProvider("   ")).chat("hi", None))

    def test_predict_sends_history_and_period(self):
        provider = MockProvider('{"urgencyLevel": "medium", "riskFactors": ["Elevated BP"]}')
        history = [make_record(id="rec-1"), make_record(id="rec-2", heart_rate=88)]
        payload = _run(
            LLMAnalysisService(provider).predict(history, PatientProfile(age=60), "2week")
        )
        assert payload["urgencyLevel"] == "medium"
        assert "next 2week (14 days)" in provider.last_user_message
        assert "from these 2 readings" in provider.last_user_message
        assert '"heartRate": 88' in provider.last_user_message
        assert "predictedConditions" in provider.last_system_message

    def test_predict_provider_error_is_wrapped(self):
        provider = MockProvider(error=TimeoutError())
        with pytest.raises(DependencyUnavailable, match="TimeoutError"):
            _run(LLMAnalysisService(provider).predict([make_record()], None, "1week"))


class TestHttpAnalysisService:
    def _service(self, handler, token: str = "tok") -> HttpAnalysisService:
        return HttpAnalysisService(
            "https://portal.test/api/health/",
            StaticTokenAuth(token),
            transport=httpx.MockTransport(handler),
        )

    def test_analyze_posts_vitals_with_bearer_token(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"riskLevel": "low", "confidence": 0.7})

        payload = _run(self._service(handler).analyze(make_record(), PatientProfile(age=30)))
        assert payload["riskLevel"] == "low"
        assert seen["url"] == "https://portal.test/api/health/analyze"
        assert seen["auth"] == "Bearer tok"
        assert seen["body"]["vitals"]["heartRate"] == 72
        assert seen["body"]["userProfile"]["age"] == 30

    def test_http_error_status_is_dependency_failure(self):
        service = self._service(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(DependencyUnavailable, match="HTTP 503"):
            _run(service.analyze(make_record(), None))

    def test_transport_error_is_dependency_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DependencyUnavailable) as exc_info:
            _run(self._service(handler).analyze(make_record(), None))
        assert exc_info.value.dependency == "analysis-service"

    def test_non_json_body_is_dependency_failure(self):
        service = self._service(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(DependencyUnavailable):
            _run(service.analyze(make_record(), None))

    def test_chat_reads_response_field(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "Rest well."})

        text = _run(self._service(handler).chat("tired", {"heartRate": 60}))
        assert text == "Rest well."
        assert seen["url"].endswith("/chat")
        assert seen["body"] == {"message": "tired", "healthContext": {"heartRate": 60}}

    def test_chat_without_response_field_fails(self):
        service = self._service(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(DependencyUnavailable):
            _run(service.chat("hi", None))

    def test_predict_posts_history(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"urgencyLevel": "low", "confidence": 0.8})

        payload = _run(self._service(handler).predict([make_record()], None, "1month"))
        assert payload["confidence"] == 0.8
        assert seen["url"] == "https://portal.test/api/health/predict"
        assert seen["body"]["predictionPeriod"] == "1month"
        assert seen["body"]["userProfile"] == {}
        [reading] = seen["body"]["historicalData"]
        assert reading["heartRate"] == 72
