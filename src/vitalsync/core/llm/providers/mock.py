"""Mock LLM provider for testing and offline development."""

from __future__ import annotations

import asyncio
import json

from vitalsync.core.llm.provider import ProviderResponse

_DEFAULT_ANALYSIS = {
    "analysis": "Vital signs reviewed by the mock analysis provider.",
    "riskLevel": "low",
    "anomalies": [],
    "recommendations": ["Keep tracking your vitals daily."],
    "confidence": 0.9,
}


class MockProvider:
    """Returns a canned response; can be told to fail or stall to exercise fallbacks."""

    def __init__(
        self,
        response_content: str | None = None,
        *,
        error: Exception | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.response_content = (
            response_content if response_content is not None else json.dumps(_DEFAULT_ANALYSIS)
        )
        self.error = error
        self.delay_seconds = delay_seconds
        self.last_system_message: str = ""
        self.last_user_message: str = ""
        self.call_count: int = 0

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> ProviderResponse:
        self.last_system_message = system_message
        self.last_user_message = user_message
        self.call_count += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return ProviderResponse(
            content=self.response_content,
            input_tokens=len(system_message.split()) + len(user_message.split()),
            output_tokens=len(self.response_content.split()),
            model="mock",
            latency_ms=self.delay_seconds * 1000,
        )
