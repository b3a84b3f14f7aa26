"""Anthropic Claude provider."""

from __future__ import annotations

import time

from vitalsync.core.llm.provider import ProviderResponse


class AnthropicProvider:
    """Claude provider using the Anthropic SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        timeout_seconds: float = 8.0,
    ) -> None:
        import anthropic

        # No SDK-level retries: the caller owns the time budget and falls back.
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key, timeout=timeout_seconds, max_retries=0
        )
        self.model = model

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> ProviderResponse:
        start = time.monotonic()
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_message,
            messages=[{"role": "user", "content": user_message}],
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        content = response.content[0].text if response.content else ""
        return ProviderResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=self.model,
            latency_ms=elapsed_ms,
        )
