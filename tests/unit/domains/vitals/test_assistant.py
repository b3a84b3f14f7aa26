"""Tests for the health assistant chat and its keyword fallback."""

from __future__ import annotations

import asyncio

import pytest
from helpers import FakeRemoteAnalysis

from vitalsync.domains.vitals.connectors import StaticTokenAuth
from vitalsync.domains.vitals.connectors.remote_analysis import fallback_chat_response
from vitalsync.domains.vitals.domain_logic.assistant import HealthAssistant


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestFallback:
    @pytest.mark.parametrize(
        "message, opening",
        [
            ("What is a good blood pressure?", "Blood pressure"),
            ("Is my BP too high", "Blood pressure"),
            ("My pulse feels fast", "A normal resting heart rate"),
            ("I think I have a fever", "Normal body temperature"),
            ("what should my spo2 be", "Normal oxygen saturation"),
            ("I feel tired", "I understand your health concern"),
        ],
    )
    def test_keyword_answers(self, message, opening):
        assert fallback_chat_response(message).startswith(opening)

    def test_keywords_match_whole_words(self):
        # "bp" inside another word is not a blood-pressure question
        assert fallback_chat_response("I dropped my bpm app").startswith("I understand")


class TestHealthAssistant:
    def test_no_remote_uses_fallback(self):
        reply = _run(HealthAssistant().ask("Tell me about heart rate"))
        assert reply.source == "fallback"
        assert reply.text.startswith("A normal resting heart rate")

    def test_unauthenticated_does_not_call_remote(self):
        remote = FakeRemoteAnalysis()
        reply = _run(HealthAssistant(remote, StaticTokenAuth("")).ask("hello"))
        assert reply.source == "fallback"
        assert remote.chat_calls == 0

    def test_remote_answer_used(self):
        remote = FakeRemoteAnalysis(chat_text="Drink water.")
        reply = _run(HealthAssistant(remote, StaticTokenAuth("t")).ask("hello", {"age": 40}))
        assert reply.source == "remote-ai"
        assert reply.text == "Drink water."

    def test_remote_failure_uses_fallback(self):
        remote = FakeRemoteAnalysis(error=RuntimeError("down"))
        reply = _run(HealthAssistant(remote, StaticTokenAuth("t")).ask("fever?"))
        assert reply.source == "fallback"
        assert reply.text.startswith("Normal body temperature")

    def test_remote_timeout_uses_fallback(self):
        remote = FakeRemoteAnalysis(delay_seconds=1.0)
        assistant = HealthAssistant(remote, StaticTokenAuth("t"), timeout_seconds=0.05)
        assert _run(assistant.ask("hello")).source == "fallback"
