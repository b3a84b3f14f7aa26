"""Health assistant chat with a deterministic offline fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from vitalsync.domains.vitals.connectors import AuthProvider, RemoteAnalysisService
from vitalsync.domains.vitals.connectors.remote_analysis import fallback_chat_response

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    text: str
    source: str  # 'remote-ai' | 'fallback'


class HealthAssistant:
    """Answers free-text health questions.

    Uses the remote analysis service when it is configured and authenticated;
    otherwise (or on any remote failure) answers from a fixed keyword table.
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

    async def ask(self, message: str, context: dict[str, Any] | None = None) -> ChatReply:
        if self._remote is not None and self._auth is not None and self._auth.get_auth_headers():
            try:
                text = await asyncio.wait_for(
                    self._remote.chat(message, context), timeout=self._timeout
                )
                return ChatReply(text=text, source="remote-ai")
            except Exception as exc:
                logger.warning("Remote chat unavailable (%s); using fallback", type(exc).__name__)
        return ChatReply(text=fallback_chat_response(message), source="fallback")
