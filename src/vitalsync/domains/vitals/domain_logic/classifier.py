"""Two-tier risk classifier: optional remote analysis, then the rule engine.

The remote tier is a fast-fail dependency. It runs under a bounded timeout
and any failure falls through to :func:`classify_by_rules`, which never
raises on a validated record. A remote answer is never allowed to report a
lower risk level than the rule engine computes for the same record.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import OrderedDict
from typing import Any

from vitalsync.domains.vitals.connectors import AuthProvider, RemoteAnalysisService
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import (
    RISK_LEVELS,
    PatientProfile,
    RiskAssessment,
    VitalRecord,
)
from vitalsync.domains.vitals.domain_logic.risk_rules import (
    anomaly_identities,
    assessment_floor,
    classify_by_rules,
    is_at_least,
)

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_CONFIDENCE = 0.8
DEFAULT_CACHE_SIZE = 512


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, str) and item.strip()]


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_REMOTE_CONFIDENCE
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        return DEFAULT_REMOTE_CONFIDENCE
    return float(value)


def assessment_from_remote(
    payload: dict[str, Any], record: VitalRecord, profile: PatientProfile | None = None
) -> RiskAssessment:
    """Validate a remote payload and convert it to a RiskAssessment.

    Raises:
        DependencyUnavailable: If the payload has no valid ``riskLevel``.
    """
    level = payload.get("riskLevel", payload.get("risk_level"))
    if level not in RISK_LEVELS:
        raise DependencyUnavailable("remote-ai", f"invalid riskLevel {level!r}")

    assessment = RiskAssessment(
        risk_level=level,
        anomalies=_string_list(payload.get("anomalies")),
        recommendations=_string_list(payload.get("recommendations")),
        confidence=_confidence(payload.get("confidence")),
        source="remote-ai",
        analysis=str(payload.get("analysis") or ""),
        record_id=record.id,
        recorded_at=record.timestamp.isoformat(),
        anomaly_ids=anomaly_identities(record),
    )

    floor = assessment_floor(record)
    if not is_at_least(assessment.risk_level, floor):
        # Raise to the rule-engine level and carry over what the remote tier missed.
        rules = classify_by_rules(record, profile)
        logger.info(
            "Remote assessment for %s below rule floor (%s < %s); raising",
            record.id,
            assessment.risk_level,
            floor,
        )
        assessment.risk_level = floor
        assessment.anomalies += [a for a in rules.anomalies if a not in assessment.anomalies]
        assessment.recommendations += [
            r for r in rules.recommendations if r not in assessment.recommendations
        ]
    if not assessment.recommendations:
        assessment.recommendations = classify_by_rules(record, profile).recommendations
    return assessment


class RiskClassifier:
    """Maps a VitalRecord (+ optional profile) to a RiskAssessment.

    Usage::

        classifier = RiskClassifier(remote=LLMAnalysisService(provider), auth=auth)
        assessment = await classifier.classify(record, profile)

    Results are cached per record id (and profile), since a record is
    immutable and its assessment is recomputable.
    """

    def __init__(
        self,
        remote: RemoteAnalysisService | None = None,
        auth: AuthProvider | None = None,
        *,
        timeout_seconds: float = 8.0,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self._remote = remote
        self._auth = auth
        self._timeout = timeout_seconds
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[str, PatientProfile | None], RiskAssessment] = (
            OrderedDict()
        )

    @property
    def remote_enabled(self) -> bool:
        """True when a remote service is configured and auth headers are available."""
        if self._remote is None or self._auth is None:
            return False
        return bool(self._auth.get_auth_headers())

    async def classify(
        self, record: VitalRecord, profile: PatientProfile | None = None
    ) -> RiskAssessment:
        key = (record.id, profile)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        assessment = await self._classify_remote(record, profile)
        if assessment is None:
            assessment = classify_by_rules(record, profile)

        self._cache[key] = assessment
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return assessment

    async def _classify_remote(
        self, record: VitalRecord, profile: PatientProfile | None
    ) -> RiskAssessment | None:
        if not self.remote_enabled:
            return None
        assert self._remote is not None
        try:
            payload = await asyncio.wait_for(
                self._remote.analyze(record, profile), timeout=self._timeout
            )
            if not isinstance(payload, dict):
                raise DependencyUnavailable("remote-ai", "payload is not an object")
            return assessment_from_remote(payload, record, profile)
        except asyncio.TimeoutError:
            logger.warning(
                "Remote analysis timed out after %.1fs for record %s; using rule engine",
                self._timeout,
                record.id,
            )
        except Exception as exc:
            logger.warning(
                "Remote analysis failed for record %s (%s); using rule engine",
                record.id,
                type(exc).__name__,
            )
        return None

    def invalidate(self, record_id: str) -> None:
        """Drop cached assessments for a record."""
        for key in [k for k in self._cache if k[0] == record_id]:
            del self._cache[key]
