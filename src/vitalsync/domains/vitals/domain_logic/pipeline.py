"""Ingestion pipeline: normalize -> persist (via sync queue) -> classify -> notify.

The pipeline owns the per-subject baseline (the last assessment it produced)
that notifications are generated against. After a restart the baseline is
rebuilt from the most recent stored record preceding the new one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from vitalsync.domains.vitals.connectors import VitalsStore
from vitalsync.domains.vitals.domain_logic.classifier import RiskClassifier
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import (
    HealthNotification,
    PatientProfile,
    RiskAssessment,
    VitalRecord,
)
from vitalsync.domains.vitals.domain_logic.normalizer import DEFAULT_CLOCK_SKEW, normalize
from vitalsync.domains.vitals.domain_logic.notifications import (
    NotificationInbox,
    generate_notifications,
)
from vitalsync.domains.vitals.domain_logic.predictive import HealthChange, detect_health_changes
from vitalsync.domains.vitals.domain_logic.risk_rules import health_score
from vitalsync.domains.vitals.domain_logic.trend_detector import detect_trends
from vitalsync.domains.vitals.sync.offline_queue import (
    ADD_VITALS,
    OfflineSyncQueue,
    SubmitResult,
)

logger = logging.getLogger(__name__)


@dataclass
class IngestOutcome:
    record: VitalRecord
    assessment: RiskAssessment
    write: SubmitResult
    trends: dict[str, str] = field(default_factory=dict)
    changes: list[HealthChange] = field(default_factory=list)
    notifications: list[HealthNotification] = field(default_factory=list)
    warnings: tuple[str, ...] = ()
    health_score: float = 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "assessment": self.assessment.to_dict(),
            "persistence": self.write.status,
            "queue_entry_id": self.write.entry_id,
            "trends": dict(self.trends),
            "health_changes": [c.to_dict() for c in self.changes],
            "notifications": [n.to_dict() for n in self.notifications],
            "warnings": list(self.warnings),
            "health_score": round(self.health_score, 1),
        }


class VitalsPipeline:
    """Wires the pipeline stages together for one process.

    Usage::

        pipeline = VitalsPipeline(classifier, queue, store, inbox)
        outcome = await pipeline.ingest({"source": "manual", "subjectId": "p1", ...})

    Raises ``ValidationError`` / ``OutOfRangeError`` from :meth:`ingest` for bad
    input; storage and remote-analysis failures never surface from here.
    """

    def __init__(
        self,
        classifier: RiskClassifier,
        queue: OfflineSyncQueue,
        store: VitalsStore,
        inbox: NotificationInbox,
        *,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
    ) -> None:
        self._classifier = classifier
        self._queue = queue
        self._store = store
        self._inbox = inbox
        self._clock_skew = clock_skew
        self._baselines: dict[str, RiskAssessment] = {}

    async def ingest(
        self, raw: dict[str, Any], profile: PatientProfile | None = None
    ) -> IngestOutcome:
        result = normalize(raw, clock_skew=self._clock_skew)
        record = result.unwrap()

        write = await self._queue.submit(ADD_VITALS, record.to_dict())
        assessment = await self._classifier.classify(record, profile)

        history = await self.history(record.subject_id)
        if all(r.id != record.id for r in history):
            history.append(record)
            history.sort(key=lambda r: r.timestamp)
        trends = detect_trends(history)
        changes = detect_health_changes(record, history)

        previous = self._baselines.get(record.subject_id)
        if previous is None:
            previous = await self._rebuild_baseline(record, history, profile)

        generated = generate_notifications(
            previous, assessment, trends, subject_id=record.subject_id
        )
        stored = self._inbox.publish(generated)
        self._baselines[record.subject_id] = assessment

        logger.info(
            "Ingested %s record %s for %s: risk=%s via %s, persistence=%s, notifications=%d",
            record.source,
            record.id,
            record.subject_id,
            assessment.risk_level,
            assessment.source,
            write.status,
            len(stored),
        )
        return IngestOutcome(
            record=record,
            assessment=assessment,
            write=write,
            trends=trends,
            changes=changes,
            notifications=stored,
            warnings=result.warnings,
            health_score=health_score(record, profile),
        )

    async def history(self, subject_id: str) -> list[VitalRecord]:
        """Stored records of a subject, oldest first. Empty when storage is unreachable."""
        try:
            return list(await self._store.list_vital_records(subject_id))
        except DependencyUnavailable as exc:
            logger.warning("History unavailable for %s (%s); trends skipped", subject_id, exc)
            return []

    async def _rebuild_baseline(
        self,
        record: VitalRecord,
        history: list[VitalRecord],
        profile: PatientProfile | None,
    ) -> RiskAssessment | None:
        earlier = [r for r in history if r.id != record.id and r.timestamp <= record.timestamp]
        if not earlier:
            return None
        return await self._classifier.classify(earlier[-1], profile)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def latest(
        self, subject_id: str, profile: PatientProfile | None = None
    ) -> tuple[VitalRecord, RiskAssessment] | None:
        history = await self.history(subject_id)
        if not history:
            return None
        record = history[-1]
        return record, await self._classifier.classify(record, profile)

    async def trends(self, subject_id: str) -> tuple[dict[str, str], int]:
        history = await self.history(subject_id)
        return detect_trends(history), len(history)

    async def health_changes(
        self, subject_id: str
    ) -> tuple[VitalRecord | None, list[HealthChange], int]:
        """Deviations of the latest reading from the average of all earlier ones."""
        history = await self.history(subject_id)
        if not history:
            return None, [], 0
        latest = history[-1]
        return latest, detect_health_changes(latest, history), len(history)
