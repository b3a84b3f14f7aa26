"""Tests for the ingestion pipeline (normalize -> persist -> classify -> notify)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from helpers import FakeRemoteAnalysis

from vitalsync.domains.vitals.connectors import StaticTokenAuth
from vitalsync.domains.vitals.connectors.local_store import RepositoryVitalsStore
from vitalsync.domains.vitals.domain_logic.classifier import RiskClassifier
from vitalsync.domains.vitals.domain_logic.errors import OutOfRangeError, ValidationError
from vitalsync.domains.vitals.domain_logic.models import PatientProfile, VitalRecord
from vitalsync.domains.vitals.domain_logic.pipeline import VitalsPipeline
from vitalsync.domains.vitals.sync.offline_queue import ADD_VITALS, OfflineSyncQueue


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _reading(minutes_ago: float = 0, **overrides) -> dict:
    raw = {
        "source": "manual",
        "subjectId": "patient-1",
        "heartRate": 72,
        "bloodPressureSystolic": 118,
        "bloodPressureDiastolic": 76,
        "oxygenSaturation": 98,
        "bodyTemperature": 98.4,
        "timestamp": (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat(),
    }
    raw.update(overrides)
    return raw


def _make_pipeline(vitals_repository, queue_store, notification_inbox, classifier=None):
    store = RepositoryVitalsStore(vitals_repository)

    async def write_vitals(payload):
        return await store.save_vital_record(VitalRecord.from_dict(payload))

    queue = OfflineSyncQueue(queue_store, {ADD_VITALS: write_vitals})
    pipeline = VitalsPipeline(classifier or RiskClassifier(), queue, store, notification_inbox)
    return pipeline, queue


@pytest.fixture
def wired(vitals_repository, queue_store, notification_inbox):
    return _make_pipeline(vitals_repository, queue_store, notification_inbox)


class TestIngest:
    def test_normal_reading_persisted_and_classified(self, wired, vitals_repository):
        pipeline, _ = wired
        outcome = _run(pipeline.ingest(_reading()))
        assert outcome.write.status == "written"
        assert outcome.assessment.risk_level == "low"
        assert outcome.assessment.anomalies == []
        assert outcome.notifications == []
        assert vitals_repository.count_vital_records() == 1

    def test_invalid_reading_raises_and_persists_nothing(self, wired, vitals_repository, queue_store):
        pipeline, _ = wired
        with pytest.raises(ValidationError):
            _run(pipeline.ingest(_reading(heartRate=None)))
        with pytest.raises(OutOfRangeError):
            _run(pipeline.ingest(_reading(heartRate=500)))
        assert vitals_repository.count_vital_records() == 0
        assert queue_store.count() == 0

    def test_decline_to_critical_emits_emergency(self, wired, notification_inbox):
        pipeline, _ = wired
        _run(pipeline.ingest(_reading(minutes_ago=5)))
        outcome = _run(pipeline.ingest(_reading(heartRate=130, oxygenSaturation=92)))
        assert outcome.assessment.risk_level == "critical"
        [notification] = outcome.notifications
        assert notification.type == "emergency"
        assert notification_inbox.pending("patient-1")[0].id == notification.id

    def test_sustained_critical_does_not_repeat_emergency(self, wired):
        pipeline, _ = wired
        _run(pipeline.ingest(_reading(minutes_ago=5, heartRate=140)))
        outcome = _run(pipeline.ingest(_reading(heartRate=145)))
        assert all(n.type != "emergency" for n in outcome.notifications)

    def test_sustained_critical_with_changing_values_stays_quiet(self, wired, notification_inbox):
        pipeline, _ = wired
        outcomes = [
            _run(pipeline.ingest(_reading(minutes_ago=4 - i, heartRate=hr)))
            for i, hr in enumerate((135, 140, 145, 150))
        ]
        assert [n.type for n in outcomes[0].notifications] == ["emergency"]
        for outcome in outcomes[1:]:
            assert outcome.assessment.risk_level == "critical"
            assert outcome.notifications == []
        assert len(notification_inbox.pending("patient-1")) == 1

    def test_second_critical_metric_is_a_new_anomaly(self, wired):
        pipeline, _ = wired
        _run(pipeline.ingest(_reading(minutes_ago=2, heartRate=135)))
        _run(pipeline.ingest(_reading(minutes_ago=1, heartRate=140)))
        outcome = _run(pipeline.ingest(_reading(heartRate=142, oxygenSaturation=86)))
        [notification] = outcome.notifications
        assert notification.type == "anomaly"
        assert notification.severity == "critical"
        assert len(notification.anomalies) == 1
        assert "Oxygen saturation 86%" in notification.anomalies[0]

    def test_deviation_from_own_baseline_reported(self, wired):
        pipeline, _ = wired
        for i in range(3):
            _run(pipeline.ingest(_reading(minutes_ago=5 - i, heartRate=60)))
        outcome = _run(pipeline.ingest(_reading(heartRate=75)))
        [change] = outcome.changes
        assert change.metric == "heart_rate"
        assert change.significance == "moderate"
        assert outcome.to_dict()["health_changes"][0]["baseline"] == 60

    def test_outcome_dict(self, wired):
        pipeline, _ = wired
        data = _run(pipeline.ingest(_reading(), PatientProfile(age=65))).to_dict()
        assert data["persistence"] == "written"
        assert data["assessment"]["risk_level"] == "low"
        assert 0 <= data["health_score"] <= 100

    def test_trends_from_history(self, wired):
        pipeline, _ = wired
        for i, hr in enumerate([70, 70, 71, 85, 88, 90]):
            outcome = _run(pipeline.ingest(_reading(minutes_ago=10 - i, heartRate=hr)))
        assert outcome.trends["heart_rate"] == "up"


class TestOffline:
    def test_offline_ingest_is_queued_then_replayed(self, wired, vitals_repository):
        pipeline, queue = wired
        _run(queue.set_online(False))
        outcome = _run(pipeline.ingest(_reading(oxygenSaturation=88)))
        assert outcome.write.status == "queued"
        # Classification and notifications do not wait for persistence
        assert outcome.assessment.risk_level == "critical"
        assert outcome.notifications[0].type == "emergency"
        assert vitals_repository.count_vital_records() == 0

        _run(queue.set_online(True))
        assert vitals_repository.count_vital_records() == 1
        assert vitals_repository.get_vital_record(outcome.record.id) == outcome.record


class TestBaseline:
    def test_baseline_rebuilt_after_restart(self, vitals_repository, queue_store, notification_inbox):
        first, _ = _make_pipeline(vitals_repository, queue_store, notification_inbox)
        _run(first.ingest(_reading(minutes_ago=5, heartRate=140)))

        restarted, _ = _make_pipeline(vitals_repository, queue_store, notification_inbox)
        outcome = _run(restarted.ingest(_reading(heartRate=142)))
        assert all(n.type != "emergency" for n in outcome.notifications)


class TestRemoteTier:
    def test_remote_assessment_used_when_authenticated(self, vitals_repository, queue_store, notification_inbox):
        classifier = RiskClassifier(FakeRemoteAnalysis(), StaticTokenAuth("t"))
        pipeline, _ = _make_pipeline(vitals_repository, queue_store, notification_inbox, classifier)
        outcome = _run(pipeline.ingest(_reading()))
        assert outcome.assessment.source == "remote-ai"

    def test_remote_failure_does_not_fail_ingest(self, vitals_repository, queue_store, notification_inbox):
        classifier = RiskClassifier(
            FakeRemoteAnalysis(error=RuntimeError("down")), StaticTokenAuth("t")
        )
        pipeline, _ = _make_pipeline(vitals_repository, queue_store, notification_inbox, classifier)
        outcome = _run(pipeline.ingest(_reading(heartRate=130)))
        assert outcome.assessment.source == "rule-engine"
        assert outcome.assessment.risk_level == "critical"


class TestReadSide:
    def test_latest(self, wired):
        pipeline, _ = wired
        assert _run(pipeline.latest("patient-1")) is None
        _run(pipeline.ingest(_reading(minutes_ago=2, heartRate=70)))
        _run(pipeline.ingest(_reading(heartRate=110)))
        record, assessment = _run(pipeline.latest("patient-1"))
        assert record.heart_rate == 110
        assert assessment.risk_level == "medium"

    def test_trends_count(self, wired):
        pipeline, _ = wired
        _run(pipeline.ingest(_reading()))
        trends, count = _run(pipeline.trends("patient-1"))
        assert trends == {}
        assert count == 1

    def test_health_changes(self, wired):
        pipeline, _ = wired
        assert _run(pipeline.health_changes("patient-1")) == (None, [], 0)
        _run(pipeline.ingest(_reading(minutes_ago=2, oxygenSaturation=98)))
        _run(pipeline.ingest(_reading(oxygenSaturation=91)))
        record, changes, count = _run(pipeline.health_changes("patient-1"))
        assert record.oxygen_saturation == 91
        assert [c.trend for c in changes] == ["concerning"]
        assert count == 2
