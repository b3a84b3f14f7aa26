"""Tests for notification generation, deduplication and acknowledgement."""

from __future__ import annotations

from datetime import timedelta

import pytest
from helpers import NOW, make_record

from vitalsync.domains.vitals.domain_logic.models import HealthNotification, RiskAssessment
from vitalsync.domains.vitals.domain_logic.notifications import (
    NotificationInbox,
    dedupe_key,
    generate_notifications,
)
from vitalsync.domains.vitals.domain_logic.risk_rules import classify_by_rules

HR_ANOMALY = "Heart rate 130 BPM is outside normal range (60-100 BPM)"
SPO2_ANOMALY = "Oxygen saturation 93% is below normal (95-100%)"


def _assessment(level: str, anomalies: list[str] | None = None) -> RiskAssessment:
    return RiskAssessment(risk_level=level, anomalies=list(anomalies or []))


def _generate(previous, current, trends=None, now=NOW):
    return generate_notifications(previous, current, trends, subject_id="patient-1", now=now)


class TestEmergency:
    def test_low_to_critical_is_emergency(self):
        [notification] = _generate(_assessment("low"), _assessment("critical", [HR_ANOMALY]))
        assert notification.type == "emergency"
        assert notification.severity == "critical"
        assert notification.action_required is True
        assert HR_ANOMALY in notification.message
        assert notification.anomalies == (HR_ANOMALY,)

    def test_first_assessment_critical_is_emergency(self):
        [notification] = _generate(None, _assessment("critical", [HR_ANOMALY]))
        assert notification.type == "emergency"

    def test_critical_to_critical_is_not_emergency(self):
        notifications = _generate(
            _assessment("critical", [HR_ANOMALY]), _assessment("critical", [HR_ANOMALY])
        )
        assert notifications == []

    def test_sustained_critical_with_new_anomaly(self):
        [notification] = _generate(
            _assessment("critical", [HR_ANOMALY]),
            _assessment("critical", [HR_ANOMALY, SPO2_ANOMALY]),
        )
        assert notification.type == "anomaly"
        assert notification.severity == "critical"
        assert notification.anomalies == (SPO2_ANOMALY,)

    def test_sustained_condition_with_new_value_is_silent(self):
        previous = classify_by_rules(make_record(id="r1", heart_rate=135))
        current = classify_by_rules(make_record(id="r2", heart_rate=150))
        assert previous.anomalies != current.anomalies
        assert _generate(previous, current) == []

    def test_free_text_anomalies_ignore_measured_values(self):
        notifications = _generate(
            _assessment("critical", ["Heart rate 135 BPM is outside normal range (60-100 BPM)"]),
            _assessment("critical", ["Heart rate 150 BPM is outside normal range (60-100 BPM)"]),
        )
        assert notifications == []

    def test_finding_identity_carried_by_rules(self):
        assessment = classify_by_rules(make_record(heart_rate=135, oxygen_saturation=88))
        assert set(assessment.anomaly_ids) == {
            "heart_rate:tachycardia",
            "oxygen_saturation:hypoxemia",
        }
        assert sorted(assessment.anomaly_ids.values()) == sorted(assessment.anomalies)


class TestLevelChanges:
    def test_one_band_rise_is_warning_decline(self):
        [notification] = _generate(_assessment("low"), _assessment("medium", [SPO2_ANOMALY]))
        assert notification.type == "decline"
        assert notification.severity == "warning"
        assert "from low to medium" in notification.message

    def test_two_band_rise_is_critical_decline(self):
        [notification] = _generate(_assessment("low"), _assessment("high", [HR_ANOMALY]))
        assert notification.type == "decline"
        assert notification.severity == "critical"
        assert notification.action_required is True

    def test_fall_is_improvement(self):
        [notification] = _generate(_assessment("high", [HR_ANOMALY]), _assessment("low"))
        assert notification.type == "improvement"
        assert notification.severity == "info"
        assert notification.action_required is False

    def test_unchanged_without_new_anomalies_is_silent(self):
        assert _generate(_assessment("medium", [SPO2_ANOMALY]), _assessment("medium", [SPO2_ANOMALY])) == []
        assert _generate(_assessment("low"), _assessment("low")) == []

    def test_first_assessment_with_anomalies(self):
        [notification] = _generate(None, _assessment("medium", [SPO2_ANOMALY]))
        assert notification.type == "anomaly"
        assert notification.severity == "warning"

    def test_first_assessment_normal_is_silent(self):
        assert _generate(None, _assessment("low")) == []


class TestTrendsAndPurity:
    def test_trends_enrich_message(self):
        [notification] = _generate(
            _assessment("low"),
            _assessment("medium", [SPO2_ANOMALY]),
            trends={"heart_rate": "up", "oxygen_saturation": "stable"},
        )
        assert notification.message.endswith(" Recent trends: heart rate trending up.")

    def test_stable_trends_add_nothing(self):
        [notification] = _generate(
            _assessment("low"), _assessment("medium"), trends={"heart_rate": "stable"}
        )
        assert "Recent trends" not in notification.message

    def test_identical_inputs_give_identical_structure(self):
        first = _generate(_assessment("low"), _assessment("critical", [HR_ANOMALY]))[0]
        second = _generate(_assessment("low"), _assessment("critical", [HR_ANOMALY]))[0]
        assert first.id != second.id
        for field in ("type", "severity", "message", "anomalies", "action_required"):
            assert getattr(first, field) == getattr(second, field)


class TestNotificationShape:
    def test_emergency_must_be_critical(self):
        with pytest.raises(ValueError):
            HealthNotification(
                id="x", subject_id="p", type="emergency", severity="warning",
                message="m", timestamp=NOW, action_required=True,
            )

    def test_critical_requires_action(self):
        with pytest.raises(ValueError):
            HealthNotification(
                id="x", subject_id="p", type="anomaly", severity="critical",
                message="m", timestamp=NOW, action_required=False,
            )


class TestDedupeKey:
    def test_same_bucket_same_key(self):
        a = _generate(_assessment("low"), _assessment("critical", [HR_ANOMALY]))[0]
        b = _generate(
            _assessment("low"), _assessment("critical", [HR_ANOMALY]), now=NOW + timedelta(seconds=30)
        )[0]
        assert dedupe_key(a) == dedupe_key(b)

    def test_different_bucket_different_key(self):
        a = _generate(_assessment("low"), _assessment("critical", [HR_ANOMALY]))[0]
        b = _generate(
            _assessment("low"), _assessment("critical", [HR_ANOMALY]), now=NOW + timedelta(minutes=10)
        )[0]
        assert dedupe_key(a) != dedupe_key(b)

    def test_anomaly_order_does_not_matter(self):
        a = _generate(None, _assessment("critical", [HR_ANOMALY, SPO2_ANOMALY]))[0]
        b = _generate(None, _assessment("critical", [SPO2_ANOMALY, HR_ANOMALY]))[0]
        assert dedupe_key(a) == dedupe_key(b)


class TestInbox:
    def test_publish_drops_duplicates(self, notification_inbox: NotificationInbox):
        first = _generate(_assessment("low"), _assessment("critical", [HR_ANOMALY]))
        again = _generate(
            _assessment("low"), _assessment("critical", [HR_ANOMALY]), now=NOW + timedelta(seconds=5)
        )
        assert notification_inbox.publish(first) == first
        assert notification_inbox.publish(again) == []
        assert len(notification_inbox.recent("patient-1")) == 1

    def test_acknowledge_is_idempotent(self, notification_inbox: NotificationInbox):
        [stored] = notification_inbox.publish(_generate(None, _assessment("medium", [SPO2_ANOMALY])))
        assert notification_inbox.acknowledge(stored.id).acknowledged is True
        assert notification_inbox.acknowledge(stored.id).acknowledged is True
        assert notification_inbox.pending("patient-1") == []

    def test_acknowledge_unknown_raises(self, notification_inbox: NotificationInbox):
        with pytest.raises(KeyError):
            notification_inbox.acknowledge("missing")

    def test_pending_lists_unacknowledged(self, notification_inbox: NotificationInbox):
        notification_inbox.publish(_generate(None, _assessment("medium", [SPO2_ANOMALY])))
        notification_inbox.publish(
            _generate(
                _assessment("medium", [SPO2_ANOMALY]),
                _assessment("low"),
                now=NOW + timedelta(minutes=1),
            )
        )
        pending = notification_inbox.pending("patient-1")
        assert [n.type for n in pending] == ["improvement", "anomaly"]
        assert notification_inbox.get(pending[0].id) == pending[0]
