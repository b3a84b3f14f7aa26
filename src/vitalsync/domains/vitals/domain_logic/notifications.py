"""Notification generation from consecutive risk assessments, plus the inbox.

:func:`generate_notifications` is a pure generator: identical inputs give
structurally identical notifications (only ``id`` and ``timestamp`` differ).
Deduplication happens in :class:`NotificationInbox` before persisting, keyed
by subject, type, anomaly set and time bucket.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from collections.abc import Mapping
from datetime import datetime

from vitalsync.core.storage.repository import VitalsRepository
from vitalsync.domains.vitals.domain_logic.models import (
    HealthNotification,
    RiskAssessment,
    risk_rank,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_SECONDS = 300

_NUMBER = re.compile(r"\d+(?:\.\d+)?")

_METRIC_LABELS = {
    "heart_rate": "heart rate",
    "blood_pressure_systolic": "systolic blood pressure",
    "blood_pressure_diastolic": "diastolic blood pressure",
    "oxygen_saturation": "oxygen saturation",
    "body_temperature": "body temperature",
    "steps": "daily steps",
    "sleep_hours": "sleep",
}


def _trend_suffix(trends: Mapping[str, str] | None) -> str:
    if not trends:
        return ""
    moving = [
        f"{_METRIC_LABELS.get(metric, metric)} trending {direction}"
        for metric, direction in sorted(trends.items())
        if direction in ("up", "down")
    ]
    if not moving:
        return ""
    return " Recent trends: " + "; ".join(moving) + "."


def _anomaly_identities(assessment: RiskAssessment) -> dict[str, str]:
    """Identity -> display text for every anomaly of an assessment.

    Findings carry a metric:category identity. Free-text anomalies without one
    (e.g. from the remote tier) are keyed by their text with numbers masked, so
    a new measured value alone never makes an anomaly new.
    """
    identities = dict(assessment.anomaly_ids)
    covered = set(identities.values())
    for text in assessment.anomalies:
        if text not in covered:
            identities.setdefault("text:" + _NUMBER.sub("#", text.lower()), text)
    return identities


def _make(
    subject_id: str,
    type_: str,
    severity: str,
    message: str,
    now: datetime,
    anomalies: list[str],
) -> HealthNotification:
    return HealthNotification(
        id=str(uuid.uuid4()),
        subject_id=subject_id,
        type=type_,
        severity=severity,
        message=message,
        timestamp=now,
        acknowledged=False,
        action_required=type_ != "improvement",
        anomalies=tuple(anomalies),
    )


def generate_notifications(
    previous: RiskAssessment | None,
    current: RiskAssessment,
    trends: Mapping[str, str] | None = None,
    *,
    subject_id: str,
    now: datetime | None = None,
) -> list[HealthNotification]:
    """Derive notifications from the change between two assessments.

    - emergency: current is critical and previous was not (edge-triggered).
    - decline: risk rose without reaching critical. A rise of exactly one
      band is a warning; a jump of two or more bands (low to high) is also
      reported as a decline, at critical severity.
    - improvement: risk fell.
    - anomaly: same level, with a finding whose identity (metric and
      category) was absent from the previous assessment. A sustained
      condition whose value keeps changing is not new.
    """
    now = now or utcnow()
    suffix = _trend_suffix(trends)
    prev_level = previous.risk_level if previous is not None else None
    prev_ids = set(_anomaly_identities(previous)) if previous is not None else set()
    notifications: list[HealthNotification] = []

    if current.risk_level == "critical" and prev_level != "critical":
        detail = "; ".join(current.anomalies) or "critical vital signs detected"
        notifications.append(
            _make(
                subject_id,
                "emergency",
                "critical",
                f"Emergency: {detail}. Seek immediate medical attention.{suffix}",
                now,
                list(current.anomalies),
            )
        )
        return notifications

    if prev_level is not None:
        delta = risk_rank(current.risk_level) - risk_rank(prev_level)
        if delta > 0:
            notifications.append(
                _make(
                    subject_id,
                    "decline",
                    "warning" if delta == 1 else "critical",
                    f"Your health risk rose from {prev_level} to {current.risk_level}.{suffix}",
                    now,
                    list(current.anomalies),
                )
            )
            return notifications
        if delta < 0:
            notifications.append(
                _make(
                    subject_id,
                    "improvement",
                    "info",
                    f"Your health risk improved from {prev_level} to {current.risk_level}.{suffix}",
                    now,
                    list(current.anomalies),
                )
            )
            return notifications

    new_anomalies = [
        text for key, text in _anomaly_identities(current).items() if key not in prev_ids
    ]
    if new_anomalies:
        notifications.append(
            _make(
                subject_id,
                "anomaly",
                "critical" if current.risk_level == "critical" else "warning",
                "New reading outside normal range: " + "; ".join(new_anomalies) + "." + suffix,
                now,
                new_anomalies,
            )
        )
    return notifications


def dedupe_key(notification: HealthNotification, bucket_seconds: int = DEFAULT_BUCKET_SECONDS) -> str:
    """Key identifying duplicates: (subject, type, anomaly set, time bucket)."""
    anomaly_digest = hashlib.sha256(
        "\n".join(sorted(set(notification.anomalies))).encode()
    ).hexdigest()[:16]
    bucket = int(notification.timestamp.timestamp()) // max(bucket_seconds, 1)
    return f"{notification.subject_id}:{notification.type}:{anomaly_digest}:{bucket}"


class NotificationInbox:
    """Persists generated notifications (deduplicated) and handles acknowledgement.

    Usage::

        inbox = NotificationInbox(repository)
        stored = inbox.publish(generate_notifications(prev, curr, subject_id="p1"))
        inbox.acknowledge(stored[0].id)
    """

    def __init__(
        self, repository: VitalsRepository, bucket_seconds: int = DEFAULT_BUCKET_SECONDS
    ) -> None:
        self._repo = repository
        self._bucket_seconds = bucket_seconds

    def publish(self, notifications: list[HealthNotification]) -> list[HealthNotification]:
        """Store notifications, dropping those whose dedupe key already exists."""
        stored: list[HealthNotification] = []
        for notification in notifications:
            key = dedupe_key(notification, self._bucket_seconds)
            if self._repo.save_notification(notification, key):
                stored.append(notification)
                logger.info(
                    "Notification %s (%s/%s) for subject %s",
                    notification.id,
                    notification.type,
                    notification.severity,
                    notification.subject_id,
                )
            else:
                logger.debug("Dropped duplicate %s notification (%s)", notification.type, key)
        return stored

    def acknowledge(self, notification_id: str) -> HealthNotification:
        """Mark a notification acknowledged. Repeated calls are no-ops.

        Raises:
            KeyError: If no notification has this id.
        """
        if not self._repo.acknowledge_notification(notification_id):
            raise KeyError(notification_id)
        notification = self._repo.get_notification(notification_id)
        assert notification is not None
        return notification

    def get(self, notification_id: str) -> HealthNotification | None:
        return self._repo.get_notification(notification_id)

    def pending(self, subject_id: str | None = None) -> list[HealthNotification]:
        return self._repo.list_notifications(subject_id, unacknowledged_only=True)

    def recent(
        self, subject_id: str | None = None, *, limit: int = 100
    ) -> list[HealthNotification]:
        return self._repo.list_notifications(subject_id, limit=limit)
