"""Directional trends per metric over a time-ordered series of records.

The caller sorts the series by timestamp (ascending). Records that did not
measure a metric (e.g. wearable readings without blood pressure) are skipped
for that metric only.
"""

from __future__ import annotations

import statistics
from collections.abc import Sequence

from vitalsync.domains.vitals.domain_logic.models import METRICS, VitalRecord

MIN_POINTS = 6
WINDOW = 3
RELATIVE_THRESHOLD = 0.02


def detect_trend(series: Sequence[VitalRecord], metric: str) -> str | None:
    """Compare the mean of the latest 3 points with the mean of the prior 3.

    Returns:
        'up', 'down' or 'stable'; None when fewer than 6 points carry the
        metric (insufficient data is not the same as stable).
    """
    values = [v for v in (r.metric_value(metric) for r in series) if v is not None]
    if len(values) < MIN_POINTS:
        return None

    recent = statistics.mean(values[-WINDOW:])
    prior = statistics.mean(values[-2 * WINDOW : -WINDOW])

    if prior == 0:
        if recent == 0:
            return "stable"
        return "up" if recent > 0 else "down"

    change = (recent - prior) / abs(prior)
    if change > RELATIVE_THRESHOLD:
        return "up"
    if change < -RELATIVE_THRESHOLD:
        return "down"
    return "stable"


def detect_trends(series: Sequence[VitalRecord]) -> dict[str, str]:
    """Trends for every metric with enough data; metrics without a trend are omitted."""
    trends: dict[str, str] = {}
    for metric in METRICS:
        direction = detect_trend(series, metric)
        if direction is not None:
            trends[metric] = direction
    return trends
