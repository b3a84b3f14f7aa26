"""MCP tools for recording vitals, assessing risk and reading notifications.

Readings go through the full pipeline: normalization, persistence via the
offline sync queue, risk classification and notification generation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from vitalsync.domains.vitals.domain_logic.errors import ValidationError
from vitalsync.domains.vitals.domain_logic.risk_rules import health_score
from vitalsync.domains.vitals.sync.offline_queue import ACK_NOTIFICATION
from vitalsync.domains.vitals.tools import responses

if TYPE_CHECKING:
    from vitalsync.domains.vitals.domain_logic.assistant import HealthAssistant
    from vitalsync.domains.vitals.domain_logic.notifications import NotificationInbox
    from vitalsync.domains.vitals.domain_logic.pipeline import VitalsPipeline
    from vitalsync.domains.vitals.domain_logic.predictive import HealthForecaster
    from vitalsync.domains.vitals.sync.offline_queue import OfflineSyncQueue

logger = logging.getLogger(__name__)


def register_vitals_tools(
    mcp: FastMCP,
    pipeline: VitalsPipeline,
    inbox: NotificationInbox,
    queue: OfflineSyncQueue,
    assistant: HealthAssistant,
    forecaster: HealthForecaster,
) -> None:
    """Register vitals ingestion, assessment and notification tools on the MCP server."""

    async def _ingest(raw: dict[str, Any], age: int | None, gender: str, history: str) -> str:
        try:
            outcome = await pipeline.ingest(
                raw, responses.profile_from_args(age, gender, history)
            )
        except ValidationError as exc:
            logger.info("Rejected reading: %s", exc.field)
            return responses.error(exc)
        return responses.ok(outcome.to_dict(), status="recorded")

    @mcp.tool
    async def record_manual_vitals(
        ctx: Context,
        subject_id: str,
        heart_rate: float,
        blood_pressure_systolic: float,
        blood_pressure_diastolic: float,
        oxygen_saturation: float,
        body_temperature: float,
        steps: int | None = None,
        sleep_hours: float | None = None,
        timestamp: str = "",
        supersedes: str = "",
        age: int | None = None,
        gender: str = "",
        medical_history: str = "",
    ) -> str:
        """Record a manually entered set of vital signs and assess it.

        Args:
            subject_id: Patient identifier.
            heart_rate: Heart rate in BPM.
            blood_pressure_systolic: Systolic blood pressure (top number, mmHg).
            blood_pressure_diastolic: Diastolic blood pressure (bottom number, mmHg).
            oxygen_saturation: SpO2 percentage.
            body_temperature: Body temperature in °F.
            steps: Optional step count.
            sleep_hours: Optional hours slept.
            timestamp: ISO 8601 time of the reading. Defaults to now.
            supersedes: Id of an earlier record this entry corrects.
            age: Optional patient age, for personalized recommendations.
            gender: Optional patient gender.
            medical_history: Optional free-text history (e.g. 'hypertension, diabetes').
        """
        raw = {
            "source": "manual",
            "subjectId": subject_id,
            "heartRate": heart_rate,
            "bloodPressureSystolic": blood_pressure_systolic,
            "bloodPressureDiastolic": blood_pressure_diastolic,
            "oxygenSaturation": oxygen_saturation,
            "bodyTemperature": body_temperature,
            "steps": steps,
            "sleepHours": sleep_hours,
            "timestamp": timestamp or None,
            "supersedes": supersedes or None,
        }
        return await _ingest(raw, age, gender, medical_history)

    @mcp.tool
    async def ingest_device_reading(
        ctx: Context,
        payload: dict[str, Any],
        age: int | None = None,
        gender: str = "",
        medical_history: str = "",
    ) -> str:
        """Ingest a wearable payload (camelCase or snake_case keys) and assess it.

        Args:
            payload: Device reading, e.g. {"subjectId": "p1", "heartRate": 72,
                "spo2": 98, "temperature": 36.8, "deviceInfo": {...}}.
                Temperatures below 50 are treated as Celsius.
            age: Optional patient age.
            gender: Optional patient gender.
            medical_history: Optional free-text history.
        """
        raw = dict(payload)
        raw.setdefault("source", "device")
        return await _ingest(raw, age, gender, medical_history)

    @mcp.tool
    async def assess_latest_vitals(
        ctx: Context,
        subject_id: str,
        age: int | None = None,
        gender: str = "",
        medical_history: str = "",
    ) -> str:
        """Classify the most recent stored reading of a patient.

        Args:
            subject_id: Patient identifier.
            age: Optional patient age.
            gender: Optional patient gender.
            medical_history: Optional free-text history.
        """
        profile = responses.profile_from_args(age, gender, medical_history)
        latest = await pipeline.latest(subject_id, profile)
        if latest is None:
            return responses.ok({"subject_id": subject_id, "data_points": 0}, status="no_data")
        record, assessment = latest
        return responses.ok({
            "subject_id": subject_id,
            "record": record.to_dict(),
            "assessment": assessment.to_dict(),
            "health_score": round(health_score(record, profile), 1),
        })

    @mcp.tool
    async def vitals_trends(ctx: Context, subject_id: str) -> str:
        """Directional trends (up/down/stable) per metric from stored history.

        Metrics with fewer than 6 readings are reported as insufficient data.

        Args:
            subject_id: Patient identifier.
        """
        trends, points = await pipeline.trends(subject_id)
        return responses.ok({
            "subject_id": subject_id,
            "data_points": points,
            "trends": trends,
        })

    @mcp.tool
    async def vitals_health_changes(ctx: Context, subject_id: str) -> str:
        """Compare the latest reading with the patient's historical average.

        Heart rate and systolic pressure are reported when they move more than
        15%, oxygen saturation when it moves more than 5%. Each change is graded
        improving or concerning with a significance.

        Args:
            subject_id: Patient identifier.
        """
        latest, changes, points = await pipeline.health_changes(subject_id)
        if latest is None:
            return responses.ok({"subject_id": subject_id, "data_points": 0}, status="no_data")
        return responses.ok({
            "subject_id": subject_id,
            "data_points": points,
            "record_id": latest.id,
            "changes": [c.to_dict() for c in changes],
        })

    @mcp.tool
    async def predict_health_outlook(
        ctx: Context,
        subject_id: str,
        period: str = "1week",
        age: int | None = None,
        gender: str = "",
        medical_history: str = "",
    ) -> str:
        """Predict likely health changes over the coming period from stored history.

        Uses the remote analysis service when configured; otherwise a rule
        summary of the last 7 readings.

        Args:
            subject_id: Patient identifier.
            period: '1week', '2week' or '1month'.
            age: Optional patient age.
            gender: Optional patient gender.
            medical_history: Optional free-text history.
        """
        history = await pipeline.history(subject_id)
        if not history:
            return responses.ok({"subject_id": subject_id, "data_points": 0}, status="no_data")
        profile = responses.profile_from_args(age, gender, medical_history)
        try:
            prediction = await forecaster.predict(history, profile, period)  # type: ignore[arg-type]
        except ValidationError as exc:
            return responses.error(exc)
        return responses.ok({
            "subject_id": subject_id,
            "data_points": len(history),
            "prediction": prediction.to_dict(),
        })

    @mcp.tool
    async def list_health_notifications(
        ctx: Context,
        subject_id: str = "",
        unacknowledged_only: bool = False,
        limit: int = 50,
    ) -> str:
        """List health notifications, newest first.

        Args:
            subject_id: Restrict to one patient. Empty for all.
            unacknowledged_only: Only notifications still awaiting acknowledgement.
            limit: Maximum notifications to return.
        """
        if unacknowledged_only:
            items = inbox.pending(subject_id or None)[:limit]
        else:
            items = inbox.recent(subject_id or None, limit=limit)
        return responses.ok({
            "count": len(items),
            "notifications": [n.to_dict() for n in items],
        })

    @mcp.tool
    async def acknowledge_health_notification(ctx: Context, notification_id: str) -> str:
        """Acknowledge a notification. Acknowledging twice is harmless.

        While offline the acknowledgement is queued and applied on reconnect.

        Args:
            notification_id: Id of the notification.
        """
        if inbox.get(notification_id) is None:
            return responses.error(
                error_type="NotFound", message=f"Unknown notification {notification_id!r}"
            )
        result = await queue.submit(ACK_NOTIFICATION, {"notification_id": notification_id})
        if result.status == "queued":
            return responses.ok(
                {"notification_id": notification_id, "queue_entry_id": result.entry_id},
                status="queued",
            )
        return responses.ok(
            {"notification": result.result.to_dict()}, status="acknowledged"
        )

    @mcp.tool
    async def health_assistant_chat(ctx: Context, message: str, subject_id: str = "") -> str:
        """Ask the health assistant a general question.

        Args:
            message: The question.
            subject_id: Optional patient whose latest vitals give context.
        """
        context = None
        if subject_id:
            latest = await pipeline.latest(subject_id)
            if latest is not None:
                record, assessment = latest
                context = {**record.measurements(), "riskLevel": assessment.risk_level}
        reply = await assistant.ask(message, context)
        return responses.ok({"response": reply.text, "source": reply.source})
