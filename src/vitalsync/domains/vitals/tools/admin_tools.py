"""MCP tools for the admin console: patient directory, monitoring, resolution."""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from vitalsync.core.storage.models import PatientRecord
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.monitoring.admin_monitor import (
    AdminSession,
    NotAuthenticatedError,
    RecordingListener,
)
from vitalsync.domains.vitals.tools import responses

if TYPE_CHECKING:
    from vitalsync.core.storage.repository import VitalsRepository
    from vitalsync.domains.vitals.monitoring.admin_monitor import AdminMonitor

logger = logging.getLogger(__name__)

_RECENT_ESCALATIONS = 20


def register_admin_tools(
    mcp: FastMCP,
    monitor: AdminMonitor,
    repository: VitalsRepository,
    *,
    admin_token: str = "",
) -> None:
    """Register admin monitoring tools on the MCP server."""

    escalations = RecordingListener()
    monitor.subscribe(escalations)

    def _authenticate(token: str) -> AdminSession:
        session = AdminSession(token=token)
        if not session.authenticated:
            raise NotAuthenticatedError("Admin token required")
        if admin_token and not hmac.compare_digest(token.encode(), admin_token.encode()):
            raise NotAuthenticatedError("Invalid admin token")
        return session

    @mcp.tool
    async def register_patient(
        ctx: Context,
        patient_id: str,
        display_name: str = "",
        contact_name: str = "",
        contact_phone: str = "",
        contact_relationship: str = "",
    ) -> str:
        """Add or update a patient in the directory, with an emergency contact.

        Args:
            patient_id: Patient identifier (the subject_id used for readings).
            display_name: Name shown in the admin console.
            contact_name: Emergency contact name.
            contact_phone: Emergency contact phone number.
            contact_relationship: Relationship to the patient.
        """
        contact = {}
        if contact_phone:
            contact = {
                "name": contact_name,
                "phone": contact_phone,
                "relationship": contact_relationship,
            }
        existing = repository.get_patient(patient_id)
        repository.upsert_patient(
            PatientRecord(
                id=patient_id,
                display_name=display_name,
                emergency_contact=contact,
                device_connection_state=(
                    existing.device_connection_state if existing else "unknown"
                ),
            )
        )
        return responses.ok(
            {"patient_id": patient_id, "has_emergency_contact": bool(contact)}, status="saved"
        )

    @mcp.tool
    async def admin_start_monitoring(ctx: Context, admin_token: str) -> str:
        """Start polling all patients for emergencies (every few seconds).

        Args:
            admin_token: Admin session token.
        """
        try:
            session = _authenticate(admin_token)
        except NotAuthenticatedError as exc:
            return responses.error(exc)
        handle = monitor.start(session)
        return responses.ok({"running": handle.running}, status="monitoring")

    @mcp.tool
    async def admin_stop_monitoring(ctx: Context) -> str:
        """Stop the admin poll loop (logout)."""
        monitor.stop()
        return responses.ok({"running": monitor.running}, status="stopped")

    @mcp.tool
    async def admin_patient_overview(ctx: Context, admin_token: str, refresh: bool = True) -> str:
        """All patients with latest vitals, risk and emergency flags.

        Args:
            admin_token: Admin session token.
            refresh: Poll the directory now instead of using the last snapshot.
        """
        try:
            _authenticate(admin_token)
        except NotAuthenticatedError as exc:
            return responses.error(exc)
        refreshed = await monitor.tick() if refresh else None
        return responses.ok({
            "running": monitor.running,
            "refreshed": refreshed,
            "last_refreshed": monitor.last_refreshed.isoformat() if monitor.last_refreshed else None,
            "last_error": monitor.last_error,
            "summary": monitor.summary(),
            "patients": [p.to_dict() for p in monitor.patients],
            "recent_escalations": [
                {
                    "patient_id": e.patient_id,
                    "emergency_type": e.emergency_type,
                    "detected_at": e.detected_at.isoformat(),
                }
                for e in escalations.events[-_RECENT_ESCALATIONS:]
            ],
        })

    @mcp.tool
    async def admin_resolve_emergency(ctx: Context, admin_token: str, patient_id: str) -> str:
        """Clear a patient's emergency flag after it has been handled.

        Args:
            admin_token: Admin session token.
            patient_id: The patient whose emergency is resolved.
        """
        try:
            _authenticate(admin_token)
        except NotAuthenticatedError as exc:
            return responses.error(exc)
        try:
            resolved = await monitor.resolve_emergency(patient_id)
        except DependencyUnavailable as exc:
            return responses.error(exc)
        if not resolved:
            return responses.error(
                error_type="NotFound", message=f"No active emergency for {patient_id!r}"
            )
        return responses.ok({"patient_id": patient_id}, status="resolved")
