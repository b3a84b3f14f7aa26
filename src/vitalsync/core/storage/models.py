"""Data models for the persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PatientRecord:
    """A row of the patient directory.

    The emergency contact is stored encrypted; the SOS flag and connection
    state stay in clear columns for the admin poll.
    """

    id: str
    display_name: str = ""
    emergency_contact: dict[str, Any] = field(default_factory=dict)
    device_connection_state: str = "unknown"  # 'connected' | 'disconnected' | 'unknown'
    sos_active: bool = False
    sos_triggered_at: str | None = None
    last_updated: str = ""
