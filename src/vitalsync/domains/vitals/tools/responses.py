"""JSON response helpers shared by the vitals MCP tools."""

from __future__ import annotations

import json
from typing import Any

from vitalsync.domains.vitals.domain_logic.errors import OutOfRangeError, ValidationError
from vitalsync.domains.vitals.domain_logic.models import PatientProfile


def ok(payload: dict[str, Any], status: str = "ok") -> str:
    return json.dumps({"status": status, **payload}, default=str)


def error(exc: Exception | None = None, *, error_type: str = "", message: str = "") -> str:
    """Tool error envelope: ``{"status": "error", "error_type", "message"}``."""
    body: dict[str, Any] = {
        "status": "error",
        "error_type": error_type or (type(exc).__name__ if exc is not None else "Error"),
        "message": message or (str(exc) if exc is not None else ""),
    }
    if isinstance(exc, ValidationError):
        body["field"] = exc.field
    if isinstance(exc, OutOfRangeError):
        body["plausible_range"] = [exc.low, exc.high]
    return json.dumps(body)


def profile_from_args(
    age: int | None = None, gender: str = "", medical_history: str = ""
) -> PatientProfile | None:
    if age is None and not gender and not medical_history:
        return None
    return PatientProfile(age=age, gender=gender, medical_history=medical_history)
