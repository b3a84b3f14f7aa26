"""Repository-backed implementations of the persistence collaborators.

The repository is synchronous SQLite; these adapters expose it through the
async ``VitalsStore`` / ``PatientDirectory`` protocols and convert storage
failures into ``DependencyUnavailable`` so the sync queue can retry them.
"""

from __future__ import annotations

import logging
import sqlite3

from vitalsync.core.storage.database import DatabaseError
from vitalsync.core.storage.encryption import EncryptionError
from vitalsync.core.storage.repository import RepositoryError, VitalsRepository
from vitalsync.domains.vitals.domain_logic.errors import DependencyUnavailable
from vitalsync.domains.vitals.domain_logic.models import PatientSnapshot, VitalRecord

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (RepositoryError, DatabaseError, EncryptionError, sqlite3.Error)


class RepositoryVitalsStore:
    """VitalsStore over :class:`VitalsRepository`."""

    def __init__(self, repository: VitalsRepository) -> None:
        self._repo = repository

    async def save_vital_record(self, record: VitalRecord) -> bool:
        try:
            inserted = self._repo.save_vital_record(record)
            self._repo.touch_patient(
                record.subject_id,
                device_connection_state="connected" if record.source == "device" else None,
            )
        except _STORAGE_ERRORS as exc:
            raise DependencyUnavailable("storage", str(exc)) from exc
        return inserted

    async def list_vital_records(
        self,
        subject_id: str,
        since: str | None = None,
        until: str | None = None,
    ) -> list[VitalRecord]:
        try:
            return self._repo.list_vital_records(subject_id, since=since, until=until)
        except _STORAGE_ERRORS as exc:
            raise DependencyUnavailable("storage", str(exc)) from exc


class RepositoryPatientDirectory:
    """PatientDirectory over :class:`VitalsRepository`.

    Returns raw snapshots (latest vitals, SOS flag). Risk and the derived
    emergency flag are computed by the admin monitor.
    """

    def __init__(self, repository: VitalsRepository) -> None:
        self._repo = repository

    async def list_patients(self) -> list[PatientSnapshot]:
        try:
            snapshots = []
            for patient in self._repo.list_patients():
                snapshots.append(
                    PatientSnapshot(
                        patient_id=patient.id,
                        name=patient.display_name,
                        latest_vitals=self._repo.get_latest_vital_record(patient.id),
                        is_emergency=patient.sos_active,
                        emergency_type="Manual SOS" if patient.sos_active else None,
                        device_connection_state=patient.device_connection_state,
                        last_updated=patient.last_updated,
                        emergency_contact=patient.emergency_contact,
                    )
                )
            return snapshots
        except _STORAGE_ERRORS as exc:
            raise DependencyUnavailable("patient-directory", str(exc)) from exc

    async def flag_sos(self, patient_id: str) -> None:
        try:
            self._repo.set_sos(patient_id)
        except _STORAGE_ERRORS as exc:
            raise DependencyUnavailable("patient-directory", str(exc)) from exc

    async def clear_sos(self, patient_id: str) -> None:
        try:
            self._repo.clear_sos(patient_id)
        except _STORAGE_ERRORS as exc:
            raise DependencyUnavailable("patient-directory", str(exc)) from exc
