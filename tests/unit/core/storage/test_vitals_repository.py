"""Tests for VitalsRepository: records, notifications and the patient directory."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from helpers import NOW, make_record

from vitalsync.core.storage.models import PatientRecord
from vitalsync.domains.vitals.domain_logic.models import HealthNotification


def _make_notification(**overrides) -> HealthNotification:
    defaults = dict(
        id="n-1",
        subject_id="patient-1",
        type="anomaly",
        severity="warning",
        message="Heart rate 110 BPM is outside normal range (60-100 BPM)",
        timestamp=NOW,
        action_required=True,
        anomalies=("Heart rate 110 BPM is outside normal range (60-100 BPM)",),
    )
    defaults.update(overrides)
    return HealthNotification(**defaults)


class TestVitalRecords:
    def test_save_and_get(self, vitals_repository):
        record = make_record(steps=3000, sleep_hours=6.5)
        assert vitals_repository.save_vital_record(record) is True
        loaded = vitals_repository.get_vital_record(record.id)
        assert loaded == record

    def test_save_is_idempotent_on_id(self, vitals_repository):
        record = make_record()
        assert vitals_repository.save_vital_record(record) is True
        assert vitals_repository.save_vital_record(record) is False
        assert vitals_repository.count_vital_records() == 1

    def test_measurements_encrypted_at_rest(self, vitals_repository, health_db):
        vitals_repository.save_vital_record(make_record(heart_rate=123))
        blob = health_db.connection.execute("SELECT vitals_enc FROM vital_records").fetchone()[0]
        assert "heart_rate" not in blob

    def test_get_missing_returns_none(self, vitals_repository):
        assert vitals_repository.get_vital_record("nope") is None

    def test_list_is_ascending_and_scoped(self, vitals_repository):
        for i in (2, 0, 1):
            vitals_repository.save_vital_record(
                make_record(id=f"rec-{i}", timestamp=NOW + timedelta(minutes=i))
            )
        vitals_repository.save_vital_record(make_record(id="other", subject_id="patient-2"))
        ids = [r.id for r in vitals_repository.list_vital_records("patient-1")]
        assert ids == ["rec-0", "rec-1", "rec-2"]

    def test_list_time_window(self, vitals_repository):
        for i in range(5):
            vitals_repository.save_vital_record(
                make_record(id=f"rec-{i}", timestamp=NOW + timedelta(hours=i))
            )
        records = vitals_repository.list_vital_records(
            "patient-1",
            since=(NOW + timedelta(hours=1)).isoformat(),
            until=(NOW + timedelta(hours=3)).isoformat(),
        )
        assert [r.id for r in records] == ["rec-1", "rec-2", "rec-3"]

    def test_window_compares_instants_across_offsets(self, vitals_repository):
        vitals_repository.save_vital_record(make_record(timestamp=NOW))
        ist = timezone(timedelta(hours=5, minutes=30))
        since = NOW.astimezone(ist).isoformat()
        assert len(vitals_repository.list_vital_records("patient-1", since=since)) == 1

    def test_limit_keeps_most_recent(self, vitals_repository):
        for i in range(4):
            vitals_repository.save_vital_record(
                make_record(id=f"rec-{i}", timestamp=NOW + timedelta(minutes=i))
            )
        records = vitals_repository.list_vital_records("patient-1", limit=2)
        assert [r.id for r in records] == ["rec-2", "rec-3"]

    def test_latest(self, vitals_repository):
        assert vitals_repository.get_latest_vital_record("patient-1") is None
        vitals_repository.save_vital_record(make_record(id="old", timestamp=NOW))
        vitals_repository.save_vital_record(
            make_record(id="new", timestamp=NOW + timedelta(minutes=5))
        )
        assert vitals_repository.get_latest_vital_record("patient-1").id == "new"

    def test_corrections(self, vitals_repository):
        vitals_repository.save_vital_record(make_record(id="rec-1", heart_rate=180))
        vitals_repository.save_vital_record(
            make_record(id="rec-2", heart_rate=80, supersedes="rec-1",
                        timestamp=NOW + timedelta(minutes=1))
        )
        corrections = vitals_repository.get_corrections("rec-1")
        assert [c.id for c in corrections] == ["rec-2"]
        # The corrected record keeps its values
        assert vitals_repository.get_vital_record("rec-1").heart_rate == 180


class TestNotifications:
    def test_save_and_get(self, vitals_repository):
        notification = _make_notification()
        assert vitals_repository.save_notification(notification, "key-1") is True
        assert vitals_repository.get_notification("n-1") == notification

    def test_duplicate_dedupe_key_ignored(self, vitals_repository):
        vitals_repository.save_notification(_make_notification(), "key-1")
        assert vitals_repository.save_notification(_make_notification(id="n-2"), "key-1") is False
        assert len(vitals_repository.list_notifications()) == 1

    def test_list_newest_first_and_filtered(self, vitals_repository):
        vitals_repository.save_notification(_make_notification(id="a", timestamp=NOW), "k-a")
        vitals_repository.save_notification(
            _make_notification(id="b", timestamp=NOW + timedelta(minutes=1)), "k-b"
        )
        vitals_repository.save_notification(
            _make_notification(id="c", subject_id="patient-2"), "k-c"
        )
        assert [n.id for n in vitals_repository.list_notifications("patient-1")] == ["b", "a"]
        assert len(vitals_repository.list_notifications()) == 3

    def test_acknowledge_is_one_way_and_idempotent(self, vitals_repository):
        vitals_repository.save_notification(_make_notification(), "key-1")
        assert vitals_repository.acknowledge_notification("n-1") is True
        assert vitals_repository.acknowledge_notification("n-1") is True
        assert vitals_repository.get_notification("n-1").acknowledged is True
        assert vitals_repository.list_notifications(unacknowledged_only=True) == []

    def test_acknowledge_unknown(self, vitals_repository):
        assert vitals_repository.acknowledge_notification("missing") is False


class TestPatients:
    def test_upsert_and_get(self, vitals_repository):
        contact = {"name": "Asha", "phone": "+911234567890", "relationship": "sister"}
        vitals_repository.upsert_patient(
            PatientRecord(id="patient-1", display_name="Ravi", emergency_contact=contact)
        )
        patient = vitals_repository.get_patient("patient-1")
        assert patient.display_name == "Ravi"
        assert patient.emergency_contact == contact
        assert patient.sos_active is False

    def test_contact_encrypted_at_rest(self, vitals_repository, health_db):
        vitals_repository.upsert_patient(
            PatientRecord(id="p", emergency_contact={"phone": "+15550100"})
        )
        blob = health_db.connection.execute("SELECT contact_enc FROM patients").fetchone()[0]
        assert "+15550100" not in blob

    def test_upsert_preserves_sos_state(self, vitals_repository):
        vitals_repository.set_sos("patient-1")
        vitals_repository.upsert_patient(PatientRecord(id="patient-1", display_name="Ravi"))
        patient = vitals_repository.get_patient("patient-1")
        assert patient.sos_active is True
        assert patient.display_name == "Ravi"

    def test_touch_creates_row_and_updates_state(self, vitals_repository):
        vitals_repository.touch_patient("patient-9")
        assert vitals_repository.get_patient("patient-9").device_connection_state == "unknown"
        vitals_repository.touch_patient("patient-9", device_connection_state="connected")
        vitals_repository.touch_patient("patient-9")
        assert vitals_repository.get_patient("patient-9").device_connection_state == "connected"

    def test_sos_flag_and_clear(self, vitals_repository):
        vitals_repository.set_sos("patient-1")
        patient = vitals_repository.get_patient("patient-1")
        assert patient.sos_active is True
        assert patient.sos_triggered_at
        assert vitals_repository.clear_sos("patient-1") is True
        assert vitals_repository.get_patient("patient-1").sos_active is False

    def test_clear_sos_unknown_patient(self, vitals_repository):
        assert vitals_repository.clear_sos("ghost") is False

    def test_list_patients_sorted(self, vitals_repository):
        vitals_repository.upsert_patient(PatientRecord(id="2", display_name="Zed"))
        vitals_repository.upsert_patient(PatientRecord(id="1", display_name="Amy"))
        assert [p.display_name for p in vitals_repository.list_patients()] == ["Amy", "Zed"]


@pytest.mark.parametrize("offset_hours", [0, -5])
def test_storage_instants_are_utc(offset_hours):
    from vitalsync.core.storage.repository import to_storage_instant

    tz = timezone(timedelta(hours=offset_hours))
    value = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc).astimezone(tz)
    assert to_storage_instant(value) == "2026-03-01T12:00:00.000000+00:00"
