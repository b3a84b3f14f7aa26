"""Shared test fixtures for VitalSync tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("ANALYSIS_BACKEND", "llm")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("AUTH_TOKEN", "")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("ADMIN_TOKEN", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from vitalsync.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from vitalsync.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def vitals_repository(health_db, field_encryptor):
    """Create a VitalsRepository backed by in-memory SQLite."""
    from vitalsync.core.storage.repository import VitalsRepository

    return VitalsRepository(health_db, field_encryptor)


@pytest.fixture
def queue_store(health_db, field_encryptor):
    """Create a SyncQueueStore backed by in-memory SQLite."""
    from vitalsync.core.storage.queue_store import SyncQueueStore

    return SyncQueueStore(health_db, field_encryptor)


@pytest.fixture
def notification_inbox(vitals_repository):
    from vitalsync.domains.vitals.domain_logic.notifications import NotificationInbox

    return NotificationInbox(vitals_repository)
