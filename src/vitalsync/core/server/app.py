"""VitalSync MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastmcp import FastMCP

from vitalsync.core.config.settings import Settings, get_settings
from vitalsync.core.llm.provider import create_provider
from vitalsync.core.storage.database import HealthDatabase
from vitalsync.core.storage.encryption import EncryptionError, FieldEncryptor
from vitalsync.core.storage.queue_store import SyncQueueStore
from vitalsync.core.storage.repository import VitalsRepository
from vitalsync.domains.vitals.connectors import (
    AuthProvider,
    PatientDirectory,
    RemoteAnalysisService,
    StaticTokenAuth,
)
from vitalsync.domains.vitals.connectors.local_store import (
    RepositoryPatientDirectory,
    RepositoryVitalsStore,
)
from vitalsync.domains.vitals.connectors.remote_analysis import (
    HttpAnalysisService,
    LLMAnalysisService,
)
from vitalsync.domains.vitals.domain_logic.assistant import HealthAssistant
from vitalsync.domains.vitals.domain_logic.classifier import RiskClassifier
from vitalsync.domains.vitals.domain_logic.models import VitalRecord
from vitalsync.domains.vitals.domain_logic.notifications import NotificationInbox
from vitalsync.domains.vitals.domain_logic.pipeline import VitalsPipeline
from vitalsync.domains.vitals.domain_logic.predictive import HealthForecaster
from vitalsync.domains.vitals.monitoring.admin_monitor import AdminMonitor
from vitalsync.domains.vitals.sync.offline_queue import (
    ACK_NOTIFICATION,
    ADD_VITALS,
    FlushReport,
    OfflineSyncQueue,
)
from vitalsync.domains.vitals.tools.admin_tools import register_admin_tools
from vitalsync.domains.vitals.tools.emergency_tools import register_emergency_tools
from vitalsync.domains.vitals.tools.sync_tools import register_sync_tools
from vitalsync.domains.vitals.tools.vitals_tools import register_vitals_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "VitalSync"
SERVER_VERSION = "0.1.0"


def _open_storage(settings: Settings) -> tuple[HealthDatabase, FieldEncryptor, bool]:
    """Open the encrypted store. Without a usable key, fall back to an in-memory one."""
    if settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
            database = HealthDatabase(settings.db_path)
            database.initialize()
            logger.info(
                "Vitals store initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
            return database, encryptor, True
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)

    logger.warning(
        "No usable ENCRYPTION_KEY; using an in-memory store with an ephemeral key. "
        "Vitals and queued writes will not survive a restart."
    )
    database = HealthDatabase(":memory:")
    database.initialize()
    return database, FieldEncryptor(FieldEncryptor.generate_key()), False


async def replay_pending(queue: OfflineSyncQueue) -> FlushReport | None:
    """Replay writes left queued by a previous session. No-op offline or when empty."""
    pending = queue.pending_count()
    if not queue.is_online or pending == 0:
        return None
    logger.info("Replaying %d queued write(s) from a previous session", pending)
    report = await queue.flush()
    if report.failed_entry_id is not None:
        logger.warning(
            "Startup replay stopped at entry %s; %d write(s) still queued",
            report.failed_entry_id,
            report.remaining,
        )
    return report


def _remote_analysis(settings: Settings) -> tuple[RemoteAnalysisService | None, AuthProvider]:
    """Build the remote-AI tier and the auth provider that gates it."""
    if settings.analysis_backend == "none":
        logger.info("Remote analysis disabled; rule engine only")
        return None, StaticTokenAuth("")

    if settings.analysis_backend == "http":
        auth = StaticTokenAuth(settings.auth_token)
        if not settings.auth_token:
            logger.warning("No AUTH_TOKEN configured; remote analysis calls are disabled")
        service = HttpAnalysisService(
            settings.analysis_service_url, auth, timeout_seconds=settings.analysis_timeout_seconds
        )
        logger.info("Remote analysis via HTTP service at %s", settings.analysis_service_url)
        return service, auth

    if settings.llm_provider == "mock":
        api_key, model = "mock", ""
    elif settings.llm_provider == "anthropic":
        api_key, model = settings.anthropic_api_key, settings.anthropic_model
    elif settings.llm_provider == "openai":
        api_key, model = settings.openai_api_key, settings.openai_model
    else:  # pragma: no cover
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider!r}")

    if not api_key:
        logger.warning(
            "No API key configured for provider '%s'; remote analysis disabled, "
            "using the rule engine",
            settings.llm_provider,
        )
        return None, StaticTokenAuth("")

    provider = create_provider(
        provider_name=settings.llm_provider,
        api_key="" if settings.llm_provider == "mock" else api_key,
        model=model,
        timeout_seconds=settings.analysis_timeout_seconds,
    )
    logger.info("Remote analysis via %s LLM provider", settings.llm_provider)
    return LLMAnalysisService(provider), StaticTokenAuth(api_key)


def create_app(
    *,
    settings: Settings | None = None,
    repository_override: VitalsRepository | None = None,
    queue_store_override: SyncQueueStore | None = None,
    remote_override: RemoteAnalysisService | None = None,
    auth_override: AuthProvider | None = None,
    directory_override: PatientDirectory | None = None,
) -> FastMCP:
    """Create and configure the VitalSync MCP server.

    This is the main application factory. It:
    1. Opens the encrypted vitals store and the durable sync queue
    2. Builds the remote-AI tier (LLM or HTTP) and the risk classifier
    3. Wires the ingestion pipeline, notification inbox and offline queue
    4. Creates the admin monitor
    5. Registers all tools

    On startup the server replays writes queued by a previous session.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(_server: FastMCP) -> AsyncIterator[dict]:
        await replay_pending(queue)
        yield {}

    server = FastMCP(
        SERVER_NAME,
        lifespan=lifespan,
        instructions=(
            "VitalSync health-monitoring server. Records vital signs from wearables "
            "and manual entry, classifies risk with clinical rule bands (optionally "
            "refined by a remote AI service), raises notifications, queues writes "
            "while offline, and supports admin emergency monitoring and SOS escalation."
        ),
    )

    # --- Storage ---
    persistent = False
    if repository_override is not None:
        repository = repository_override
        queue_store = queue_store_override
    else:
        database, encryptor, persistent = _open_storage(settings)
        repository = VitalsRepository(database, encryptor)
        queue_store = queue_store_override or SyncQueueStore(
            database, encryptor, settings.sync_queue_namespace
        )
    if queue_store is None:
        raise ValueError("queue_store_override is required with repository_override")

    store = RepositoryVitalsStore(repository)
    directory = directory_override or RepositoryPatientDirectory(repository)

    # --- Classification ---
    if remote_override is not None:
        remote, auth = remote_override, auth_override or StaticTokenAuth("")
    else:
        remote, auth = _remote_analysis(settings)
        auth = auth_override or auth
    classifier = RiskClassifier(remote, auth, timeout_seconds=settings.analysis_timeout_seconds)
    assistant = HealthAssistant(remote, auth, timeout_seconds=settings.analysis_timeout_seconds)
    forecaster = HealthForecaster(remote, auth, timeout_seconds=settings.analysis_timeout_seconds)

    # --- Notifications and offline queue ---
    inbox = NotificationInbox(repository, settings.notification_dedupe_bucket_seconds)

    async def _write_vitals(payload: dict) -> bool:
        return await store.save_vital_record(VitalRecord.from_dict(payload))

    async def _write_ack(payload: dict):
        return inbox.acknowledge(payload["notification_id"])

    queue = OfflineSyncQueue(
        queue_store, {ADD_VITALS: _write_vitals, ACK_NOTIFICATION: _write_ack}
    )

    pipeline = VitalsPipeline(
        classifier,
        queue,
        store,
        inbox,
        clock_skew=timedelta(seconds=settings.clock_skew_tolerance_seconds),
    )

    # --- Admin monitoring ---
    monitor = AdminMonitor(directory, interval_seconds=settings.admin_poll_interval_seconds)

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "storage_persistent": persistent,
            "remote_analysis_enabled": classifier.remote_enabled,
            "analysis_backend": settings.analysis_backend if remote is not None else "none",
            "records_stored": repository.count_vital_records(),
            "sync_online": queue.is_online,
            "sync_pending": queue.pending_count(),
            "admin_monitoring": monitor.running,
        }

    register_vitals_tools(server, pipeline, inbox, queue, assistant, forecaster)
    logger.info("Vitals tools registered")

    register_sync_tools(server, queue)
    logger.info("Sync tools registered")

    register_admin_tools(server, monitor, repository, admin_token=settings.admin_token)
    logger.info("Admin monitoring tools registered")

    register_emergency_tools(
        server,
        repository,
        emergency_number=settings.emergency_number,
        geolocation_timeout_seconds=settings.geolocation_timeout_seconds,
    )
    logger.info("Emergency tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
