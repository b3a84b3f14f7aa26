"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """vitalsync server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; the MCP surface has no auth layer of its own.
    vitalsync_host: str = "127.0.0.1"
    vitalsync_port: int = 8001
    vitalsync_log_level: str = "info"
    vitalsync_allow_insecure_bind: bool = False

    # Remote analysis tier
    analysis_backend: Literal["llm", "http", "none"] = "llm"
    analysis_service_url: str = "http://127.0.0.1:5000/api/health"
    analysis_timeout_seconds: float = 8.0
    auth_token: str = ""

    # Inner LLM (used when analysis_backend == "llm")
    llm_provider: Literal["anthropic", "openai", "mock"] = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    # Storage
    db_path: str = "~/.vitalsync/vitals.db"
    encryption_key: str = ""

    # Offline sync
    sync_queue_namespace: str = "vitalsync_offline_data"

    # Normalization
    clock_skew_tolerance_seconds: float = 300.0

    # Admin monitoring and emergencies
    admin_poll_interval_seconds: float = 3.0
    geolocation_timeout_seconds: float = 5.0
    emergency_number: str = "108"
    # Empty: any non-empty admin token is accepted (loopback development only).
    admin_token: str = ""

    # Notifications
    notification_dedupe_bucket_seconds: int = 300


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
