"""VitalSync server entry point: ``python -m vitalsync.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from vitalsync.core.config.settings import get_settings
from vitalsync.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the VitalSync MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.vitalsync_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.vitalsync_allow_insecure_bind and not _is_loopback_host(settings.vitalsync_host):
        raise RuntimeError(
            "Refusing to bind VitalSync to a non-loopback host without an auth layer. "
            "Set VITALSYNC_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting VitalSync server on %s:%d",
        settings.vitalsync_host,
        settings.vitalsync_port,
    )

    mcp = create_app(settings=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.vitalsync_host,
        port=settings.vitalsync_port,
    )


if __name__ == "__main__":
    run()
