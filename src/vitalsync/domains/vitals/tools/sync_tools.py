"""MCP tools for the offline sync queue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from vitalsync.domains.vitals.tools import responses

if TYPE_CHECKING:
    from vitalsync.domains.vitals.sync.offline_queue import OfflineSyncQueue

logger = logging.getLogger(__name__)


def register_sync_tools(mcp: FastMCP, queue: OfflineSyncQueue) -> None:
    """Register connectivity and replay tools on the MCP server."""

    @mcp.tool
    async def sync_status(ctx: Context) -> str:
        """Show connectivity, queue state and the writes waiting for replay."""
        entries = queue.pending()
        return responses.ok({
            "online": queue.is_online,
            "state": queue.state,
            "pending": len(entries),
            "entries": [
                {
                    "id": e.id,
                    "action": e.action,
                    "enqueued_at": e.enqueued_at,
                    "attempts": e.attempts,
                    "last_error": e.last_error,
                }
                for e in entries
            ],
        })

    @mcp.tool
    async def set_connectivity(ctx: Context, online: bool) -> str:
        """Report a connectivity change. Coming back online replays queued writes in order.

        Args:
            online: True when the connection is back, False when it was lost.
        """
        report = await queue.set_online(online)
        return responses.ok({
            "online": queue.is_online,
            "state": queue.state,
            "flush": report.to_dict() if report is not None else None,
            "pending": queue.pending_count(),
        })

    @mcp.tool
    async def flush_sync_queue(ctx: Context) -> str:
        """Retry queued writes now (FIFO). Stops at the first failure."""
        if not queue.is_online:
            return responses.error(
                error_type="Offline", message="Cannot flush while offline"
            )
        report = await queue.flush()
        return responses.ok({"flush": report.to_dict(), "state": queue.state})
