"""kb_stats MCP tool: cache counts, repository digest and recent sync history."""

import logging
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from compound_kb.store.asset_store import AssetStore
from compound_kb.store.sync_log_store import SyncLogStore
from compound_kb.sync.engine import SyncEngine
from compound_kb.tools.formatters import format_stats, format_sync_entry

logger = logging.getLogger(__name__)

_HISTORY = 5


async def collect_stats(
    store: AssetStore,
    sync_log: SyncLogStore,
    engine: SyncEngine | None,
    product_line: str | None = None,
) -> str:
    """Format local counts, the repository summary and the latest sync attempts."""
    lines = [format_stats(await store.stats(product_line))]

    if engine is not None:
        lines.append(f"Repository: {engine.summarize()}")

    recent = await sync_log.recent(_HISTORY)
    if recent:
        lines.append("Recent syncs:")
        lines.extend(f"  {format_sync_entry(e)}" for e in recent)
    return "\n".join(lines)


def register_kb_stats(mcp: FastMCP) -> None:
    """Register the kb_stats tool with the MCP server."""

    @mcp.tool()
    async def kb_stats(
        product_line: Annotated[
            str | None, Field(description="Limit counts to one product line")
        ] = None,
        ctx: Context | None = None,
    ) -> str:
        """Show knowledge base counts, a repository digest and recent sync results."""
        if ctx is None:
            raise RuntimeError("Context not injected")
        lifespan = ctx.lifespan_context
        return await collect_stats(
            lifespan["store"], lifespan["sync_log"], lifespan.get("engine"), product_line
        )
