"""kb_sync and kb_commit_push MCP tools: drive the sync engine."""

import logging
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from compound_kb.models.sync import SyncDirection
from compound_kb.sync.engine import SyncEngine
from compound_kb.tools.formatters import format_git_result, format_sync_report

logger = logging.getLogger(__name__)


async def run_sync(engine: SyncEngine, direction: SyncDirection) -> str:
    """Run one sync and format the report."""
    if not engine.ready:
        return f"Error: sync engine is {engine.state.value}."
    report = await engine.sync(direction)
    return format_sync_report(report)


async def run_commit_push(engine: SyncEngine, message: str | None) -> str:
    """Commit the working tree and push it."""
    result = await engine.commit_and_push(message)
    return f"Commit and push {format_git_result(result)}"


def register_kb_sync(mcp: FastMCP) -> None:
    """Register the kb_sync and kb_commit_push tools with the MCP server."""

    @mcp.tool()
    async def kb_sync(
        direction: Annotated[
            SyncDirection, Field(description="pull, push or both")
        ] = SyncDirection.BOTH,
        ctx: Context | None = None,
    ) -> str:
        """Synchronize the local cache with the knowledge repository.

        pull imports repository changes since the last pull (repository
        content wins). push writes every local-only asset in one commit.
        Unless pulling only, local commits are then pushed to the remote.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")
        engine: SyncEngine = ctx.lifespan_context["engine"]
        return await run_sync(engine, direction)

    @mcp.tool()
    async def kb_commit_push(
        message: Annotated[str | None, Field(description="Commit message")] = None,
        ctx: Context | None = None,
    ) -> str:
        """Commit everything in the repository working tree and push it."""
        if ctx is None:
            raise RuntimeError("Context not injected")
        engine: SyncEngine = ctx.lifespan_context["engine"]
        return await run_commit_push(engine, message)
