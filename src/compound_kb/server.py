"""FastMCP server with lifespan management and tool registration."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP

from compound_kb.config import get_db_path, get_log_level, get_repo_url, is_auto_sync
from compound_kb.db.connection import create_connection
from compound_kb.store.asset_store import AssetStore
from compound_kb.store.sync_log_store import SyncLogStore
from compound_kb.sync.engine import SyncEngine
from compound_kb.sync.git_repository import GitRepository
from compound_kb.sync.index import IndexBuilder
from compound_kb.tools.kb_get import register_kb_get
from compound_kb.tools.kb_search import register_kb_search
from compound_kb.tools.kb_sink import register_kb_sink
from compound_kb.tools.kb_stats import register_kb_stats
from compound_kb.tools.kb_sync import register_kb_sync

logger = logging.getLogger(__name__)


def _log_background_pull(task: asyncio.Task[Any]) -> None:
    """Done-callback for the startup pull: report the outcome, never raise."""
    if task.cancelled():
        logger.info("Background pull cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background pull failed: %s", exc)
        return
    entry = task.result()
    logger.info("Background pull %s: %s", entry.status.value, entry.message)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Manage database connections and the sync engine lifecycle."""
    # Configure logging to stderr (stdout is MCP stdio transport)
    logging.basicConfig(
        level=getattr(logging, get_log_level().upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    db_path = get_db_path()
    logger.info("Opening database at %s", db_path)
    db = await create_connection(db_path)
    search_db = await create_connection(db_path, read_only=True)

    store = AssetStore(db)
    sync_log = SyncLogStore(db)
    repo = GitRepository()
    index = IndexBuilder(repo)
    engine = SyncEngine(store, sync_log, repo, index)

    init = await engine.initialize(get_repo_url(), pull=False)
    if not init.success:
        logger.warning("Repository unavailable, sync disabled: %s", init.error)

    background: asyncio.Task[Any] | None = None
    if init.success and is_auto_sync():
        background = asyncio.create_task(engine.pull_from_l2())
        background.add_done_callback(_log_background_pull)

    try:
        yield {
            "db": db,
            "search_db": search_db,
            "store": store,
            "sync_log": sync_log,
            "repo": repo,
            "index": index,
            "engine": engine,
        }
    finally:
        if background is not None and not background.done():
            background.cancel()
        await search_db.close()
        await db.close()
        logger.info("Database connections closed")



_INSTRUCTIONS = """\
This KB holds curated engineering knowledge shared across projects through \
a git repository: pitfalls, decision records, glossary terms, best \
practices, patterns, discoveries, skills and references.

QUERYING:
- kb_search: keyword search with optional product_line and type filters.
- kb_get: full content of assets by ID, or by name and product line.
- kb_list: browse assets, optionally only local-only (promoted=false) ones.
- kb_stats: counts, a digest of the repository and recent sync results.

CAPTURING:
- kb_sink: store an asset locally. The same name and product line replaces \
the existing asset. SEARCH before sinking to avoid near-duplicates.
- Product lines nest with dots (infra.devops is stored under infra/devops).

SHARING:
- kb_sync: pull repository changes and push local-only assets in one commit.
- kb_commit_push: commit and push anything else in the repository.
"""


def create_server() -> FastMCP:
    """Create and configure the MCP server with all tools."""
    mcp = FastMCP(
        "compound-kb",
        instructions=_INSTRUCTIONS,
        lifespan=lifespan,
    )

    register_kb_search(mcp)
    register_kb_get(mcp)
    register_kb_sink(mcp)
    register_kb_sync(mcp)
    register_kb_stats(mcp)

    return mcp
