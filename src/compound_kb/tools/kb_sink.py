"""kb_sink MCP tool: capture a knowledge asset into the local cache."""

import logging
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field, ValidationError

from compound_kb.models.asset import DEFAULT_PRODUCT_LINE, AssetInput, AssetType
from compound_kb.store.asset_store import AssetStore
from compound_kb.sync.engine import SyncEngine
from compound_kb.tools.formatters import format_asset_compact, format_sync_entry

logger = logging.getLogger(__name__)


async def sink_asset(
    store: AssetStore,
    engine: SyncEngine | None,
    data: AssetInput,
    push_now: bool = False,
) -> str:
    """Upsert the asset locally, optionally pushing it to the repository right away."""
    existing = await store.get_by_name(data.name, data.product_line)
    action = "Updated" if existing is not None else "Created"

    if push_now and engine is not None:
        entry = await engine.push_asset_to_l2(data)
        asset = await store.get_by_name(data.name, data.product_line)
        if asset is None:
            return f"Error: {entry.message or 'push failed'}"
        return f"{action} asset\n{format_asset_compact(asset)}\n{format_sync_entry(entry)}"

    asset = await store.upsert(data)
    return f"{action} asset\n{format_asset_compact(asset)}\n  Run kb_sync to push it."


def register_kb_sink(mcp: FastMCP) -> None:
    """Register the kb_sink tool with the MCP server."""

    @mcp.tool()
    async def kb_sink(
        type: Annotated[
            AssetType,
            Field(
                description=(
                    "pitfall, decision-record, glossary, best-practice, pattern, "
                    "discovery, skill or reference"
                ),
            ),
        ],
        name: Annotated[str, Field(description="Unique slug within the product line")],
        title: Annotated[str, Field(description="Human-readable title")],
        content: Annotated[str, Field(description="Markdown body")],
        product_line: Annotated[
            str, Field(description="Product line, dots nest directories (e.g. infra.devops)")
        ] = DEFAULT_PRODUCT_LINE,
        tags: Annotated[list[str] | None, Field(description="Tags for discoverability")] = None,
        source_project: Annotated[
            str | None, Field(description="Project the knowledge came from")
        ] = None,
        push_now: Annotated[
            bool, Field(description="Write and commit to the repository immediately")
        ] = False,
        ctx: Context | None = None,
    ) -> str:
        """Sink a knowledge asset into the local cache.

        Re-sinking the same name and product line replaces the existing
        asset. New and changed assets stay local until kb_sync pushes them,
        unless push_now is set.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")
        lifespan = ctx.lifespan_context
        store: AssetStore = lifespan["store"]
        engine: SyncEngine | None = lifespan.get("engine")

        try:
            data = AssetInput(
                type=type,
                name=name,
                product_line=product_line,
                title=title,
                content=content,
                tags=tags or [],
                source_project=source_project,
            )
        except ValidationError as e:
            return f"Error: {e.errors()[0]['msg']}"
        return await sink_asset(store, engine, data, push_now=push_now)
