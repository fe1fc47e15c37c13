"""kb_get and kb_list MCP tools: asset retrieval from the local cache."""

import logging
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from compound_kb.models.asset import DEFAULT_PRODUCT_LINE, AssetType, KnowledgeAsset
from compound_kb.store.asset_store import AssetStore
from compound_kb.tools.formatters import format_asset_compact, format_asset_full, format_result_list

logger = logging.getLogger(__name__)

_MAX_IDS = 20


async def get_assets(
    store: AssetStore,
    asset_ids: list[int] | None = None,
    name: str | None = None,
    product_line: str = DEFAULT_PRODUCT_LINE,
) -> str:
    """Look up assets by id, or one asset by name, and format them in full."""
    if name:
        asset = await store.get_by_name(name, product_line)
        if asset is None:
            return f"Asset {product_line}/{name} not found."
        return format_asset_full(asset)

    ids = asset_ids or []
    if not ids:
        return "Error: provide asset_id or name."
    if len(ids) > _MAX_IDS:
        return f"Error: Maximum {_MAX_IDS} IDs per request (got {len(ids)})."

    formatted: list[str] = []
    for asset_id in ids:
        asset = await store.get_by_id(asset_id)
        formatted.append(f"[{asset_id}] not found" if asset is None else format_asset_full(asset))
    return format_result_list(formatted)


def format_asset_list(assets: list[KnowledgeAsset]) -> str:
    """Compact listing without content."""
    return format_result_list([format_asset_compact(a) for a in assets])


def register_kb_get(mcp: FastMCP) -> None:
    """Register the kb_get and kb_list tools with the MCP server."""

    @mcp.tool()
    async def kb_get(
        asset_id: Annotated[
            int | list[int] | None,
            Field(description="Single asset ID or list of IDs (max 20)"),
        ] = None,
        name: Annotated[str | None, Field(description="Asset name, instead of an ID")] = None,
        product_line: Annotated[
            str, Field(description="Product line of the named asset")
        ] = DEFAULT_PRODUCT_LINE,
        ctx: Context | None = None,
    ) -> str:
        """Retrieve the full content of knowledge assets.

        Use after kb_search or kb_list to read assets in full, either by ID
        or by name within a product line.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")
        store: AssetStore = ctx.lifespan_context["store"]

        ids = [asset_id] if isinstance(asset_id, int) else asset_id
        return await get_assets(store, ids, name=name, product_line=product_line)

    @mcp.tool()
    async def kb_list(
        type: Annotated[AssetType | None, Field(description="Filter by asset type")] = None,
        product_line: Annotated[str | None, Field(description="Filter by product line")] = None,
        promoted: Annotated[
            bool | None,
            Field(description="True for pushed assets, False for local-only ones"),
        ] = None,
        limit: Annotated[int, Field(description="Maximum results (1-100)", ge=1, le=100)] = 50,
        offset: Annotated[int, Field(description="Results to skip for paging", ge=0)] = 0,
        ctx: Context | None = None,
    ) -> str:
        """List knowledge assets, most recently updated first."""
        if ctx is None:
            raise RuntimeError("Context not injected")
        store: AssetStore = ctx.lifespan_context["store"]

        assets = await store.list_assets(
            type=type, product_line=product_line, promoted=promoted, limit=limit, offset=offset
        )
        return format_asset_list(assets)
