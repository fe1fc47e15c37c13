"""kb_search MCP tool: full-text search over the local cache."""

import logging
from typing import Annotated, Literal

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from compound_kb.models.asset import AssetType
from compound_kb.models.search import SearchQuery, SearchResults
from compound_kb.search.fts import search_assets
from compound_kb.tools.formatters import format_result_list, format_search_hit

logger = logging.getLogger(__name__)


def format_search_results(results: SearchResults) -> str:
    """Format a page of hits with totals."""
    return format_result_list(
        [format_search_hit(hit) for hit in results.items],
        total=results.total,
        has_more=results.has_more,
    )


def register_kb_search(mcp: FastMCP) -> None:
    """Register the kb_search tool with the MCP server."""

    @mcp.tool()
    async def kb_search(
        query: Annotated[str, Field(description="Keywords to search for")],
        product_line: Annotated[
            str | None, Field(description="Restrict to one product line (e.g. infra)")
        ] = None,
        type: Annotated[
            AssetType | None, Field(description="Restrict to one asset type (e.g. pitfall)")
        ] = None,
        limit: Annotated[int, Field(description="Maximum results (1-100)", ge=1, le=100)] = 20,
        offset: Annotated[int, Field(description="Results to skip for paging", ge=0)] = 0,
        order_by: Annotated[
            Literal["relevance", "date_desc", "date_asc"],
            Field(description="relevance, date_desc or date_asc"),
        ] = "relevance",
        ctx: Context | None = None,
    ) -> str:
        """Search knowledge assets by keyword using BM25 full-text ranking.

        Searches name, title, content, tags and product line. Results show
        a snippet around the first match; use kb_get for full content.
        Assets marked [LOCAL] have not been pushed to the repository yet.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")
        lifespan = ctx.lifespan_context
        db = lifespan.get("search_db") or lifespan["db"]

        search_query = SearchQuery(
            query=query,
            product_line=product_line,
            type=type,
            limit=limit,
            offset=offset,
            order_by=order_by,
        )
        results = await search_assets(db, search_query)
        return format_search_results(results)
