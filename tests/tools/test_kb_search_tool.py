"""Tests for the kb_search MCP tool."""

import pytest

from compound_kb.models.search import SearchQuery
from compound_kb.search.fts import search_assets
from compound_kb.tools.kb_search import format_search_results
from tests.conftest import sample_input


@pytest.mark.asyncio
async def test_search_formats_hits(db, store):
    await store.upsert(sample_input())
    results = await search_assets(db, SearchQuery(query="redis"))

    output = format_search_results(results)
    assert output.startswith("1 result(s)")
    assert "[1] pitfall | infra/redis-timeout | Redis timeout" in output
    assert "[LOCAL]" in output


@pytest.mark.asyncio
async def test_search_no_results(db, store):
    await store.upsert(sample_input())
    results = await search_assets(db, SearchQuery(query="nonexistent-term"))
    assert format_search_results(results) == "No results found."


@pytest.mark.asyncio
async def test_search_reports_more_pages(db, store):
    for i in range(3):
        await store.upsert(sample_input(name=f"n{i}"))
    results = await search_assets(db, SearchQuery(query="redis", limit=2))
    assert format_search_results(results).splitlines()[0] == "2 result(s) of 3 (more available)"
