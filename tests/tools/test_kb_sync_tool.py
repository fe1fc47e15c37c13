"""Tests for the kb_sync and kb_commit_push MCP tools."""

import pytest

from compound_kb.models.sync import SyncDirection
from compound_kb.sync.engine import SyncEngine
from compound_kb.tools.kb_sync import run_commit_push, run_sync
from tests.conftest import sample_input


@pytest.mark.asyncio
async def test_sync_reports_each_step(engine, store):
    await store.upsert(sample_input())
    output = await run_sync(engine, SyncDirection.BOTH)
    lines = output.splitlines()
    assert lines[0] == "Sync (both): ok"
    assert lines[1].startswith("  pull success")
    assert lines[2].startswith("  push success: Pushed 1 assets")


@pytest.mark.asyncio
async def test_sync_requires_ready_engine(store, sync_log, repo):
    engine = SyncEngine(store, sync_log, repo)
    assert await run_sync(engine, SyncDirection.PULL) == "Error: sync engine is uninitialized."


@pytest.mark.asyncio
async def test_commit_push_local(engine, local_repo):
    local_repo.write_file("knowledge/general/manual.md", "edit\n")
    output = await run_commit_push(engine, "manual edit")
    assert output.startswith("Commit and push ok (")
