"""Shared test fixtures."""

import subprocess
from pathlib import Path

import pytest
import pytest_asyncio

from compound_kb.db.connection import create_connection
from compound_kb.models.asset import AssetInput, AssetType
from compound_kb.store.asset_store import AssetStore
from compound_kb.store.sync_log_store import SyncLogStore
from compound_kb.sync.engine import SyncEngine
from compound_kb.sync.git_repository import GitRepository
from compound_kb.sync.index import IndexBuilder

TEST_AUTHOR = ("KB Tests", "kb-tests@example.com")


def make_repo(path: Path, **kwargs) -> GitRepository:
    """GitRepository with short timeouts and a fixed commit identity."""
    options = {
        "timeout": 30.0,
        "lock_stale_after": 10.0,
        "lock_max_attempts": 10,
        "lock_base_delay": 0.01,
        "conflict_base_delay": 0.01,
        "fallback_author": TEST_AUTHOR,
    }
    options.update(kwargs)
    return GitRepository(path, **options)


def git(cwd: Path, *args: str) -> str:
    """Run git synchronously for test setup and assertions."""
    env_args = [
        "-c",
        f"user.name={TEST_AUTHOR[0]}",
        "-c",
        f"user.email={TEST_AUTHOR[1]}",
        "-c",
        "init.defaultBranch=main",
    ]
    result = subprocess.run(
        ["git", *env_args, *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout


def sample_input(**overrides) -> AssetInput:
    """A valid pitfall asset, with optional field overrides."""
    fields = {
        "type": AssetType.PITFALL,
        "name": "redis-timeout",
        "product_line": "infra",
        "title": "Redis timeout",
        "content": "Set socket_timeout explicitly; the default blocks forever.",
        "tags": ["redis", "latency"],
    }
    fields.update(overrides)
    return AssetInput(**fields)


@pytest_asyncio.fixture
async def db():
    """In-memory database with full schema."""
    conn = await create_connection(":memory:")
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store(db):
    """Asset store backed by in-memory DB."""
    return AssetStore(db)


@pytest_asyncio.fixture
async def sync_log(db):
    """Sync log backed by in-memory DB."""
    return SyncLogStore(db)


@pytest.fixture
def remote(tmp_path) -> Path:
    """Bare repository standing in for the shared remote."""
    path = tmp_path / "remote.git"
    path.mkdir()
    git(path, "init", "--bare")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    return path


@pytest.fixture
def repo(tmp_path) -> GitRepository:
    """Repository adapter pointed at a not-yet-created working copy."""
    return make_repo(tmp_path / "work")


@pytest_asyncio.fixture
async def local_repo(repo):
    """Initialized local-only repository."""
    result = await repo.clone_or_init()
    assert result.success, result.error
    return repo


@pytest_asyncio.fixture
async def engine(store, sync_log, local_repo):
    """Ready sync engine over a local-only repository."""
    sync_engine = SyncEngine(store, sync_log, local_repo, IndexBuilder(local_repo))
    result = await sync_engine.initialize()
    assert result.success, result.error
    return sync_engine
