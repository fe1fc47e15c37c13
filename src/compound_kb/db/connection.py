"""Database connection management with WAL mode and FTS5."""

import logging
from pathlib import Path

import aiosqlite

from compound_kb.config import get_db_path
from compound_kb.db.backend import Database
from compound_kb.db.sqlite_backend import SQLiteBackend

logger = logging.getLogger(__name__)

_BUSY_TIMEOUT_MS = 5000


async def create_connection(
    db_path: Path | str | None = None, *, read_only: bool = False
) -> Database:
    """Create and initialize a database connection.

    For in-memory databases, pass ":memory:". A ``read_only`` handle is an
    independent connection for search: it shares the WAL-mode file with the
    single writer but cannot modify it, so readers and the writer never
    block each other.
    """
    db_path = str(db_path or get_db_path())

    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
    if read_only:
        await conn.execute("PRAGMA query_only=ON")
    else:
        # WAL lets readers proceed while the writer commits
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")

    db = SQLiteBackend(conn, read_only=read_only)
    await db.apply_schema()
    logger.debug("Opened %s connection to %s", "read-only" if read_only else "writer", db_path)
    return db
