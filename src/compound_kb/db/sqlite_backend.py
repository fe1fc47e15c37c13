"""SQLite implementation of the Database protocol.

Thin wrapper around aiosqlite.Connection (application code already uses
SQLite-flavored SQL, so calls pass straight through).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import aiosqlite

    from compound_kb.db.backend import Cursor, Row

logger = logging.getLogger(__name__)


class SQLiteCursor:
    """Wraps aiosqlite.Cursor to satisfy the Cursor protocol."""

    def __init__(self, cursor: aiosqlite.Cursor) -> None:
        """Initialize with an aiosqlite cursor."""
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last operation."""
        rc = self._cursor.rowcount
        return rc if rc is not None else -1

    @property
    def lastrowid(self) -> int | None:
        """Row id of the last inserted row."""
        return self._cursor.lastrowid

    async def fetchone(self) -> Row | None:
        """Fetch the next row, or None if exhausted."""
        return await self._cursor.fetchone()

    async def fetchall(self) -> list[Row]:
        """Fetch all remaining rows."""
        return list(await self._cursor.fetchall())


class SQLiteBackend:
    """SQLite implementation of the Database protocol.

    A backend opened with ``read_only=True`` refuses writes at the SQLite
    level (``PRAGMA query_only``) and never applies the schema itself.
    """

    def __init__(self, conn: aiosqlite.Connection, *, read_only: bool = False) -> None:
        """Initialize with an aiosqlite connection."""
        self._conn = conn
        self.read_only = read_only

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Execute a single SQL statement and return a cursor."""
        cursor = await self._conn.execute(sql, params)
        return SQLiteCursor(cursor)

    async def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements (DDL, migrations)."""
        await self._conn.executescript(sql)

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()

    async def journal_mode(self) -> str:
        """Return the active journal mode (``wal`` for file databases)."""
        cursor = await self._conn.execute("PRAGMA journal_mode")
        row = await cursor.fetchone()
        return str(row[0]) if row else ""

    async def apply_schema(self) -> None:
        """Apply all SQLite DDL: asset table, FTS5 index, sync log."""
        from compound_kb.db.schema import apply_schema

        if self.read_only:
            logger.debug("Skipping schema on read-only connection")
            return
        await apply_schema(self)
