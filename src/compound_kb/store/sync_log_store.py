"""Append-only sync log."""

from compound_kb.db.backend import Database
from compound_kb.db.queries import insert_sync_log, row_to_sync_log
from compound_kb.models.sync import SyncDirection, SyncLogEntry, SyncStatus


class SyncLogStore:
    """Write and read sync attempts. Entries are never updated after insert."""

    def __init__(self, db: Database):
        """Initialize with a database connection."""
        self.db = db

    async def record(
        self,
        direction: SyncDirection,
        status: SyncStatus,
        message: str | None = None,
        *,
        file_path: str | None = None,
        commit_id: str | None = None,
    ) -> SyncLogEntry:
        """Append one entry and return it."""
        return await insert_sync_log(
            self.db, direction, status, message, file_path=file_path, commit_id=commit_id
        )

    async def recent(self, limit: int = 20) -> list[SyncLogEntry]:
        """Most recent entries first."""
        cursor = await self.db.execute(
            "SELECT * FROM sync_log ORDER BY created_at_epoch DESC, id DESC LIMIT ?", (limit,)
        )
        return [row_to_sync_log(row) for row in await cursor.fetchall()]

    async def last_successful(self, direction: SyncDirection) -> SyncLogEntry | None:
        """The latest successful entry for a direction, if any."""
        cursor = await self.db.execute(
            """SELECT * FROM sync_log
            WHERE direction = ? AND status = 'success'
            ORDER BY created_at_epoch DESC, id DESC LIMIT 1""",
            (direction.value,),
        )
        row = await cursor.fetchone()
        return row_to_sync_log(row) if row else None

    async def pull_watermark(self) -> str | None:
        """Commit id recorded by the last successful pull, or None before the first one."""
        cursor = await self.db.execute(
            """SELECT commit_id FROM sync_log
            WHERE direction = 'pull' AND status = 'success' AND commit_id IS NOT NULL
            ORDER BY created_at_epoch DESC, id DESC LIMIT 1"""
        )
        row = await cursor.fetchone()
        return row["commit_id"] if row else None
