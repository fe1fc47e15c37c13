"""Query helpers for common database operations."""

import json
from datetime import UTC, datetime
from typing import Any

from compound_kb.db.backend import Database, Row
from compound_kb.models.asset import AssetInput, AssetType, KnowledgeAsset
from compound_kb.models.sync import SyncDirection, SyncLogEntry, SyncStatus


def now_stamp() -> tuple[str, int]:
    """Return the current time as (ISO-8601 text, epoch milliseconds)."""
    now = datetime.now(UTC)
    return now.isoformat(), int(now.timestamp() * 1000)


def row_to_asset(row: Row) -> KnowledgeAsset:
    """Convert a database row to a KnowledgeAsset."""
    return KnowledgeAsset(
        id=row["id"],
        type=AssetType(row["type"]),
        name=row["name"],
        product_line=row["product_line"],
        tags=_parse_tags(row["tags"]),
        title=row["title"],
        content=row["content"],
        source_project=row["source_project"],
        repository_path=row["repository_path"],
        repository_hash=row["repository_hash"],
        promoted=bool(row["promoted"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        created_at_epoch=row["created_at_epoch"],
        updated_at=datetime.fromisoformat(row["updated_at"]),
        updated_at_epoch=row["updated_at_epoch"],
    )


def row_to_sync_log(row: Row) -> SyncLogEntry:
    """Convert a database row to a SyncLogEntry."""
    return SyncLogEntry(
        id=row["id"],
        direction=SyncDirection(row["direction"]),
        file_path=row["file_path"],
        commit_id=row["commit_id"],
        status=SyncStatus(row["status"]),
        message=row["message"],
        created_at=datetime.fromisoformat(row["created_at"]),
        created_at_epoch=row["created_at_epoch"],
    )


async def insert_asset(db: Database, data: AssetInput) -> int:
    """Insert a new asset row and return its id. FTS is auto-synced via triggers.

    Rows imported from the repository (``repository_path`` set) start promoted.
    """
    stamp, epoch = now_stamp()
    cursor = await db.execute(
        """INSERT INTO knowledge_assets
        (type, name, product_line, tags, title, content, source_project,
         repository_path, repository_hash, promoted,
         created_at, created_at_epoch, updated_at, updated_at_epoch)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            data.type.value,
            data.name,
            data.product_line,
            json.dumps(data.tags),
            data.title,
            data.content,
            data.source_project,
            data.repository_path,
            data.repository_hash,
            int(data.repository_path is not None),
            stamp,
            epoch,
            stamp,
            epoch,
        ),
    )
    await db.commit()
    if cursor.lastrowid is None:
        raise RuntimeError(f"Insert of asset {data.name!r} returned no row id")
    return cursor.lastrowid


async def update_asset(db: Database, existing: KnowledgeAsset, data: AssetInput) -> None:
    """Refresh the mutable fields of an existing asset and bump ``updated_at``.

    An import (``repository_path`` set) marks the row promoted; a local sink
    clears the flag because the new content has not reached the repository yet.
    """
    stamp, epoch = now_stamp()
    await db.execute(
        """UPDATE knowledge_assets SET
        type=?, tags=?, title=?, content=?, source_project=?, repository_path=?,
        repository_hash=?, promoted=?, updated_at=?, updated_at_epoch=?
        WHERE id=?""",
        (
            data.type.value,
            json.dumps(data.tags),
            data.title,
            data.content,
            data.source_project or existing.source_project,
            data.repository_path or existing.repository_path,
            data.repository_hash or existing.repository_hash,
            int(data.repository_path is not None),
            stamp,
            epoch,
            existing.id,
        ),
    )
    await db.commit()


async def get_asset(db: Database, asset_id: int) -> KnowledgeAsset | None:
    """Get a single asset by id."""
    cursor = await db.execute("SELECT * FROM knowledge_assets WHERE id = ?", (asset_id,))
    row = await cursor.fetchone()
    return row_to_asset(row) if row else None


async def get_asset_by_name(db: Database, name: str, product_line: str) -> KnowledgeAsset | None:
    """Get a single asset by its unique (name, product_line) key."""
    cursor = await db.execute(
        "SELECT * FROM knowledge_assets WHERE name = ? AND product_line = ?",
        (name, product_line),
    )
    row = await cursor.fetchone()
    return row_to_asset(row) if row else None


async def insert_sync_log(
    db: Database,
    direction: SyncDirection,
    status: SyncStatus,
    message: str | None = None,
    file_path: str | None = None,
    commit_id: str | None = None,
) -> SyncLogEntry:
    """Append a sync log row and return it."""
    stamp, epoch = now_stamp()
    cursor = await db.execute(
        """INSERT INTO sync_log
        (direction, file_path, commit_id, status, message, created_at, created_at_epoch)
        VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (direction.value, file_path, commit_id or None, status.value, message, stamp, epoch),
    )
    await db.commit()
    return SyncLogEntry(
        id=cursor.lastrowid or 0,
        direction=direction,
        file_path=file_path,
        commit_id=commit_id or None,
        status=status,
        message=message,
        created_at=datetime.fromisoformat(stamp),
        created_at_epoch=epoch,
    )


async def get_asset_stats(db: Database, product_line: str | None = None) -> dict[str, Any]:
    """Return asset counts: total, promoted, by type and by product line."""
    where = " WHERE product_line = ?" if product_line else ""
    params: tuple[str, ...] = (product_line,) if product_line else ()

    cursor = await db.execute(
        "SELECT COUNT(*) as total, COALESCE(SUM(promoted), 0) as promoted"
        " FROM knowledge_assets" + where,
        params,
    )
    row = await cursor.fetchone()
    if row is None:
        raise RuntimeError("COUNT query returned no rows")
    stats: dict[str, Any] = {"total": row["total"], "promoted": row["promoted"]}
    stats["unpromoted"] = stats["total"] - stats["promoted"]

    cursor = await db.execute(
        "SELECT type, COUNT(*) as cnt FROM knowledge_assets"
        + where
        + " GROUP BY type ORDER BY type",
        params,
    )
    stats["by_type"] = {row["type"]: row["cnt"] for row in await cursor.fetchall()}

    cursor = await db.execute(
        "SELECT product_line, COUNT(*) as cnt FROM knowledge_assets"
        + where
        + " GROUP BY product_line ORDER BY cnt DESC, product_line",
        params,
    )
    stats["by_product_line"] = {row["product_line"]: row["cnt"] for row in await cursor.fetchall()}
    return stats


def _parse_tags(raw: str | None) -> list[str]:
    """Parse tags from storage format. Tags are stored as a JSON array."""
    if not raw or not raw.strip():
        return []
    try:
        tags = json.loads(raw)
    except json.JSONDecodeError:
        return raw.split()
    return [str(t) for t in tags] if isinstance(tags, list) else []
