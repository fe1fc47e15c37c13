"""CRUD operations for knowledge assets in the local cache."""

import logging

from compound_kb.db.backend import Database
from compound_kb.db.queries import (
    get_asset,
    get_asset_by_name,
    get_asset_stats,
    insert_asset,
    now_stamp,
    row_to_asset,
    update_asset,
)
from compound_kb.models.asset import AssetInput, AssetStats, AssetType, KnowledgeAsset

logger = logging.getLogger(__name__)


class AssetStore:
    """Single-writer access to the knowledge_assets table.

    ``(name, product_line)`` is the unique key: ``upsert`` refreshes an
    existing row in place instead of inserting a second one.
    """

    def __init__(self, db: Database):
        """Initialize with a database connection."""
        self.db = db

    async def upsert(self, data: AssetInput) -> KnowledgeAsset:
        """Insert a new asset or refresh the existing one with the same key."""
        existing = await get_asset_by_name(self.db, data.name, data.product_line)
        if existing is not None:
            await update_asset(self.db, existing, data)
            asset_id = existing.id
            logger.info("Updated asset %s/%s (id=%d)", data.product_line, data.name, asset_id)
        else:
            asset_id = await insert_asset(self.db, data)
            logger.info("Created asset %s/%s (id=%d)", data.product_line, data.name, asset_id)

        asset = await get_asset(self.db, asset_id)
        if asset is None:
            raise RuntimeError(f"Asset {asset_id} vanished after upsert")
        return asset

    async def get_by_id(self, asset_id: int) -> KnowledgeAsset | None:
        """Get a single asset by id."""
        return await get_asset(self.db, asset_id)

    async def get_by_name(self, name: str, product_line: str = "general") -> KnowledgeAsset | None:
        """Get a single asset by name within a product line."""
        return await get_asset_by_name(self.db, name, product_line)

    async def get_by_path(self, repository_path: str) -> KnowledgeAsset | None:
        """Get the asset backed by a repository file."""
        cursor = await self.db.execute(
            "SELECT * FROM knowledge_assets WHERE repository_path = ?", (repository_path,)
        )
        row = await cursor.fetchone()
        return row_to_asset(row) if row else None

    async def list_unpromoted(self) -> list[KnowledgeAsset]:
        """Assets not yet written to the repository, oldest first."""
        cursor = await self.db.execute(
            "SELECT * FROM knowledge_assets WHERE promoted = 0"
            " ORDER BY created_at_epoch ASC, id ASC"
        )
        return [row_to_asset(row) for row in await cursor.fetchall()]

    async def list_assets(
        self,
        type: AssetType | None = None,
        product_line: str | None = None,
        promoted: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[KnowledgeAsset]:
        """List assets, most recently updated first."""
        sql = "SELECT * FROM knowledge_assets WHERE 1 = 1"
        params: list[str | int] = []
        if type is not None:
            sql += " AND type = ?"
            params.append(type.value)
        if product_line:
            sql += " AND product_line = ?"
            params.append(product_line)
        if promoted is not None:
            sql += " AND promoted = ?"
            params.append(int(promoted))
        sql += " ORDER BY updated_at_epoch DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        cursor = await self.db.execute(sql, params)
        return [row_to_asset(row) for row in await cursor.fetchall()]

    async def mark_promoted(
        self, asset_id: int, repository_path: str, repository_hash: str | None = None
    ) -> None:
        """Record that the asset's current content lives at ``repository_path``.

        ``repository_hash`` is the digest of the file text that was committed.
        """
        stamp, epoch = now_stamp()
        await self.db.execute(
            "UPDATE knowledge_assets"
            " SET promoted = 1, repository_path = ?,"
            " repository_hash = COALESCE(?, repository_hash),"
            " updated_at = ?, updated_at_epoch = ?"
            " WHERE id = ?",
            (repository_path, repository_hash, stamp, epoch, asset_id),
        )
        await self.db.commit()

    async def stats(self, product_line: str | None = None) -> AssetStats:
        """Aggregate counts, optionally scoped to one product line."""
        return AssetStats(**await get_asset_stats(self.db, product_line))
