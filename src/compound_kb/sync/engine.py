"""Sync orchestrator between the local cache (L1) and the repository (L2).

Every public operation returns a result value. Exceptions from lower
layers are caught here, logged, and recorded as ``failed`` sync-log
entries so callers never have to handle them.
"""

import logging

from compound_kb.models.asset import AssetInput, KnowledgeAsset
from compound_kb.models.sync import (
    EngineState,
    GitResult,
    OperationResult,
    SyncDirection,
    SyncLogEntry,
    SyncReport,
    SyncStatus,
)
from compound_kb.store.asset_store import AssetStore
from compound_kb.store.sync_log_store import SyncLogStore
from compound_kb.sync.codec import (
    content_hash,
    created_stamp,
    derive_path,
    from_record,
    is_asset_path,
    to_record,
)
from compound_kb.sync.index import INDEX_PATH, IndexBuilder
from compound_kb.sync.repository import Repository

logger = logging.getLogger(__name__)

_NOT_READY = "Sync engine is not initialized"


class SyncEngine:
    """Coordinates pull and push between the asset store and the repository."""

    def __init__(
        self,
        store: AssetStore,
        sync_log: SyncLogStore,
        repo: Repository,
        index: IndexBuilder | None = None,
    ):
        """Wire the engine to its collaborators. Call ``initialize`` before syncing."""
        self.store = store
        self.sync_log = sync_log
        self.repo = repo
        self.index = index or IndexBuilder(repo)
        self._state = EngineState.UNINITIALIZED

    @property
    def state(self) -> EngineState:
        """Current lifecycle state."""
        return self._state

    @property
    def ready(self) -> bool:
        """True once ``initialize`` has succeeded."""
        return self._state == EngineState.READY

    async def initialize(
        self, remote_url: str | None = None, *, pull: bool = True
    ) -> OperationResult:
        """Clone or create the repository, then pull once if a remote exists.

        ``pull=False`` leaves the first pull to the caller (the server runs
        it in the background). Idempotent: calling it again once ready does
        nothing.
        """
        if self._state == EngineState.READY:
            return OperationResult(success=True, message="Already initialized")

        self._state = EngineState.INITIALIZING
        result = await self.repo.clone_or_init(remote_url)
        if not result.success:
            self._state = EngineState.UNINITIALIZED
            logger.warning("Sync engine initialization failed: %s", result.error)
            return OperationResult(success=False, error=result.error)

        self._state = EngineState.READY
        logger.info("Sync engine initialized")

        if pull and await self.repo.has_remote():
            entry = await self.pull_from_l2()
            if not entry.ok:
                return OperationResult(
                    success=True,
                    message="Initialized; initial pull failed",
                    error=entry.message,
                )
            return OperationResult(success=True, message=f"Initialized; {entry.message}")
        return OperationResult(success=True, message="Initialized repository")

    async def update_remote(self, url: str) -> GitResult:
        """Point the repository at a new remote URL."""
        if not url:
            return GitResult(success=False, error="Remote URL is empty")
        return await self.repo.set_remote(url)

    # -- Pull --

    async def pull_from_l2(self) -> SyncLogEntry:
        """Import repository changes since the last successful pull.

        Remote content wins: a pulled file overwrites the local row with the
        same ``(name, product_line)``. A file whose text is unchanged since
        the engine last wrote or imported it is left alone, so local edits
        made after a push survive until the next push.
        """
        if not self.ready:
            return await self._record(SyncDirection.PULL, SyncStatus.FAILED, _NOT_READY)

        try:
            watermark = await self.sync_log.pull_watermark()
            pulled = await self.repo.pull()
            if not pulled.success:
                return await self._record(
                    SyncDirection.PULL, SyncStatus.FAILED, pulled.error or "Pull failed"
                )

            head = pulled.commit_id
            if watermark and head == watermark:
                return await self._record(
                    SyncDirection.PULL,
                    SyncStatus.SKIPPED,
                    "No changes since last sync",
                    commit_id=head,
                )

            changed = await self._changed_asset_files(watermark)
            imported = 0
            for path in changed:
                text = self.repo.read_file(path)
                if not text:
                    continue
                record = to_record(path, text)
                if record is None:
                    continue
                existing = await self.store.get_by_name(record.name, record.product_line)
                if _unchanged_since_sync(existing, record):
                    continue
                _warn_if_overwriting(existing, record)
                await self.store.upsert(record)
                imported += 1

            logger.info("Pulled %d assets from repository", imported)
            return await self._record(
                SyncDirection.PULL,
                SyncStatus.SUCCESS,
                f"Imported {imported} assets from {len(changed)} changed files",
                commit_id=head,
            )
        except Exception as e:
            logger.warning("Pull from repository failed", exc_info=True)
            return await self._record(SyncDirection.PULL, SyncStatus.FAILED, str(e))

    async def _changed_asset_files(self, watermark: str | None) -> list[str]:
        if watermark:
            try:
                return [p for p in await self.repo.diff_since(watermark) if is_asset_path(p)]
            except Exception:
                # Watermark commit no longer reachable; fall back to a full import
                logger.warning("Diff since %s failed, importing all files", watermark[:8])
        return self.repo.list_markdown_files()

    # -- Push --

    async def push_asset_to_l2(self, data: AssetInput) -> SyncLogEntry:
        """Store ``data`` locally, write it to the repository and commit it with the index."""
        if not self.ready:
            return await self._record(SyncDirection.PUSH, SyncStatus.FAILED, _NOT_READY)

        path: str | None = None
        try:
            asset = await self.store.upsert(
                data.model_copy(update={"repository_path": None, "repository_hash": None})
            )
            async with self.repo.locked():
                path, digest = self._write_asset(asset)
                self.index.write()
                commit = await self.repo.add_and_commit(
                    f"knowledge: add {asset.type.value}/{asset.name}", [path, INDEX_PATH]
                )
            if not commit.success:
                return await self._record(
                    SyncDirection.PUSH,
                    SyncStatus.FAILED,
                    commit.error or "Commit failed",
                    file_path=path,
                )

            await self.store.mark_promoted(asset.id, path, digest)
            return await self._record(
                SyncDirection.PUSH,
                SyncStatus.SUCCESS,
                f"Pushed {asset.name} to {path}",
                file_path=path,
                commit_id=commit.commit_id,
            )
        except Exception as e:
            logger.warning("Push failed for %s", data.name, exc_info=True)
            return await self._record(SyncDirection.PUSH, SyncStatus.FAILED, str(e), file_path=path)

    async def push_all_unpromoted(self) -> SyncLogEntry:
        """Write every unpromoted asset in one commit, then mark them all promoted."""
        if not self.ready:
            return await self._record(SyncDirection.PUSH, SyncStatus.FAILED, _NOT_READY)

        try:
            pending = await self.store.list_unpromoted()
            if not pending:
                return await self._record(
                    SyncDirection.PUSH, SyncStatus.SKIPPED, "No unpromoted assets to push"
                )

            logger.info("Pushing %d unpromoted assets", len(pending))
            written: list[tuple[KnowledgeAsset, str, str]] = []
            rejected: list[str] = []
            async with self.repo.locked():
                for asset in pending:
                    try:
                        path, digest = self._write_asset(asset)
                    except ValueError as e:
                        logger.warning("Skipping %s/%s: %s", asset.product_line, asset.name, e)
                        rejected.append(asset.name)
                        continue
                    written.append((asset, path, digest))
                if not written:
                    return await self._record(
                        SyncDirection.PUSH,
                        SyncStatus.FAILED,
                        "No valid assets to push; skipped " + ", ".join(rejected),
                    )
                self.index.write()
                commit = await self.repo.add_and_commit(
                    f"knowledge: batch push {len(written)} assets",
                    [path for _, path, _ in written] + [INDEX_PATH],
                )

            if not commit.success:
                return await self._record(
                    SyncDirection.PUSH, SyncStatus.FAILED, commit.error or "Batch push failed"
                )

            for asset, path, digest in written:
                await self.store.mark_promoted(asset.id, path, digest)
            message = f"Pushed {len(written)} assets to repository"
            if rejected:
                message += "; skipped invalid " + ", ".join(rejected)
            return await self._record(
                SyncDirection.PUSH,
                SyncStatus.SUCCESS,
                message,
                commit_id=commit.commit_id,
            )
        except Exception as e:
            logger.warning("Batch push failed", exc_info=True)
            return await self._record(SyncDirection.PUSH, SyncStatus.FAILED, str(e))

    def _write_asset(self, asset: KnowledgeAsset) -> tuple[str, str]:
        """Serialize one asset into the working copy; return its path and content hash."""
        path = asset.repository_path or derive_path(asset)
        created = created_stamp(self.repo.read_file(path))
        text = from_record(asset, created=created)
        self.repo.write_file(path, text)
        return path, content_hash(text)

    # -- Combined operations --

    async def sync(self, direction: SyncDirection = SyncDirection.BOTH) -> SyncReport:
        """Pull and/or push, then publish local commits to the remote.

        A failed remote push is only a warning: the local commit stands and
        the next sync retries the push.
        """
        report = SyncReport(direction=direction)
        if direction in (SyncDirection.PULL, SyncDirection.BOTH):
            report.pull = await self.pull_from_l2()
        if direction in (SyncDirection.PUSH, SyncDirection.BOTH):
            report.push = await self.push_all_unpromoted()

        if direction != SyncDirection.PULL and self.ready and await self.repo.has_remote():
            report.remote_push = await self.repo.push()
            if not report.remote_push.success:
                logger.warning("Remote push failed: %s", report.remote_push.error)
        return report

    async def commit_and_push(self, message: str | None = None) -> GitResult:
        """Commit the whole working tree and push it if a remote is configured."""
        if not self.ready:
            return GitResult(success=False, error=_NOT_READY)

        commit = await self.repo.add_and_commit(message or "knowledge: manual sync")
        if not commit.success:
            return commit
        if await self.repo.has_remote():
            pushed = await self.repo.push()
            if not pushed.success:
                return GitResult(success=False, commit_id=commit.commit_id, error=pushed.error)
        return commit

    def summarize(self) -> str:
        """Digest of what the repository currently holds."""
        try:
            return self.index.summarize()
        except Exception:
            logger.warning("Could not summarize repository index", exc_info=True)
            return "Knowledge summary unavailable."

    async def _record(
        self,
        direction: SyncDirection,
        status: SyncStatus,
        message: str,
        *,
        file_path: str | None = None,
        commit_id: str | None = None,
    ) -> SyncLogEntry:
        return await self.sync_log.record(
            direction, status, message, file_path=file_path, commit_id=commit_id
        )


def _unchanged_since_sync(existing: KnowledgeAsset | None, record: AssetInput) -> bool:
    """True if ``record`` is the same file text the row was last synced with."""
    return (
        existing is not None
        and existing.repository_path == record.repository_path
        and existing.repository_hash is not None
        and existing.repository_hash == record.repository_hash
    )


def _warn_if_overwriting(existing: KnowledgeAsset | None, record: AssetInput) -> None:
    if existing is not None and not existing.promoted and existing.content != record.content:
        logger.warning(
            "Pull overwrites unpushed local changes to %s/%s",
            record.product_line,
            record.name,
        )
