"""Sync log, repository and engine result models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class SyncDirection(StrEnum):
    """Which way a sync moves data."""

    PULL = "pull"
    PUSH = "push"
    BOTH = "both"


class SyncStatus(StrEnum):
    """Outcome of one sync attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class EngineState(StrEnum):
    """Lifecycle of the sync engine."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class SyncLogEntry(BaseModel):
    """Append-only audit record of one sync attempt."""

    id: int
    direction: SyncDirection
    file_path: str | None = None
    commit_id: str | None = None
    status: SyncStatus
    message: str | None = None
    created_at: datetime
    created_at_epoch: int

    @property
    def ok(self) -> bool:
        """True unless the attempt failed."""
        return self.status != SyncStatus.FAILED


class GitResult(BaseModel):
    """Outcome of a repository operation."""

    success: bool
    commit_id: str | None = None
    error: str | None = None


class OperationResult(BaseModel):
    """Generic success/failure result for engine operations without a log entry."""

    success: bool
    message: str | None = None
    error: str | None = None


class SyncReport(BaseModel):
    """Combined outcome of ``SyncEngine.sync``."""

    direction: SyncDirection
    pull: SyncLogEntry | None = None
    push: SyncLogEntry | None = None
    remote_push: GitResult | None = None

    @property
    def success(self) -> bool:
        """True when no recorded step failed. A failed remote push does not count."""
        entries = [e for e in (self.pull, self.push) if e is not None]
        return all(e.ok for e in entries)


class IndexEntry(BaseModel):
    """One asset as listed in the repository index."""

    path: str
    type: str
    name: str
    product_line: str
    title: str
    tags: list[str] = Field(default_factory=list)
    updated: str = ""
    promoted: bool = True

    def to_line(self) -> str:
        """Compact pipe-delimited form: name|type|product_line|title|tags|promoted."""
        title = self.title.replace("|", "/")
        return "|".join(
            [
                self.name,
                self.type,
                self.product_line,
                title,
                ",".join(self.tags),
                "1" if self.promoted else "0",
            ]
        )


class RepositoryIndex(BaseModel):
    """Summary of everything currently in the repository's knowledge root."""

    version: str = "1"
    generated_at: str
    total: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_product_line: dict[str, int] = Field(default_factory=dict)
    entries: list[str] = Field(default_factory=list)
