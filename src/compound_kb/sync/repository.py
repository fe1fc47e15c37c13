"""Repository protocol: the narrow surface the sync engine needs from L2.

The engine only talks to this protocol, so the git-binary implementation
can be swapped for a native library without touching orchestration.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from compound_kb.models.sync import GitResult


@runtime_checkable
class Repository(Protocol):
    """Serialized access to a version-controlled knowledge directory."""

    async def clone_or_init(self, remote_url: str | None = None) -> GitResult:
        """Clone or create the repository; no-op if it already exists."""
        ...

    async def set_remote(self, url: str) -> GitResult:
        """Point ``origin`` at ``url``."""
        ...

    async def has_remote(self) -> bool:
        """True if a remote is configured."""
        ...

    async def current_commit(self) -> str | None:
        """HEAD commit id, or None for an empty repository."""
        ...

    async def pull(self) -> GitResult:
        """Bring in remote changes."""
        ...

    async def add_and_commit(self, message: str, files: list[str] | None = None) -> GitResult:
        """Stage and commit; a clean tree is a successful no-op."""
        ...

    async def push(self) -> GitResult:
        """Publish local commits to the remote."""
        ...

    async def diff_since(self, commit_id: str) -> list[str]:
        """Paths that differ between ``commit_id`` and HEAD."""
        ...

    def read_file(self, relative_path: str) -> str | None:
        """Read a file inside the working copy, or None if missing."""
        ...

    def write_file(self, relative_path: str, content: str) -> None:
        """Write a file inside the working copy, creating directories."""
        ...

    def list_markdown_files(self, root: str = "knowledge") -> list[str]:
        """All markdown files under ``root``, as repository-relative paths."""
        ...

    def locked(self) -> AbstractAsyncContextManager[None]:
        """Hold the cross-process repository lock for a block of operations."""
        ...
