"""Git-backed implementation of the Repository protocol.

Every mutating operation runs under the cross-process ``RepositoryLock``.
The configured timeout bounds each git invocation and, separately, each
whole operation once the lock is held. Failures come back
as ``GitResult(success=False, error=...)`` instead of exceptions; git's own
index-lock conflicts are retried with backoff before giving up.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from pathlib import Path
from typing import TypeVar

from compound_kb.config import (
    get_git_author,
    get_git_timeout,
    get_lock_max_attempts,
    get_lock_stale_seconds,
    get_repo_path,
)
from compound_kb.models.sync import GitResult
from compound_kb.sync.codec import KNOWLEDGE_ROOT
from compound_kb.sync.lock import DEFAULT_BASE_DELAY, LockAcquisitionError, RepositoryLock
from compound_kb.sync.process import run_command

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_FILE_NAME = ".compound-kb.lock"
DEFAULT_BRANCH = "main"
DEFAULT_LAYOUT = (
    "general",
    "backend",
    "frontend",
    "infra/devops",
    "infra/monitoring",
    "infra/deployment",
)
_LOCK_CONFLICT_MARKERS = ("index.lock", "could not lock", ".lock': file exists")

_README = """\
# Compound Knowledge Repository

This repository stores curated knowledge assets produced by AI-assisted
development sessions. Each asset is one markdown file at
`knowledge/<product line>/<name>.md` with a metadata block at the top.

`knowledge/_index.json` is regenerated on every push and lists every asset.

## Asset types

- **pitfall**: gotchas and traps to avoid
- **decision-record**: architecture decision records
- **glossary**: term definitions
- **best-practice**: proven approaches
- **pattern**: design patterns
- **discovery**: findings about code or systems
- **skill**: reusable skills
- **reference**: reference material
"""


class GitCommandError(Exception):
    """A git command exited non-zero or could not be started."""

    def __init__(self, command: list[str], message: str, exit_code: int | None = None) -> None:
        """Record the failing command alongside git's error output."""
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class GitTimeoutError(GitCommandError):
    """A git command was killed after exceeding its timeout."""


def _is_lock_conflict(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _LOCK_CONFLICT_MARKERS)


class GitRepository:
    """L2 working copy driven through the ``git`` binary."""

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        timeout: float | None = None,
        lock_stale_after: float | None = None,
        lock_max_attempts: int | None = None,
        lock_base_delay: float = DEFAULT_BASE_DELAY,
        conflict_retries: int = 5,
        conflict_base_delay: float = 0.2,
        fallback_author: tuple[str, str] | None = None,
        layout: tuple[str, ...] = DEFAULT_LAYOUT,
    ) -> None:
        """Configure the adapter. Defaults come from the environment."""
        self.path = Path(path) if path is not None else get_repo_path()
        self.timeout = timeout if timeout is not None else get_git_timeout()
        self.conflict_retries = max(1, conflict_retries)
        self.conflict_base_delay = conflict_base_delay
        self.layout = layout
        self._fallback_author = fallback_author or get_git_author()
        self._identity_env: dict[str, str] | None = None
        if lock_stale_after is None:
            lock_stale_after = get_lock_stale_seconds()
        if lock_max_attempts is None:
            lock_max_attempts = get_lock_max_attempts()
        self._lock = RepositoryLock(
            self.path / LOCK_FILE_NAME,
            stale_after=lock_stale_after,
            max_attempts=lock_max_attempts,
            base_delay=lock_base_delay,
        )

    @property
    def lock(self) -> RepositoryLock:
        """The cross-process lock guarding this working copy."""
        return self._lock

    def locked(self) -> AbstractAsyncContextManager[None]:
        """Hold the repository lock across several operations."""
        return self._lock.hold()

    async def with_lock(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under the lock; raises LockAcquisitionError when out of retries."""
        return await self._lock.run(operation)

    def exists(self) -> bool:
        """True if the working copy has been cloned or initialized."""
        return (self.path / ".git").exists()

    # -- Lifecycle --

    async def clone_or_init(self, remote_url: str | None = None) -> GitResult:
        """Clone ``remote_url`` or create a fresh repository with the default layout.

        Idempotent: an existing repository is left alone apart from pointing
        ``origin`` at ``remote_url`` when one is supplied.
        """
        try:
            if self.exists():
                logger.info("Repository already exists at %s", self.path)
                self._ensure_lock_excluded()
                if remote_url:
                    return await self.set_remote(remote_url)
                return GitResult(success=True, commit_id=await self.current_commit())

            async with asyncio.timeout(self.timeout):
                if remote_url:
                    await self._clone(remote_url)
                else:
                    await self._init()
            return GitResult(success=True, commit_id=await self.current_commit())
        except TimeoutError:
            logger.warning("Repository setup at %s timed out", self.path)
            return GitResult(
                success=False, error=f"Repository setup timed out after {self.timeout:g}s"
            )
        except (GitCommandError, LockAcquisitionError, OSError) as e:
            logger.warning("Repository setup at %s failed: %s", self.path, e)
            return GitResult(success=False, error=str(e))

    async def _clone(self, remote_url: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s into %s", remote_url, self.path)
        await self._git("clone", remote_url, str(self.path), cwd=self.path.parent)
        if await self.current_commit() is None:
            # Empty remote: pin the unborn branch name regardless of init.defaultBranch
            await self._git("symbolic-ref", "HEAD", f"refs/heads/{DEFAULT_BRANCH}")
        self._ensure_lock_excluded()

    async def _init(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        logger.info("Initializing new repository at %s", self.path)
        async with self._lock.hold():
            await self._git("init")
            await self._git("symbolic-ref", "HEAD", f"refs/heads/{DEFAULT_BRANCH}")
            self._ensure_lock_excluded()
            self._create_default_structure()
            await self._git("add", "-A")
            await self._git(
                "commit",
                "-m",
                "Initial knowledge repository structure",
                env=await self._commit_env(),
            )

    async def set_remote(self, url: str) -> GitResult:
        """Add ``origin``, or repoint it when it differs from ``url``."""

        async def _set() -> GitResult:
            if await self.has_remote():
                current = (await self._git("remote", "get-url", "origin")).strip()
                if current != url:
                    await self._git("remote", "set-url", "origin", url)
                    logger.info("Updated origin to %s", url)
            else:
                await self._git("remote", "add", "origin", url)
                logger.info("Added origin %s", url)
            return GitResult(success=True, commit_id=await self.current_commit())

        return await self._guarded("set remote", _set)

    # -- Repository state (always re-derived, never cached) --

    async def has_remote(self) -> bool:
        """True if at least one remote is configured."""
        try:
            return bool((await self._git("remote")).strip())
        except GitCommandError:
            return False

    async def has_upstream(self) -> bool:
        """True if the current branch tracks a remote branch."""
        try:
            await self._git("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")
            return True
        except GitCommandError:
            return False

    async def current_branch(self) -> str:
        """Name of the checked-out branch (works on an unborn branch too)."""
        try:
            return (await self._git("symbolic-ref", "--short", "HEAD")).strip() or DEFAULT_BRANCH
        except GitCommandError:
            return DEFAULT_BRANCH

    async def current_commit(self) -> str | None:
        """HEAD commit id, or None when nothing has been committed yet."""
        try:
            return (await self._git("rev-parse", "--verify", "HEAD")).strip() or None
        except GitCommandError:
            return None

    # -- Sync operations --

    async def pull(self) -> GitResult:
        """Bring in remote changes. Without a remote this is a successful no-op.

        With a tracking branch this rebases (a fast-forward when there are
        no unpushed local commits). The first pull fetches, merges allowing
        unrelated histories, and then sets up tracking.
        """

        async def _pull() -> GitResult:
            if not await self.has_remote():
                return GitResult(success=True, commit_id=await self.current_commit())

            if await self.has_upstream():
                env = await self._commit_env()
                await self._abort_on_failure(
                    ("rebase", "--abort"), "pull", "--rebase", "--autostash", env=env
                )
                return GitResult(success=True, commit_id=await self.current_commit())

            branch = await self.current_branch()
            await self._git("fetch", "origin")
            if not await self._remote_branch_exists(branch):
                logger.info("Remote branch origin/%s not found, nothing to pull", branch)
                return GitResult(success=True, commit_id=await self.current_commit())

            if await self.current_commit() is None:
                await self._git("checkout", "-B", branch, f"origin/{branch}")
            else:
                await self._abort_on_failure(
                    ("merge", "--abort"),
                    "merge",
                    f"origin/{branch}",
                    "--allow-unrelated-histories",
                    "--no-edit",
                    env=await self._commit_env(),
                )
            await self._git("branch", f"--set-upstream-to=origin/{branch}", branch)
            return GitResult(success=True, commit_id=await self.current_commit())

        return await self._guarded("pull", _pull)

    async def add_and_commit(self, message: str, files: list[str] | None = None) -> GitResult:
        """Stage ``files`` (or everything) and commit if anything is staged.

        A clean tree is not an error: the current commit id is returned.
        """

        async def _commit() -> GitResult:
            if files:
                await self._git("add", "--", *files)
            else:
                await self._git("add", "-A")

            staged = (await self._git("diff", "--cached", "--name-only")).strip()
            if not staged:
                logger.debug("Nothing to commit for: %s", message)
                return GitResult(success=True, commit_id=await self.current_commit())

            await self._git("commit", "-m", message, env=await self._commit_env())
            commit_id = await self.current_commit()
            logger.info("Committed %s: %s", (commit_id or "")[:8], message)
            return GitResult(success=True, commit_id=commit_id)

        return await self._guarded("commit", _commit)

    async def push(self) -> GitResult:
        """Push to ``origin``, setting upstream on the first push."""

        async def _push() -> GitResult:
            if not await self.has_remote():
                return GitResult(success=False, error="No remote configured")
            if await self.has_upstream():
                await self._git("push")
            else:
                await self._git("push", "-u", "origin", await self.current_branch())
            return GitResult(success=True, commit_id=await self.current_commit())

        return await self._guarded("push", _push)

    async def diff_since(self, commit_id: str) -> list[str]:
        """Paths changed between ``commit_id`` and HEAD.

        Raises GitCommandError if the commit is unknown (e.g. history was
        rewritten), so callers can fall back to a full listing.
        """
        output = await self._git("diff", "--name-only", commit_id, "HEAD")
        return [line.strip() for line in output.splitlines() if line.strip()]

    # -- File I/O inside the working copy --

    def read_file(self, relative_path: str) -> str | None:
        """Read a file, or None if it does not exist."""
        full = self._resolve(relative_path)
        if not full.is_file():
            return None
        return full.read_text(encoding="utf-8")

    def write_file(self, relative_path: str, content: str) -> None:
        """Write a file, creating parent directories."""
        full = self._resolve(relative_path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content, encoding="utf-8", newline="\n")

    def file_exists(self, relative_path: str) -> bool:
        """True if the file exists in the working copy."""
        return self._resolve(relative_path).is_file()

    def list_markdown_files(self, root: str = KNOWLEDGE_ROOT) -> list[str]:
        """All ``*.md`` files under ``root``, sorted, as POSIX relative paths."""
        base = self.path / root
        if not base.is_dir():
            return []
        files = (p for p in base.rglob("*.md") if p.is_file())
        return sorted(p.relative_to(self.path).as_posix() for p in files)

    # -- Private helpers --

    async def _guarded(
        self, label: str, operation: Callable[[], Awaitable[GitResult]]
    ) -> GitResult:
        """Run a locked operation under the timeout, converting failures into a GitResult."""

        async def _timed() -> GitResult:
            async with asyncio.timeout(self.timeout):
                return await operation()

        try:
            return await self.with_lock(_timed)
        except TimeoutError:
            logger.warning("Git %s timed out after %gs", label, self.timeout)
            return GitResult(success=False, error=f"git {label} timed out after {self.timeout:g}s")
        except LockAcquisitionError as e:
            logger.warning("Git %s skipped: %s", label, e)
            return GitResult(success=False, error=str(e))
        except (GitCommandError, OSError) as e:
            logger.warning("Git %s failed: %s", label, e)
            return GitResult(success=False, error=str(e))

    async def _git(
        self, *args: str, cwd: Path | None = None, env: dict[str, str] | None = None
    ) -> str:
        """Run one git command and return stdout, retrying git index-lock conflicts."""
        command = ["git", "-c", "core.quotepath=off", *args]
        for attempt in range(self.conflict_retries):
            try:
                result = await run_command(
                    command, cwd=cwd or self.path, timeout=self.timeout, env=env
                )
            except OSError as e:
                raise GitCommandError(command, f"Could not run git: {e}") from e

            if result.timed_out:
                raise GitTimeoutError(command, f"git {args[0]} timed out after {self.timeout:g}s")
            if result.success:
                return result.stdout

            error = (result.stderr or result.stdout).strip()
            if _is_lock_conflict(error) and attempt < self.conflict_retries - 1:
                delay = self.conflict_base_delay * 2**attempt
                logger.warning("Git lock conflict on %s, retrying in %.1fs", args[0], delay)
                await asyncio.sleep(delay)
                continue
            raise GitCommandError(
                command, error or f"git {args[0]} exited with {result.exit_code}", result.exit_code
            )
        raise GitCommandError(
            command, f"git {args[0]} failed after {self.conflict_retries} attempts"
        )

    async def _abort_on_failure(
        self, abort: tuple[str, ...], *args: str, env: dict[str, str] | None = None
    ) -> None:
        """Run a merging command; on conflict roll the working copy back before re-raising."""
        try:
            await self._git(*args, env=env)
        except GitCommandError:
            try:
                await self._git(*abort)
            except GitCommandError:
                logger.debug("Nothing to abort after failed git %s", args[0])
            raise

    async def _remote_branch_exists(self, branch: str) -> bool:
        try:
            await self._git("rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{branch}")
            return True
        except GitCommandError:
            return False

    async def _commit_env(self) -> dict[str, str] | None:
        """Identity overrides for commits when git has no user.email configured."""
        if self._identity_env is None:
            try:
                email = (await self._git("config", "user.email")).strip()
            except GitCommandError:
                email = ""
            if email:
                self._identity_env = {}
            else:
                name, fallback_email = self._fallback_author
                self._identity_env = {
                    "GIT_AUTHOR_NAME": name,
                    "GIT_AUTHOR_EMAIL": fallback_email,
                    "GIT_COMMITTER_NAME": name,
                    "GIT_COMMITTER_EMAIL": fallback_email,
                }
        return self._identity_env or None

    def _ensure_lock_excluded(self) -> None:
        """Keep the lock marker out of ``git add -A``."""
        exclude = self.path / ".git" / "info" / "exclude"
        exclude.parent.mkdir(parents=True, exist_ok=True)
        existing = exclude.read_text(encoding="utf-8") if exclude.exists() else ""
        if LOCK_FILE_NAME in existing.splitlines():
            return
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        exclude.write_text(existing + prefix + LOCK_FILE_NAME + "\n", encoding="utf-8")

    def _create_default_structure(self) -> None:
        for product_dir in self.layout:
            directory = self.path / KNOWLEDGE_ROOT / product_dir
            directory.mkdir(parents=True, exist_ok=True)
            gitkeep = directory / ".gitkeep"
            if not gitkeep.exists():
                gitkeep.write_text("", encoding="utf-8")
        readme = self.path / "README.md"
        if not readme.exists():
            readme.write_text(_README, encoding="utf-8")

    def _resolve(self, relative_path: str) -> Path:
        full = (self.path / relative_path).resolve()
        if not full.is_relative_to(self.path.resolve()):
            raise ValueError(f"Path escapes the repository: {relative_path}")
        return full
