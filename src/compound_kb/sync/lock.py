"""Cross-process lock over the shared repository directory.

The lock is a marker file holding the acquisition time in epoch
milliseconds. It is created with ``O_CREAT | O_EXCL`` so exactly one
process can create it; a marker older than ``stale_after`` seconds is
treated as abandoned and removed by the next acquirer.

Re-entrancy is per asyncio task: the task holding the lock may acquire it
again, while other tasks sharing the same instance wait like any other
process would.
"""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STALE_AFTER = 10.0
DEFAULT_MAX_ATTEMPTS = 50
DEFAULT_BASE_DELAY = 0.1
DEFAULT_MAX_BACKOFF = 10.0
_BACKOFF_FACTOR = 1.5


class LockAcquisitionError(Exception):
    """Raised when the repository lock could not be taken within the retry budget."""


class RepositoryLock:
    """Marker-file lock, re-entrant within the owning task."""

    def __init__(
        self,
        path: Path | str,
        *,
        stale_after: float = DEFAULT_STALE_AFTER,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ) -> None:
        """Configure the lock; nothing touches the filesystem until ``acquire``."""
        self.path = Path(path)
        self.stale_after = stale_after
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_backoff = max_backoff
        self._depth = 0
        self._owner: asyncio.Task | None = None

    @property
    def held(self) -> bool:
        """True while this instance owns the marker file."""
        return self._depth > 0

    def acquire(self) -> bool:
        """Try once to create the marker. Returns False if another holder has it."""
        owner = _current_task()
        if self.held:
            if owner is not self._owner:
                return False
            self._depth += 1
            return True

        if self.path.exists() and not self._clear_if_stale():
            return False

        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            # Another process won the race
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(int(time.time() * 1000)))
        self._depth = 1
        self._owner = owner
        return True

    def release(self) -> None:
        """Give up one level of ownership, removing the marker at the outermost level."""
        if not self.held:
            return
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            try:
                self.path.unlink()
            except FileNotFoundError:
                logger.warning("Lock file %s disappeared before release", self.path)

    async def wait(self) -> None:
        """Acquire with capped exponential backoff, or raise LockAcquisitionError."""
        for attempt in range(self.max_attempts):
            if self.acquire():
                return
            if attempt < self.max_attempts - 1:
                multiplier = min(_BACKOFF_FACTOR**attempt, self.max_backoff)
                await asyncio.sleep(self.base_delay * multiplier)
        logger.error("Failed to acquire %s after %d attempts", self.path, self.max_attempts)
        raise LockAcquisitionError(
            f"Could not acquire repository lock {self.path} after {self.max_attempts} attempts"
        )

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Hold the lock for the duration of the block."""
        await self.wait()
        try:
            yield
        finally:
            self.release()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` while holding the lock."""
        async with self.hold():
            return await operation()

    def _clear_if_stale(self) -> bool:
        """Remove an abandoned marker. Returns True if the path is now free."""
        try:
            raw = self.path.read_text().strip()
            stamp = int(raw) / 1000 if raw else self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        except (OSError, ValueError):
            try:
                stamp = self.path.stat().st_mtime
            except FileNotFoundError:
                return True

        if time.time() - stamp <= self.stale_after:
            return False

        try:
            self.path.unlink()
            logger.warning("Cleaned up stale lock file %s", self.path)
        except FileNotFoundError:
            pass
        return True


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # No running loop: plain synchronous callers share one owner
        return None
