"""Subprocess execution with a wall-clock timeout."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Structured result of one external command."""

    args: list[str]
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        """True when the command exited with status 0."""
        return self.exit_code == 0 and not self.timed_out


async def run_command(
    args: list[str],
    *,
    cwd: Path | str | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run a command, killing it if it outlives ``timeout`` seconds.

    ``env`` entries are merged over the current environment. A timeout is
    reported through ``timed_out`` rather than raised.
    """
    started = time.monotonic()
    process_env = None
    if env:
        process_env = os.environ.copy()
        process_env.update(env)

    logger.debug("Running: %s", " ".join(args))
    process = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
        env=process_env,
    )
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
    except TimeoutError:
        await _kill(process)
        logger.warning("Command timed out after %.1fs: %s", timeout or 0.0, " ".join(args))
        return CommandResult(
            args=args,
            exit_code=None,
            duration_ms=int((time.monotonic() - started) * 1000),
            timed_out=True,
        )
    except BaseException:
        # Cancelled while waiting: take the child down with us
        await _kill(process)
        raise

    return CommandResult(
        args=args,
        exit_code=process.returncode,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
        duration_ms=int((time.monotonic() - started) * 1000),
    )


async def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the child if it is still running and reap it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()
