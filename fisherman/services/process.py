"""Async subprocess execution for the git and build stages.

Both stages run long, blocking tools.  Running them through
``asyncio.create_subprocess_exec`` keeps the event loop free to accept
webhooks for other repositories while one deployment is in progress.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()

# Exit status reported when the executable could not be started at all.
EXIT_NOT_STARTED = 127


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined stdout/stderr of one finished command."""

    args: tuple[str, ...]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    *args: str,
    cwd: Path,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``args`` in ``cwd`` and wait for it to exit.

    ``env`` entries are layered over the current environment.  If the
    awaiting task is cancelled (for instance by ``asyncio.wait_for`` hitting
    a timeout) the child is killed before the cancellation propagates, so a
    hung tool never outlives its deployment.
    """
    merged_env = {**os.environ, **env} if env else None
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=merged_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as exc:
        logger.warning("command_not_started", command=args[0], error=str(exc))
        return CommandResult(args=tuple(args), returncode=EXIT_NOT_STARTED, output=str(exc))

    try:
        stdout, _ = await proc.communicate()
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        logger.warning("command_killed", command=args[0], pid=proc.pid)
        raise

    output = stdout.decode("utf-8", errors="replace") if stdout else ""
    return CommandResult(args=tuple(args), returncode=proc.returncode or 0, output=output)


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
