"""Release builds of the binaries a repository ships."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import structlog

from fisherman.config import RepositoryProfile
from fisherman.services.errors import BuildError
from fisherman.services.process import CommandRunner, run_command

logger = structlog.get_logger()

PROFILE_DIR = Path("target") / "release"


class BuildExecutor(Protocol):
    """Protocol for producing fresh binaries from the synchronized source."""

    async def build(self, profile: RepositoryProfile, since: float) -> str:
        """Build every binary in ``profile.binaries``.

        ``since`` is the POSIX time at which synchronization finished; each
        artifact must have been written after it.  Returns the build output.

        Raises:
            BuildError: If the tool fails or any artifact is missing or stale.
        """
        ...


class CargoBuilder:
    """Production implementation invoking ``cargo build --release``."""

    def __init__(self, runner: CommandRunner = run_command) -> None:
        self._runner = runner

    async def build(self, profile: RepositoryProfile, since: float) -> str:
        if not profile.binaries:
            raise BuildError(f"No binaries configured for {profile.identity}")
        code_dir = profile.code_dir
        if not code_dir.is_dir():
            raise BuildError(f"Code root {code_dir} does not exist")

        args = [str(profile.cargo_path), "build", "--release"]
        for binary in profile.binaries:
            args.extend(["--bin", binary])

        logger.info("build_started", repository=profile.identity, binaries=list(profile.binaries))
        result = await self._runner(*args, cwd=code_dir)
        if not result.ok:
            raise BuildError(f"Build exited with status {result.returncode}", result.output)

        for binary in profile.binaries:
            artifact = find_artifact(profile, binary)
            if artifact is None:
                raise BuildError(f"Binary {binary} was not produced", result.output)
            if artifact.stat().st_mtime < since:
                raise BuildError(f"Binary {binary} at {artifact} was not rebuilt", result.output)

        logger.info("build_succeeded", repository=profile.identity)
        return result.output


def find_artifact(profile: RepositoryProfile, binary: str) -> Path | None:
    """Locate a built binary.

    Workspace members write to the workspace's ``target`` directory, so look
    in the code root first and then walk up to the working copy.
    """
    directory = profile.code_dir
    while True:
        candidate = directory / PROFILE_DIR / binary
        if candidate.is_file():
            return candidate
        if directory == profile.working_copy or directory.parent == directory:
            return None
        directory = directory.parent
