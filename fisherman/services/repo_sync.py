"""Fast-forward a local working copy to a pushed commit using the git CLI.

The agent never clones, never resets and never creates merge commits.  A
working copy that is missing, dirty, or has diverged from the remote is a
sync failure for an operator to sort out by hand.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Protocol

import structlog

from fisherman.config import RepositoryProfile
from fisherman.services.errors import SyncError
from fisherman.services.process import CommandResult, CommandRunner, run_command

logger = structlog.get_logger()

REMOTE = "origin"


class Synchronizer(Protocol):
    """Protocol for bringing a working copy up to date."""

    async def sync(self, profile: RepositoryProfile, commit_sha: str) -> None:
        """Move the tracked branch of ``profile``'s working copy to ``commit_sha``.

        Raises:
            SyncError: On any failure; the working copy is left as git left it.
        """
        ...


def ssh_environment(private_key: Path) -> dict[str, str]:
    """Environment that makes git authenticate with ``private_key`` only."""
    command = " ".join(
        [
            "ssh",
            "-i",
            shlex.quote(str(private_key)),
            "-o IdentitiesOnly=yes",
            "-o BatchMode=yes",
            "-o StrictHostKeyChecking=accept-new",
        ]
    )
    return {"GIT_SSH_COMMAND": command, "GIT_TERMINAL_PROMPT": "0"}


class GitSynchronizer:
    """Production implementation shelling out to ``git``."""

    def __init__(self, git: str = "git", runner: CommandRunner = run_command) -> None:
        self._git_binary = git
        self._runner = runner

    async def sync(self, profile: RepositoryProfile, commit_sha: str) -> None:
        path = profile.working_copy
        if not (path / ".git").exists():
            raise SyncError(f"No local clone at {path}")

        status = await self._git(path, "status", "--porcelain", "--untracked-files=no")
        if not status.ok:
            raise SyncError("git status failed", status.output)
        if status.output.strip():
            raise SyncError("Working copy has uncommitted changes", status.output)

        fetch = await self._git(
            path, "fetch", REMOTE, profile.branch, env=ssh_environment(profile.ssh_private_key)
        )
        if not fetch.ok:
            raise SyncError(f"git fetch {REMOTE} {profile.branch} failed", fetch.output)

        found = await self._git(path, "cat-file", "-e", f"{commit_sha}^{{commit}}")
        if not found.ok:
            raise SyncError(f"Commit {commit_sha} not present after fetch")

        current = await self._git(path, "symbolic-ref", "--quiet", "--short", "HEAD")
        if current.output.strip() != profile.branch:
            checkout = await self._git(path, "checkout", profile.branch)
            if not checkout.ok:
                raise SyncError(f"Could not check out {profile.branch}", checkout.output)

        ancestor = await self._git(path, "merge-base", "--is-ancestor", "HEAD", commit_sha)
        if ancestor.returncode == 1:
            raise SyncError(
                f"Local {profile.branch} has diverged from {commit_sha}, refusing to merge"
            )
        if not ancestor.ok:
            raise SyncError("git merge-base failed", ancestor.output)

        merge = await self._git(path, "merge", "--ff-only", commit_sha)
        if not merge.ok:
            raise SyncError(f"Fast-forward to {commit_sha} failed", merge.output)

        logger.info(
            "repository_synchronized",
            repository=profile.identity,
            branch=profile.branch,
            commit=commit_sha,
        )

    async def _git(
        self,
        path: Path,
        *args: str,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        logger.debug("git_command", args=args, cwd=str(path))
        return await self._runner(self._git_binary, *args, cwd=path, env=env)
