"""Restart-due signal consumed by an external process supervisor.

Production code uses ``MarkerFileRestartSignal``: after a successful build it
rewrites ``<restart_dir>/<owner>/<name>.restart``, which a systemd path unit
or similar watcher turns into a service restart.  Tests use
``InMemoryRestartSignal``.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import structlog

from fisherman.config import RepositoryProfile

logger = structlog.get_logger()


class RestartSignal(Protocol):
    """Protocol for telling the supervisor that fresh binaries are in place."""

    async def signal(self, profile: RepositoryProfile, commit_sha: str) -> None:
        """Emit the signal. Fire-and-forget: there is no acknowledgement."""
        ...


class MarkerFileRestartSignal:
    """Write a JSON marker file per repository."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def marker_path(self, identity: str) -> Path:
        owner, _, name = identity.partition("/")
        return self._directory / owner / f"{name}.restart"

    async def signal(self, profile: RepositoryProfile, commit_sha: str) -> None:
        path = self.marker_path(profile.identity)
        content = {
            "repository": profile.identity,
            "commit": commit_sha,
            "binaries": list(profile.binaries),
            "signalled_at": datetime.now(UTC).isoformat(),
        }
        await asyncio.to_thread(_write_atomically, path, json.dumps(content, indent=2))
        logger.info("restart_signalled", repository=profile.identity, marker=str(path))


def _write_atomically(path: Path, text: str) -> None:
    """Replace ``path`` in one rename so watchers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class InMemoryRestartSignal:
    """Test double that records every signal for assertions."""

    def __init__(self) -> None:
        self.signals: list[dict] = []

    async def signal(self, profile: RepositoryProfile, commit_sha: str) -> None:
        self.signals.append({"repository": profile.identity, "commit": commit_sha})
