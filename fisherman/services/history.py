"""Bounded in-memory log of terminal deployment results."""

from __future__ import annotations

import threading
from collections import deque
from datetime import UTC, datetime

from fisherman.schemas.deployments import DeploymentRecord, DeploymentResult

DEFAULT_CAPACITY = 100


class DeploymentHistory:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._records: deque[DeploymentRecord] = deque(maxlen=capacity)
        self._guard = threading.Lock()

    def record(self, result: DeploymentResult) -> DeploymentRecord:
        entry = DeploymentRecord(timestamp=datetime.now(UTC), result=result)
        with self._guard:
            self._records.append(entry)
        return entry

    def recent(self, limit: int | None = None) -> list[DeploymentRecord]:
        """Most recent first."""
        with self._guard:
            records = list(reversed(self._records))
        return records[:limit] if limit is not None else records
