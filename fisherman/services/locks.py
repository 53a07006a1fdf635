"""Per-repository mutual exclusion without queuing."""

from __future__ import annotations

import threading


class RepositoryLocks:
    """Set of repository identities with a deployment in flight.

    ``try_acquire`` either takes the lock or reports that someone else holds
    it; it never waits.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._guard = threading.Lock()

    def try_acquire(self, identity: str) -> bool:
        with self._guard:
            if identity in self._held:
                return False
            self._held.add(identity)
            return True

    def release(self, identity: str) -> None:
        """Release a held lock.

        Raises:
            RuntimeError: If ``identity`` is not currently held.
        """
        with self._guard:
            if identity not in self._held:
                raise RuntimeError(f"Lock for {identity} is not held")
            self._held.remove(identity)

    def is_held(self, identity: str) -> bool:
        with self._guard:
            return identity in self._held

    def held(self) -> list[str]:
        with self._guard:
            return sorted(self._held)
