"""Sequencing of synchronize -> build -> restart for one repository at a time.

A deployment moves through ``DeploymentState`` strictly forwards::

    IDLE -> LOCKED -> SYNCING -> BUILDING -> RESTARTING -> DONE

and any failure jumps straight to ``DONE``.  ``LOCKED`` is entered only by
taking the repository's lock; if another deployment of the same repository
holds it the event is dropped as ``SKIPPED_CONCURRENT`` rather than queued.
Every path to ``DONE`` releases the lock exactly once, then the result is
recorded, logged and handed to the notifier.

The webhook route splits the two halves: ``try_lock`` runs inside the
request so contention is reported in the HTTP response, and ``run_locked``
runs as a background task after the response has been sent.  ``deploy``
does both in one call.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from enum import StrEnum

import structlog

from fisherman.config import RepositoryProfile
from fisherman.schemas.deployments import DeploymentOutcome, DeploymentResult, PushEvent
from fisherman.services.builder import BuildExecutor
from fisherman.services.errors import BuildError, DeploymentError, SyncError
from fisherman.services.history import DeploymentHistory
from fisherman.services.locks import RepositoryLocks
from fisherman.services.notifier import Notifier
from fisherman.services.repo_sync import Synchronizer
from fisherman.services.restart import RestartSignal

logger = structlog.get_logger()

# Hard ceilings, independent of configuration, so a hung git or cargo can
# never hold a repository's lock forever.
SYNC_TIMEOUT_SECONDS = 300.0
BUILD_TIMEOUT_SECONDS = 1800.0


class DeploymentState(StrEnum):
    IDLE = "idle"
    LOCKED = "locked"
    SYNCING = "syncing"
    BUILDING = "building"
    RESTARTING = "restarting"
    DONE = "done"


class DeploymentCoordinator:
    """Run deployments, at most one in flight per repository identity."""

    def __init__(
        self,
        synchronizer: Synchronizer,
        builder: BuildExecutor,
        restart_signal: RestartSignal,
        notifier: Notifier,
        *,
        locks: RepositoryLocks | None = None,
        history: DeploymentHistory | None = None,
        sync_timeout: float = SYNC_TIMEOUT_SECONDS,
        build_timeout: float = BUILD_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._synchronizer = synchronizer
        self._builder = builder
        self._restart_signal = restart_signal
        self._notifier = notifier
        self.locks = locks or RepositoryLocks()
        self.history = history or DeploymentHistory()
        self._sync_timeout = min(sync_timeout, SYNC_TIMEOUT_SECONDS)
        self._build_timeout = min(build_timeout, BUILD_TIMEOUT_SECONDS)
        self._clock = clock

    def in_flight(self) -> list[str]:
        return self.locks.held()

    def try_lock(self, identity: str) -> bool:
        """IDLE -> LOCKED. Never waits; ``False`` means another deployment holds it."""
        return self.locks.try_acquire(identity)

    async def deploy(self, event: PushEvent, profile: RepositoryProfile) -> DeploymentResult:
        """Lock, run and finish one deployment, or reject it as concurrent."""
        if not self.try_lock(event.identity):
            return await self.reject_concurrent(event)
        return await self.run_locked(event, profile)

    async def reject_concurrent(self, event: PushEvent) -> DeploymentResult:
        result = DeploymentResult.for_event(
            event,
            DeploymentOutcome.SKIPPED_CONCURRENT,
            detail="Another deployment of this repository is in progress",
        )
        return await self._finish(result)

    async def run_locked(self, event: PushEvent, profile: RepositoryProfile) -> DeploymentResult:
        """Run SYNCING -> BUILDING -> RESTARTING for an event whose lock is held.

        The caller must have taken the lock with ``try_lock``; it is released
        here whatever happens.
        """
        if not self.locks.is_held(event.identity):
            raise RuntimeError(f"Lock for {event.identity} must be held before running")
        log = logger.bind(repository=event.identity, commit=event.short_sha)
        state = DeploymentState.LOCKED
        log.info("deployment_started", branch=event.branch)

        try:
            state = DeploymentState.SYNCING
            await self._synchronize(profile, event.commit_sha)
            synced_at = self._clock()

            state = DeploymentState.BUILDING
            await self._build(profile, synced_at)

            state = DeploymentState.RESTARTING
            detail = await self._signal_restart(profile, event.commit_sha)
            result = DeploymentResult.for_event(event, DeploymentOutcome.SUCCESS, detail=detail)
        except DeploymentError as exc:
            log.warning("deployment_stage_failed", state=state.value, error=exc.message)
            result = DeploymentResult.for_event(event, exc.outcome, detail=exc.detail)
        except Exception as exc:
            log.exception("deployment_stage_crashed", state=state.value)
            outcome = (
                DeploymentOutcome.SYNC_FAILED
                if state is DeploymentState.SYNCING
                else DeploymentOutcome.BUILD_FAILED
            )
            result = DeploymentResult.for_event(event, outcome, detail=f"Unexpected error: {exc}")
        finally:
            self.locks.release(event.identity)
            log.debug("deployment_lock_released", state=DeploymentState.DONE.value)

        return await self._finish(result)

    def record(self, result: DeploymentResult) -> None:
        """Record and log a result reached before the coordinator was involved."""
        self.history.record(result)
        log = logger.warning if result.outcome.is_failure else logger.info
        log(
            "deployment_result",
            repository=result.identity,
            outcome=result.outcome.value,
            commit=result.short_sha,
            detail=result.detail,
        )

    async def _finish(self, result: DeploymentResult) -> DeploymentResult:
        self.record(result)
        try:
            await self._notifier.notify(result)
        except Exception:
            logger.exception("notification_failed", repository=result.identity)
        return result

    async def _synchronize(self, profile: RepositoryProfile, commit_sha: str) -> None:
        try:
            await asyncio.wait_for(
                self._synchronizer.sync(profile, commit_sha), timeout=self._sync_timeout
            )
        except TimeoutError as exc:
            raise SyncError(f"Synchronization timed out after {self._sync_timeout:g}s") from exc

    async def _build(self, profile: RepositoryProfile, synced_at: float) -> None:
        try:
            await asyncio.wait_for(
                self._builder.build(profile, since=synced_at), timeout=self._build_timeout
            )
        except TimeoutError as exc:
            raise BuildError(f"Build timed out after {self._build_timeout:g}s") from exc

    async def _signal_restart(self, profile: RepositoryProfile, commit_sha: str) -> str | None:
        """Emit the restart signal. Failure is reported in the detail, not the outcome."""
        try:
            await self._restart_signal.signal(profile, commit_sha)
        except Exception as exc:
            logger.exception("restart_signal_failed", repository=profile.identity)
            return f"Restart signal could not be written: {exc}"
        return None
