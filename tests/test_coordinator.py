"""Tests for the deployment state machine and its locking guarantees."""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeBuilder, FakeSynchronizer

from fisherman.config import Config
from fisherman.schemas.deployments import DeploymentOutcome, PushEvent
from fisherman.services.coordinator import (
    BUILD_TIMEOUT_SECONDS,
    DeploymentCoordinator,
)
from fisherman.services.errors import BuildError, SyncError
from fisherman.services.notifier import InMemoryNotifier
from fisherman.services.restart import InMemoryRestartSignal


def _event(identity: str = "org/app", sha: str = "abc123") -> PushEvent:
    return PushEvent(
        identity=identity,
        ref="refs/heads/master",
        commit_sha=sha,
        commit_message="fix bug",
    )


async def test_successful_deployment(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_synchronizer: FakeSynchronizer,
    fake_builder: FakeBuilder,
    restart_signal: InMemoryRestartSignal,
    notifier: InMemoryNotifier,
) -> None:
    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.SUCCESS
    assert fake_synchronizer.calls == [("org/app", "abc123")]
    assert fake_builder.calls[0][:2] == ("org/app", ("app",))
    assert restart_signal.signals == [{"repository": "org/app", "commit": "abc123"}]
    assert notifier.results == [result]
    assert "abc123" in notifier.messages[0]
    assert "fix bug" in notifier.messages[0]
    assert coordinator.in_flight() == []


async def test_build_receives_sync_timestamp(config: Config, fake_builder: FakeBuilder) -> None:
    coordinator = DeploymentCoordinator(
        synchronizer=FakeSynchronizer(),
        builder=fake_builder,
        restart_signal=InMemoryRestartSignal(),
        notifier=InMemoryNotifier(),
        clock=lambda: 1234.5,
    )

    await coordinator.deploy(_event(), config.resolve("org/app"))

    assert fake_builder.calls[0][2] == 1234.5


async def test_build_failure_releases_lock_and_skips_restart(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_builder: FakeBuilder,
    restart_signal: InMemoryRestartSignal,
    notifier: InMemoryNotifier,
) -> None:
    fake_builder.error = BuildError(
        "Build exited with status 101", "error[E0308]: mismatched types"
    )

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.BUILD_FAILED
    assert result.detail is not None and "E0308" in result.detail
    assert restart_signal.signals == []
    assert not coordinator.locks.is_held("org/app")
    assert notifier.results[0].outcome is DeploymentOutcome.BUILD_FAILED


async def test_sync_failure_skips_build(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_synchronizer: FakeSynchronizer,
    fake_builder: FakeBuilder,
    restart_signal: InMemoryRestartSignal,
) -> None:
    fake_synchronizer.error = SyncError("Local master has diverged")

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.SYNC_FAILED
    assert result.detail == "Local master has diverged"
    assert fake_builder.calls == []
    assert restart_signal.signals == []
    assert coordinator.in_flight() == []


async def test_unexpected_error_maps_to_running_stage(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_synchronizer: FakeSynchronizer,
    fake_builder: FakeBuilder,
) -> None:
    fake_synchronizer.error = PermissionError("denied")
    result = await coordinator.deploy(_event(), config.resolve("org/app"))
    assert result.outcome is DeploymentOutcome.SYNC_FAILED

    fake_synchronizer.error = None
    fake_builder.error = RuntimeError("boom")
    result = await coordinator.deploy(_event(), config.resolve("org/app"))
    assert result.outcome is DeploymentOutcome.BUILD_FAILED
    assert "boom" in (result.detail or "")
    assert coordinator.in_flight() == []


async def test_concurrent_events_for_same_repository(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_synchronizer: FakeSynchronizer,
    fake_builder: FakeBuilder,
    restart_signal: InMemoryRestartSignal,
) -> None:
    """The second event is rejected immediately and touches nothing."""
    fake_synchronizer.gate = asyncio.Event()
    profile = config.resolve("org/app")

    first = asyncio.create_task(coordinator.deploy(_event(sha="aaa111"), profile))
    await fake_synchronizer.started.wait()

    second = await coordinator.deploy(_event(sha="bbb222"), profile)

    assert second.outcome is DeploymentOutcome.SKIPPED_CONCURRENT
    assert fake_synchronizer.calls == [("org/app", "aaa111")]

    fake_synchronizer.gate.set()
    first_result = await first

    assert first_result.outcome is DeploymentOutcome.SUCCESS
    assert len(fake_builder.calls) == 1
    assert len(restart_signal.signals) == 1


async def test_different_repositories_run_in_parallel(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_synchronizer: FakeSynchronizer,
) -> None:
    fake_synchronizer.gate = asyncio.Event()

    app = asyncio.create_task(coordinator.deploy(_event("org/app"), config.resolve("org/app")))
    api = asyncio.create_task(coordinator.deploy(_event("org/api"), config.resolve("org/api")))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert coordinator.in_flight() == ["org/api", "org/app"]

    fake_synchronizer.gate.set()
    results = await asyncio.gather(app, api)

    assert [r.outcome for r in results] == [DeploymentOutcome.SUCCESS] * 2


async def test_lock_is_released_after_failure_for_next_event(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_builder: FakeBuilder,
) -> None:
    fake_builder.error = BuildError("nope")
    profile = config.resolve("org/app")

    await coordinator.deploy(_event(), profile)
    fake_builder.error = None
    result = await coordinator.deploy(_event(sha="def456"), profile)

    assert result.outcome is DeploymentOutcome.SUCCESS


async def test_build_timeout_releases_lock(
    config: Config,
    fake_builder: FakeBuilder,
    restart_signal: InMemoryRestartSignal,
) -> None:
    fake_builder.hang = True
    coordinator = DeploymentCoordinator(
        synchronizer=FakeSynchronizer(),
        builder=fake_builder,
        restart_signal=restart_signal,
        notifier=InMemoryNotifier(),
        build_timeout=0.05,
    )

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.BUILD_FAILED
    assert result.detail is not None and "timed out" in result.detail
    assert restart_signal.signals == []
    assert coordinator.in_flight() == []


async def test_sync_timeout_releases_lock(config: Config) -> None:
    synchronizer = FakeSynchronizer()
    synchronizer.gate = asyncio.Event()
    coordinator = DeploymentCoordinator(
        synchronizer=synchronizer,
        builder=FakeBuilder(),
        restart_signal=InMemoryRestartSignal(),
        notifier=InMemoryNotifier(),
        sync_timeout=0.05,
    )

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.SYNC_FAILED
    assert "timed out" in (result.detail or "")
    assert coordinator.in_flight() == []


def test_timeouts_cannot_exceed_hard_ceiling() -> None:
    coordinator = DeploymentCoordinator(
        synchronizer=FakeSynchronizer(),
        builder=FakeBuilder(),
        restart_signal=InMemoryRestartSignal(),
        notifier=InMemoryNotifier(),
        build_timeout=10 * BUILD_TIMEOUT_SECONDS,
    )

    assert coordinator._build_timeout == BUILD_TIMEOUT_SECONDS


async def test_restart_signal_failure_still_succeeds(
    config: Config,
    fake_builder: FakeBuilder,
) -> None:
    class BrokenSignal:
        async def signal(self, profile, commit_sha) -> None:
            raise OSError("read-only file system")

    coordinator = DeploymentCoordinator(
        synchronizer=FakeSynchronizer(),
        builder=fake_builder,
        restart_signal=BrokenSignal(),
        notifier=InMemoryNotifier(),
    )

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.SUCCESS
    assert "read-only" in (result.detail or "")


async def test_unexpected_restart_signal_error_still_succeeds(
    config: Config,
    fake_builder: FakeBuilder,
) -> None:
    class CrashingSignal:
        async def signal(self, profile, commit_sha) -> None:
            raise RuntimeError("supervisor socket gone")

    coordinator = DeploymentCoordinator(
        synchronizer=FakeSynchronizer(),
        builder=fake_builder,
        restart_signal=CrashingSignal(),
        notifier=InMemoryNotifier(),
    )

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.SUCCESS
    assert "supervisor socket gone" in (result.detail or "")
    assert coordinator.in_flight() == []


async def test_notifier_crash_does_not_change_outcome(config: Config) -> None:
    class CrashingNotifier:
        async def notify(self, result) -> None:
            raise ValueError("bug in notifier")

    coordinator = DeploymentCoordinator(
        synchronizer=FakeSynchronizer(),
        builder=FakeBuilder(),
        restart_signal=InMemoryRestartSignal(),
        notifier=CrashingNotifier(),
    )

    result = await coordinator.deploy(_event(), config.resolve("org/app"))

    assert result.outcome is DeploymentOutcome.SUCCESS


async def test_results_are_recorded_in_history(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_builder: FakeBuilder,
) -> None:
    await coordinator.deploy(_event(sha="first1"), config.resolve("org/app"))
    fake_builder.error = BuildError("nope")
    await coordinator.deploy(_event(sha="second"), config.resolve("org/app"))

    records = coordinator.history.recent()

    assert [r.result.commit_sha for r in records] == ["second", "first1"]
    assert records[0].result.outcome is DeploymentOutcome.BUILD_FAILED


async def test_run_locked_requires_held_lock(
    config: Config,
    coordinator: DeploymentCoordinator,
    fake_synchronizer: FakeSynchronizer,
) -> None:
    with pytest.raises(RuntimeError):
        await coordinator.run_locked(_event(), config.resolve("org/app"))

    assert fake_synchronizer.calls == []


def test_only_skipped_branch_and_success_are_not_failures() -> None:
    quiet = {o for o in DeploymentOutcome if not o.is_failure}

    assert quiet == {DeploymentOutcome.SUCCESS, DeploymentOutcome.SKIPPED_WRONG_BRANCH}
