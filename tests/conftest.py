"""Shared test fixtures: configuration, pipeline fakes and the FastAPI test client."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from fakes import FakeBuilder, FakeSynchronizer

from fisherman.config import Config
from fisherman.dependencies import get_config, get_coordinator
from fisherman.main import app
from fisherman.services.coordinator import DeploymentCoordinator
from fisherman.services.notifier import InMemoryNotifier
from fisherman.services.restart import InMemoryRestartSignal

CONFIG_YAML = """
default:
  ssh_private_key: /keys/id_ed25519
  repo_root: /srv/repos
  cargo_path: /usr/local/bin/cargo
  secret: default-secret

specific:
  org/app:
    secret: app-secret
  org/api:
    secret: api-secret
    branch: main
    code_root: /backend
    binaries: [api-server, worker]
"""


@pytest.fixture
def config() -> Config:
    return Config.from_yaml(CONFIG_YAML)


@pytest.fixture
def fake_synchronizer() -> FakeSynchronizer:
    return FakeSynchronizer()


@pytest.fixture
def fake_builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def restart_signal() -> InMemoryRestartSignal:
    """Create a fresh in-memory restart signal for test inspection."""
    return InMemoryRestartSignal()


@pytest.fixture
def notifier() -> InMemoryNotifier:
    """Create a fresh in-memory notifier for test inspection."""
    return InMemoryNotifier()


@pytest.fixture
def coordinator(
    fake_synchronizer: FakeSynchronizer,
    fake_builder: FakeBuilder,
    restart_signal: InMemoryRestartSignal,
    notifier: InMemoryNotifier,
) -> DeploymentCoordinator:
    return DeploymentCoordinator(
        synchronizer=fake_synchronizer,
        builder=fake_builder,
        restart_signal=restart_signal,
        notifier=notifier,
    )


@pytest.fixture
async def client(
    config: Config,
    coordinator: DeploymentCoordinator,
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx AsyncClient with dependencies overridden.

    The lifespan is not run, so no configuration file is read; the parsed
    test configuration and a coordinator wired to in-memory fakes are
    injected instead.
    """
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
