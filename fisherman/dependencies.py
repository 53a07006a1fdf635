"""Centralized FastAPI dependencies for use with Depends()."""

from fisherman.config import Config
from fisherman.services.builder import CargoBuilder
from fisherman.services.coordinator import DeploymentCoordinator
from fisherman.services.notifier import DiscordNotifier, Notifier, NullNotifier
from fisherman.services.repo_sync import GitSynchronizer
from fisherman.services.restart import MarkerFileRestartSignal

_config: Config | None = None
_coordinator: DeploymentCoordinator | None = None


def build_coordinator(config: Config) -> DeploymentCoordinator:
    """Wire the production pipeline for ``config``."""
    notifier: Notifier = (
        DiscordNotifier(config.default.discord) if config.default.discord else NullNotifier()
    )
    return DeploymentCoordinator(
        synchronizer=GitSynchronizer(),
        builder=CargoBuilder(),
        restart_signal=MarkerFileRestartSignal(config.restart_dir),
        notifier=notifier,
    )


def init_deps(config: Config) -> None:
    """Install the loaded configuration and its coordinator process-wide.

    Called once from the application lifespan after the configuration file
    has been read.
    """
    global _config, _coordinator  # noqa: PLW0603

    _config = config
    _coordinator = build_coordinator(config)


def get_config() -> Config:
    """Return the loaded configuration.

    Raises:
        RuntimeError: If called before ``init_deps()``.
    """
    if _config is None:
        raise RuntimeError("Configuration has not been loaded")
    return _config


def get_coordinator() -> DeploymentCoordinator:
    """Return the process-wide deployment coordinator.

    Raises:
        RuntimeError: If called before ``init_deps()``.
    """
    if _coordinator is None:
        raise RuntimeError("Deployment coordinator has not been initialised")
    return _coordinator


__all__ = [
    "build_coordinator",
    "get_config",
    "get_coordinator",
    "init_deps",
]
