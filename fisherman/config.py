"""Process settings and the deployment configuration file.

Process-level knobs (log level, bind host, where the config file lives) come
from environment variables via ``Settings``.  What to deploy and how comes
from a YAML file with a ``default`` section and an optional ``specific`` map
keyed by ``owner/name``; ``Config.resolve`` merges the two into a
``RepositoryProfile`` for one event.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

DEFAULT_BRANCH = "master"
DEFAULT_PORT = 5000


def is_repository_identity(identity: str) -> bool:
    """True for ``owner/name`` where neither part is empty, ``.`` or ``..``."""
    parts = identity.split("/")
    return len(parts) == 2 and all(
        part not in ("", ".", "..") and not any(c.isspace() for c in part) for part in parts
    )


class Settings(BaseSettings):
    """Process settings with environment variable loading and sensible defaults."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FISHERMAN_",
        case_sensitive=False,
    )

    app_name: str = "fisherman"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    config_path: Path = Path("fisherman.yml")


settings = Settings()


class ConfigError(Exception):
    """The deployment configuration could not be loaded."""


class DiscordConfig(BaseModel):
    """Credentials for posting deployment results to a Discord channel."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    token: str
    channel_id: str
    auth_scheme: str = "Bot"


class GlobalDefaults(BaseModel):
    """The ``default`` section: values every repository inherits."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    ssh_private_key: Path
    repo_root: Path
    cargo_path: Path
    secret: str | None = None
    port: int = DEFAULT_PORT
    restart_dir: Path | None = None
    discord: DiscordConfig | None = None

    @field_validator("ssh_private_key", "repo_root", "cargo_path", mode="before")
    @classmethod
    def _reject_blank_paths(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            raise ValueError("must not be empty")
        return value


class RepositoryOverride(BaseModel):
    """One entry of the ``specific`` section. Unset fields inherit defaults."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    secret: str | None = None
    branch: str | None = Field(default=None, min_length=1)
    code_root: str | None = None
    binaries: list[Annotated[str, Field(min_length=1)]] | None = Field(default=None, min_length=1)


class RepositoryProfile(BaseModel):
    """Fully resolved settings for a single repository identity."""

    model_config = ConfigDict(frozen=True)

    identity: str
    secret: str | None
    branch: str
    code_root: str
    binaries: tuple[str, ...]
    ssh_private_key: Path
    repo_root: Path
    cargo_path: Path

    @field_validator("identity")
    @classmethod
    def _stays_under_repo_root(cls, value: str) -> str:
        if not is_repository_identity(value):
            raise ValueError(f"'{value}' is not a repository identity")
        return value

    @property
    def short_name(self) -> str:
        return self.identity.split("/", 1)[-1]

    @property
    def working_copy(self) -> Path:
        """Local clone location: ``<repo_root>/<owner>/<name>``."""
        return self.repo_root / self.identity

    @property
    def code_dir(self) -> Path:
        """Directory the build tool runs in.

        ``code_root`` is always relative to the working copy, so a leading
        ``/`` (as in ``/backend``) is stripped before joining.
        """
        relative = self.code_root.strip("/")
        return self.working_copy / relative if relative else self.working_copy


class Config(BaseModel):
    """The whole configuration file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    default: GlobalDefaults
    specific: dict[str, RepositoryOverride] = Field(default_factory=dict)

    @classmethod
    def from_yaml(cls, text: str) -> Config:
        """Parse and validate YAML text.

        Raises:
            ConfigError: If the text is not valid YAML or misses required fields.
        """
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping with a 'default' section")
        if data.get("specific") is None:
            data.pop("specific", None)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def get_override(self, identity: str) -> RepositoryOverride | None:
        return self.specific.get(identity)

    def resolve_secret(self, identity: str) -> str | None:
        override = self.get_override(identity)
        if override is not None and override.secret is not None:
            return override.secret
        return self.default.secret

    def resolve(self, identity: str) -> RepositoryProfile:
        """Merge the defaults with any override for ``identity``, field by field."""
        override = self.get_override(identity) or RepositoryOverride()
        short_name = identity.split("/", 1)[-1]

        return RepositoryProfile(
            identity=identity,
            secret=self.resolve_secret(identity),
            branch=override.branch if override.branch is not None else DEFAULT_BRANCH,
            code_root=override.code_root if override.code_root is not None else "",
            binaries=tuple(override.binaries) if override.binaries is not None else (short_name,),
            ssh_private_key=self.default.ssh_private_key,
            repo_root=self.default.repo_root,
            cargo_path=self.default.cargo_path,
        )

    @property
    def restart_dir(self) -> Path:
        if self.default.restart_dir is not None:
            return self.default.restart_dir
        return self.default.repo_root / ".fisherman" / "restart"

    def check_for_potential_mistakes(self) -> list[str]:
        """Log a warning for each suspicious setting and return the messages.

        None of these stop the service; they flag configurations that will
        reject or fail every event for some repository.
        """
        warnings: list[str] = []

        if not self.default.ssh_private_key.exists():
            warnings.append(f"ssh_private_key {self.default.ssh_private_key} does not exist")
        if not self.default.cargo_path.exists():
            warnings.append(f"cargo_path {self.default.cargo_path} does not exist")

        for identity, override in self.specific.items():
            if not is_repository_identity(identity):
                warnings.append(f"'{identity}' is not of the form owner/name")
            if override.secret is None and self.default.secret is None:
                warnings.append(
                    f"'{identity}' has no secret, every webhook for it will be rejected"
                )

        if self.default.secret is None:
            warnings.append("no default secret, repositories without their own secret are rejected")

        for message in warnings:
            logger.warning("config_potential_mistake", detail=message)
        return warnings


def load_config(path: Path) -> Config:
    """Read the configuration file from disk.

    Raises:
        ConfigError: If the file cannot be read or is invalid.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    return Config.from_yaml(text)
