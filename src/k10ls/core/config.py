"""Configuration types, file loading and runtime settings.

The forwarding layout (contexts and their targets) comes from a YAML or TOML
file. Runtime tuning comes from environment variables with the K10LS_ prefix.
Example: K10LS_RETRY_DELAY=5 waits five seconds between reconnect attempts.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Annotated, Any, ClassVar

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from k10ls.core.exceptions import ConfigError

DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_NAMESPACE = "default"
DEFAULT_CONFIG_PATH = "config.toml"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load a raw configuration document from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Empty strings in the config file mean "not set".
OptionalStr = Annotated[str | None, BeforeValidator(_blank_to_none)]


class PortMapping(BaseModel):
    """A local port forwarded to a remote port on the resolved pod."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: int = Field(gt=0, le=65535, description="Local port to listen on.")
    target: int = Field(gt=0, le=65535, description="Remote port on the pod.")

    def __str__(self) -> str:
        return f"{self.source}:{self.target}"


class _TargetBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[str] = ""

    namespace: OptionalStr = Field(default=None, description="Namespace override.")
    address: OptionalStr = Field(default=None, description="Bind address override.")
    ports: tuple[PortMapping, ...] = Field(min_length=1)

    @property
    def query(self) -> str:
        raise NotImplementedError

    @property
    def identity(self) -> str:
        """Display identity such as ``svc/postgres``."""
        return f"{self.kind}/{self.query}"


class WorkloadTarget(_TargetBase):
    """A single pod referenced by exact name."""

    kind: ClassVar[str] = "pod"

    name: str = Field(min_length=1)

    @property
    def query(self) -> str:
        return self.name


class ServiceTarget(_TargetBase):
    """A service, resolved to one of the pods its selector matches."""

    kind: ClassVar[str] = "svc"

    name: str = Field(min_length=1)

    @property
    def query(self) -> str:
        return self.name


class SelectorTarget(_TargetBase):
    """Pods selected directly by a label selector such as ``app=redis``."""

    kind: ClassVar[str] = "label"

    label: str = Field(min_length=1)

    @property
    def query(self) -> str:
        return self.label


Target = WorkloadTarget | ServiceTarget | SelectorTarget


class ClusterContext(BaseModel):
    """A named kubeconfig context and the targets forwarded through it."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1)
    address: OptionalStr = None
    namespace: OptionalStr = None
    kubeconfig: OptionalStr = Field(default=None, description="Context-specific kubeconfig path.")
    pods: tuple[WorkloadTarget, ...] = ()
    svc: tuple[ServiceTarget, ...] = ()
    label_selectors: tuple[SelectorTarget, ...] = Field(default=(), alias="label-selectors")

    @property
    def targets(self) -> list[Target]:
        """All declared targets in declaration order, pods first."""
        return [*self.pods, *self.svc, *self.label_selectors]


class ForwardConfig(BaseModel):
    """Root of the configuration document."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    global_kubeconfig: OptionalStr = None
    default_address: OptionalStr = None
    contexts: tuple[ClusterContext, ...] = Field(alias="context", min_length=1)

    @property
    def target_count(self) -> int:
        return sum(len(ctx.targets) for ctx in self.contexts)


def effective_address(target: Target, context: ClusterContext, default_address: str | None = None) -> str:
    """Bind address: target, then context, then global default, then 0.0.0.0."""
    return target.address or context.address or default_address or DEFAULT_ADDRESS


def effective_namespace(target: Target, context: ClusterContext) -> str:
    """Namespace: target, then context, then ``default``."""
    return target.namespace or context.namespace or DEFAULT_NAMESPACE


def effective_kubeconfig(context: ClusterContext, global_kubeconfig: str | None = None) -> str | None:
    """Kubeconfig path for a context, or None to use the client's default discovery."""
    path = context.kubeconfig or global_kubeconfig
    if path is None:
        return None
    return os.path.expanduser(path)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


def parse_config(raw: dict[str, Any]) -> ForwardConfig:
    """Validate a raw configuration document.

    Raises:
        ConfigError: If the document does not match the schema
    """
    try:
        return ForwardConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {_format_validation_error(e)}") from e


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> ForwardConfig:
    """Load and validate the forwarding configuration.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    try:
        raw = load_config_from_file(path)
    except (FileNotFoundError, ValueError) as e:
        raise ConfigError(str(e)) from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}", path=str(path)) from e

    if not isinstance(raw, dict):
        raise ConfigError("Config document must be a mapping", path=str(path))

    try:
        return parse_config(raw)
    except ConfigError as e:
        raise ConfigError(e.message, path=str(path)) from e.__cause__


class ForwardSettings(BaseSettings):
    """Runtime tuning for sessions and the process.

    All settings can be overridden via environment variables:
    - K10LS_RETRY_DELAY: Fixed delay between reconnect attempts (seconds)
    - K10LS_HEALTH_INTERVAL: Pod liveness poll interval while forwarding (seconds)
    - K10LS_SHUTDOWN_GRACE: Time allowed for tunnels to close on shutdown (seconds)
    - K10LS_LOG_LEVEL: debug, info, warning or error
    - K10LS_METRICS_PORT: Serve Prometheus metrics on this port
    """

    model_config = SettingsConfigDict(
        env_prefix="K10LS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    retry_delay: float = Field(
        default=2.0,
        gt=0.0,
        description="Fixed delay between reconnect attempts (seconds). No backoff is applied.",
    )
    health_interval: float = Field(
        default=5.0,
        gt=0.0,
        description="How often an active tunnel checks that its pod is still running (seconds).",
    )
    shutdown_grace: float = Field(
        default=5.0,
        ge=0.0,
        description="Time allowed for sessions to close their tunnels on shutdown (seconds).",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )
    metrics_port: int | None = Field(
        default=None,
        gt=0,
        le=65535,
        description="Port for the Prometheus metrics exporter. Unset disables it.",
    )


_settings: ForwardSettings | None = None


def get_settings() -> ForwardSettings:
    """Get the cached runtime settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = ForwardSettings()
    return _settings


def clear_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
