"""TOML-based driver configuration.

Loads ~/.vradriver/defaults.toml (global) and vradriver.toml (project),
merges them, and resolves the ``driver_options`` table into a
``DriverOptions`` instance.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeAlias, TypeVar

from vradriver.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WAIT_TIME,
    DEFAULT_POLL_INTERVAL,
)
from vradriver.core.exceptions import ConfigurationError

RawConfig: TypeAlias = dict[str, Any]

T = TypeVar("T")

GLOBAL_CONFIG_PATH = Path.home() / ".vradriver" / "defaults.toml"
PROJECT_CONFIG_NAME = "vradriver.toml"

DEFAULT_KEY_PATHS = (
    str(Path.home() / ".ssh"),
    str(Path.home() / ".vradriver" / "keys"),
)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("driver_options", {})
    merged.setdefault("machine_options", {})
    return merged


def _coerce(raw: RawConfig, key: str, default: T, cast: Callable[[Any], T]) -> T:
    value = raw.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for '{key}': {value!r}") from e


@dataclass(frozen=True, slots=True)
class DriverOptions:
    """Driver-wide options.

    Args:
        username: Platform username. Falls back to VRA_USERNAME env var.
        password: Platform password. Falls back to VRA_PASSWORD env var.
        tenant: Platform tenant. Falls back to VRA_TENANT env var.
        verify_ssl: Verify the platform's TLS certificate.
        max_wait_time: Wall-clock budget for every poll loop, in seconds.
        max_retries: Extra attempts tolerated when a poll check raises.
        poll_interval: Sleep between poll attempts, in seconds.
        private_key_paths: Directories searched for named SSH keys.
    """

    username: str | None = None
    password: str | None = None
    tenant: str | None = None
    verify_ssl: bool = True
    max_wait_time: int = DEFAULT_MAX_WAIT_TIME
    max_retries: int = DEFAULT_MAX_RETRIES
    poll_interval: float = DEFAULT_POLL_INTERVAL
    private_key_paths: tuple[str, ...] = field(default=DEFAULT_KEY_PATHS)

    @property
    def username_resolved(self) -> str | None:
        return self.username or os.environ.get("VRA_USERNAME")

    @property
    def password_resolved(self) -> str | None:
        return self.password or os.environ.get("VRA_PASSWORD")

    @property
    def tenant_resolved(self) -> str | None:
        return self.tenant or os.environ.get("VRA_TENANT")

    @classmethod
    def from_config(cls, config: RawConfig) -> DriverOptions:
        """Build options from the ``driver_options`` table of a config mapping."""
        raw = config.get("driver_options") or {}
        if not isinstance(raw, dict):
            raise ConfigurationError("'driver_options' must be a table")

        key_paths = raw.get("private_key_paths", DEFAULT_KEY_PATHS)
        if isinstance(key_paths, str):
            key_paths = (key_paths,)

        return cls(
            username=raw.get("username"),
            password=raw.get("password"),
            tenant=raw.get("tenant"),
            verify_ssl=bool(raw.get("verify_ssl", True)),
            max_wait_time=_coerce(raw, "max_wait_time", DEFAULT_MAX_WAIT_TIME, int),
            max_retries=_coerce(raw, "max_retries", DEFAULT_MAX_RETRIES, int),
            poll_interval=_coerce(raw, "poll_interval", DEFAULT_POLL_INTERVAL, float),
            private_key_paths=tuple(str(p) for p in key_paths),
        )


def resolve_machine_options(config: RawConfig, overrides: RawConfig | None = None) -> RawConfig:
    """Layer per-machine options over the ``machine_options`` table."""
    defaults = config.get("machine_options") or {}
    if not isinstance(defaults, dict):
        raise ConfigurationError("'machine_options' must be a table")
    return _deep_merge(defaults, overrides or {})
