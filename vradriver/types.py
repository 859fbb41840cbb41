"""Data model shared by the driver, transports, and callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from vradriver.core.exceptions import ConfigurationError

__all__ = [
    "BootstrapOptions",
    "ExtraParameter",
    "Location",
    "MachineOptions",
    "MachineSpec",
    "TransportOptions",
]


@dataclass(frozen=True, slots=True)
class Location:
    """Where a machine lives on the platform.

    Written once, when the machine is allocated, and read by every later
    lifecycle call. ``is_windows`` is frozen here so transport decisions
    never re-derive it.
    """

    driver_url: str
    driver_version: str
    resource_id: str
    resource_name: str
    allocated_at: str
    is_windows: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "driver_url": self.driver_url,
            "driver_version": self.driver_version,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "allocated_at": self.allocated_at,
            "is_windows": self.is_windows,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Location:
        return cls(
            driver_url=str(data["driver_url"]),
            driver_version=str(data["driver_version"]),
            resource_id=str(data["resource_id"]),
            resource_name=str(data["resource_name"]),
            allocated_at=str(data["allocated_at"]),
            is_windows=bool(data.get("is_windows", False)),
        )


@dataclass(slots=True)
class MachineSpec:
    """A logical machine across its lifecycle.

    Attributes:
        name: Stable identifier.
        location: Set by the driver on successful allocation.
        reference: Free-form per-machine overrides (username, sudo, ssh_gateway).
    """

    name: str
    location: Location | None = None
    reference: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExtraParameter:
    """Catalog request parameter passed through verbatim."""

    type: str
    value: Any


@dataclass(frozen=True, slots=True)
class BootstrapOptions:
    """What to request from the catalog."""

    catalog_id: str | None = None
    cpus: int | None = None
    memory: int | None = None
    requested_for: str | None = None
    lease_days: int | None = None
    subtenant_id: str | None = None
    extra_parameters: dict[str, ExtraParameter] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BootstrapOptions:
        raw_extra = data.get("extra_parameters") or {}
        if not isinstance(raw_extra, dict):
            raise ConfigurationError("'extra_parameters' must be a mapping")

        extra: dict[str, ExtraParameter] = {}
        for key, value_data in raw_extra.items():
            if isinstance(value_data, ExtraParameter):
                extra[key] = value_data
            else:
                extra[key] = ExtraParameter(type=value_data["type"], value=value_data["value"])

        return cls(
            catalog_id=data.get("catalog_id"),
            cpus=data.get("cpus"),
            memory=data.get("memory"),
            requested_for=data.get("requested_for"),
            lease_days=data.get("lease_days"),
            subtenant_id=data.get("subtenant_id"),
            extra_parameters=extra,
        )


@dataclass(frozen=True, slots=True)
class TransportOptions:
    """How to reach the machine once it is powered on."""

    is_windows: bool = False
    username: str | None = None
    password: str | None = None
    winrm_transport: str | None = None
    winrm_port: int | None = None
    use_hostname: bool = False
    key_path: str | None = None
    key_name: str | None = None
    ssh_gateway: str | None = None
    sudo: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransportOptions:
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigurationError(f"Unknown transport options: {', '.join(sorted(unknown))}")
        return cls(**known)


@dataclass(frozen=True, slots=True)
class MachineOptions:
    """Per-machine options handed to every lifecycle operation.

    ``ssh_options`` are raw transport overrides merged last, over every
    computed default.
    """

    bootstrap_options: BootstrapOptions = field(default_factory=BootstrapOptions)
    transport_options: TransportOptions = field(default_factory=TransportOptions)
    ssh_options: dict[str, Any] = field(default_factory=dict)
    convergence_options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MachineOptions:
        return cls(
            bootstrap_options=BootstrapOptions.from_dict(data.get("bootstrap_options") or {}),
            transport_options=TransportOptions.from_dict(data.get("transport_options") or {}),
            ssh_options=dict(data.get("ssh_options") or {}),
            convergence_options=dict(data.get("convergence_options") or {}),
        )
