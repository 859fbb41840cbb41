"""Machine handles and the OS-keyed binding table.

A machine is bound to a transport and a convergence strategy according to
the ``is_windows`` flag frozen into its location at allocation time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

from vradriver.constants import (
    DEFAULT_UNIX_USERNAME,
    DEFAULT_WINDOWS_USERNAME,
    ConvergenceKind,
)
from vradriver.transport import Transport
from vradriver.types import MachineSpec


class Platform(StrEnum):
    UNIX = "unix"
    WINDOWS = "windows"


@dataclass(frozen=True, slots=True)
class Binding:
    """Row of the binding table."""

    platform: Platform
    default_username: str
    convergence: ConvergenceKind


BINDINGS: Final[dict[bool, Binding]] = {
    True: Binding(Platform.WINDOWS, DEFAULT_WINDOWS_USERNAME, ConvergenceKind.INSTALL_MSI),
    False: Binding(Platform.UNIX, DEFAULT_UNIX_USERNAME, ConvergenceKind.INSTALL_CACHED),
}


def is_windows(machine_spec: MachineSpec) -> bool:
    return machine_spec.location is not None and machine_spec.location.is_windows


def binding_for(machine_spec: MachineSpec) -> Binding:
    return BINDINGS[is_windows(machine_spec)]


@dataclass(frozen=True, slots=True)
class ConvergenceStrategy:
    """How configuration management gets onto a reachable machine."""

    kind: ConvergenceKind
    options: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Machine:
    """A reachable machine, ready for convergence."""

    spec: MachineSpec
    platform: Platform
    transport: Transport
    convergence_strategy: ConvergenceStrategy

    @property
    def name(self) -> str:
        return self.spec.name

    def run_command(self, command: str, timeout: int = 30) -> str:
        return self.transport.run_command(command, timeout)
