"""Protocol definitions for the cloud automation platform client.

The driver never talks HTTP itself: it consumes any object satisfying
``Gateway``. Implementations raise
:class:`vradriver.core.exceptions.GatewayNotFoundError` when a resource does
not exist or when a resource action is not available.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from vradriver.config import DriverOptions

__all__ = [
    "CatalogRequest",
    "Gateway",
    "GatewayFactory",
    "Request",
    "Resource",
]


@runtime_checkable
class Request(Protocol):
    """A platform-tracked pending operation.

    State is only updated by ``refresh()``; the predicates read the last
    refreshed state.
    """

    @property
    def id(self) -> str: ...

    @property
    def completion_details(self) -> str | None: ...

    @property
    def resources(self) -> Sequence[Resource]:
        """Resources produced by the request (catalog requests only)."""
        ...

    def refresh(self) -> None: ...
    def completed(self) -> bool: ...
    def failed(self) -> bool: ...


@runtime_checkable
class Resource(Protocol):
    """A remote virtual machine and its power state."""

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def ip_addresses(self) -> Sequence[str]: ...

    @property
    def machine_status(self) -> str: ...

    def vm(self) -> bool: ...
    def machine_on(self) -> bool: ...
    def machine_off(self) -> bool: ...
    def machine_turning_on(self) -> bool: ...
    def machine_turning_off(self) -> bool: ...
    def machine_in_provisioned_state(self) -> bool: ...

    def refresh(self) -> None: ...
    def poweron(self) -> Request: ...
    def shutdown(self) -> Request: ...
    def poweroff(self) -> Request: ...
    def destroy(self) -> Request: ...


class CatalogRequest(Protocol):
    """Mutable builder for a catalog request, submitted once."""

    notes: str | None
    cpus: int | None
    memory: int | None
    requested_for: str | None
    lease_days: int | None
    subtenant_id: str | None

    def set_parameter(self, key: str, type: str, value: Any) -> None: ...
    def submit(self) -> Request: ...


@runtime_checkable
class Gateway(Protocol):
    """Client for the platform's resource and catalog APIs."""

    def resource_by_id(self, resource_id: str) -> Resource: ...
    def catalog_request(self, catalog_id: str) -> CatalogRequest: ...


GatewayFactory: TypeAlias = Callable[[str, "DriverOptions"], Gateway]
