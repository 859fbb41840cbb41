from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pytest

from vradriver.action import ActionHandler
from vradriver.core.exceptions import GatewayNotFoundError
from vradriver.driver import Driver

# =============================================================================
# In-memory gateway
# =============================================================================


class FakeRequest:
    """Request that completes after ``completes_after`` refreshes."""

    def __init__(
        self,
        id: str = "req-1",
        *,
        completes_after: int = 1,
        failed: bool = False,
        details: str | None = None,
        resources: tuple[FakeResource, ...] = (),
    ) -> None:
        self.id = id
        self.completion_details = details
        self.resources = list(resources)
        self.refresh_count = 0
        self._completes_after = completes_after
        self._failed = failed

    def refresh(self) -> None:
        self.refresh_count += 1

    def completed(self) -> bool:
        return self.refresh_count >= self._completes_after

    def failed(self) -> bool:
        return self._failed


class FakeResource:
    """VM whose power state follows the actions submitted to it."""

    def __init__(
        self,
        id: str = "res-1",
        name: str = "vm-01",
        *,
        ip_addresses: tuple[str, ...] = ("10.0.0.5",),
        status: str = "Off",
        vm: bool = True,
        shutdown_supported: bool = True,
        request_failed: bool = False,
    ) -> None:
        self.id = id
        self.name = name
        self.ip_addresses = list(ip_addresses)
        self.machine_status = status
        self.submitted: list[str] = []
        self.refresh_count = 0
        self.requests: list[FakeRequest] = []
        self._vm = vm
        self._shutdown_supported = shutdown_supported
        self._request_failed = request_failed

    def vm(self) -> bool:
        return self._vm

    def machine_on(self) -> bool:
        return self.machine_status == "On"

    def machine_off(self) -> bool:
        return self.machine_status == "Off"

    def machine_turning_on(self) -> bool:
        return self.machine_status == "TurningOn"

    def machine_turning_off(self) -> bool:
        return self.machine_status == "TurningOff"

    def machine_in_provisioned_state(self) -> bool:
        return self.machine_status == "MachineProvisioned"

    def refresh(self) -> None:
        self.refresh_count += 1

    def _submit(self, action: str, status: str | None) -> FakeRequest:
        self.submitted.append(action)
        if status is not None and not self._request_failed:
            self.machine_status = status
        request = FakeRequest(
            f"{action}-{len(self.submitted)}",
            failed=self._request_failed,
            details=f"{action} rejected" if self._request_failed else None,
        )
        self.requests.append(request)
        return request

    def poweron(self) -> FakeRequest:
        return self._submit("poweron", "On")

    def shutdown(self) -> FakeRequest:
        if not self._shutdown_supported:
            raise GatewayNotFoundError("no shutdown action")
        return self._submit("shutdown", "Off")

    def poweroff(self) -> FakeRequest:
        return self._submit("poweroff", "Off")

    def destroy(self) -> FakeRequest:
        return self._submit("destroy", None)


class FakeCatalogRequest:
    def __init__(self, gateway: FakeGateway, catalog_id: str) -> None:
        self.gateway = gateway
        self.catalog_id = catalog_id
        self.notes: str | None = None
        self.cpus: int | None = None
        self.memory: int | None = None
        self.requested_for: str | None = None
        self.lease_days: int | None = None
        self.subtenant_id: str | None = None
        self.parameters: dict[str, tuple[str, Any]] = {}

    def set_parameter(self, key: str, type: str, value: Any) -> None:
        self.parameters[key] = (type, value)

    def submit(self) -> FakeRequest:
        self.gateway.submitted.append(self)
        return self.gateway.catalog_result


class FakeGateway:
    def __init__(self) -> None:
        self.resources: dict[str, FakeResource] = {}
        self.lookups: list[str] = []
        self.catalog_requests: list[FakeCatalogRequest] = []
        self.submitted: list[FakeCatalogRequest] = []
        self.catalog_result = FakeRequest("cat-1", resources=(FakeResource("res-new", "vm-new"),))

    def add(self, resource: FakeResource) -> FakeResource:
        self.resources[resource.id] = resource
        return resource

    def resource_by_id(self, resource_id: str) -> FakeResource:
        self.lookups.append(resource_id)
        try:
            return self.resources[resource_id]
        except KeyError:
            raise GatewayNotFoundError(f"resource {resource_id} not found") from None

    def catalog_request(self, catalog_id: str) -> FakeCatalogRequest:
        request = FakeCatalogRequest(self, catalog_id)
        self.catalog_requests.append(request)
        return request

    @property
    def call_count(self) -> int:
        return len(self.lookups) + len(self.catalog_requests)


# =============================================================================
# Action handler
# =============================================================================


class RecordingActionHandler(ActionHandler):
    def __init__(self) -> None:
        self.messages: list[str] = []
        self.actions: list[str] = []

    def report_progress(self, message: str) -> None:
        self.messages.append(message)

    @contextmanager
    def perform_action(self, description: str) -> Iterator[None]:
        self.actions.append(description)
        yield


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def handler() -> RecordingActionHandler:
    return RecordingActionHandler()


@pytest.fixture
def driver(gateway: FakeGateway, sleeps: list[float]) -> Driver:
    return Driver(
        "vra:https://vra-test.corp.local",
        {"driver_options": {"max_wait_time": 600, "max_retries": 1}},
        gateway_factory=lambda base_url, options: gateway,
        key_resolver=lambda name: f"key-for-{name}",
        sleep=sleeps.append,
    )
