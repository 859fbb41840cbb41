"""Machine lifecycle driver for the cloud automation platform.

The driver composes a gateway and the poll engine into the lifecycle
operations (allocate, ready, stop, destroy, connect). Every asynchronous
request it submits is polled to completion under the configured wait budget
before its outcome is inspected.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, TypeAlias, runtime_checkable

from loguru import logger

from vradriver.action import ActionHandler
from vradriver.config import DriverOptions, RawConfig, resolve_machine_options
from vradriver.constants import (
    DEFAULT_UNIX_USERNAME,
    DRIVER_SCHEME,
    HOST_KEY_ALIAS_SUFFIX,
    VERSION,
    WINRM_HTTP_PORT,
    WINRM_HTTPS_PORT,
    WINRM_UNENCRYPTED_SCHEMES,
    WinRMScheme,
)
from vradriver.core.exceptions import (
    ConfigurationError,
    GatewayNotFoundError,
    MissingCredentialError,
    ProvisioningInvariantViolation,
    RequestFailedError,
    ResourceNotFoundError,
)
from vradriver.gateway import CatalogRequest, Gateway, GatewayFactory, Request, Resource
from vradriver.machine import (
    ConvergenceStrategy,
    Machine,
    Platform,
    binding_for,
)
from vradriver.ssh_keys import private_key_for
from vradriver.transport import SSHTransport, Transport, WinRMTransport
from vradriver.types import Location, MachineOptions, MachineSpec
from vradriver.wait import wait_for

KeyResolver: TypeAlias = Callable[[str], str]
MachineOptionsLike: TypeAlias = MachineOptions | dict[str, Any] | None


@runtime_checkable
class MachineDriver(Protocol):
    """Lifecycle operations a provisioning runtime dispatches to."""

    def allocate_machine(
        self, action_handler: ActionHandler, machine_spec: MachineSpec, machine_options: MachineOptionsLike
    ) -> None: ...

    def ready_machine(
        self, action_handler: ActionHandler, machine_spec: MachineSpec, machine_options: MachineOptionsLike
    ) -> Machine: ...

    def stop_machine(
        self, action_handler: ActionHandler, machine_spec: MachineSpec, machine_options: MachineOptionsLike
    ) -> None: ...

    def destroy_machine(
        self, action_handler: ActionHandler, machine_spec: MachineSpec, machine_options: MachineOptionsLike
    ) -> None: ...

    def connect_to_machine(
        self, machine_spec: MachineSpec, machine_options: MachineOptionsLike
    ) -> Machine: ...


def _refreshed(request: Request) -> Callable[[], bool]:
    def check() -> bool:
        request.refresh()
        return request.completed()

    return check


class Driver:
    """Provisions machines through catalog requests.

    One driver instance serves one provisioning run: resources it looks up
    are cached by id for its lifetime and never evicted. Lifecycle calls for
    the same machine must not overlap.

    Args:
        driver_url: ``vra:<base url>`` (e.g. ``vra:https://vra.corp.local``).
        config: Raw configuration mapping (see ``vradriver.config``).
        gateway_factory: Builds the platform client from the base URL and
            driver options, on first use.
        key_resolver: Resolves a named SSH key to its private key contents.
            Defaults to searching ``private_key_paths``.
        sleep: Sleep function used between poll attempts.
    """

    def __init__(
        self,
        driver_url: str,
        config: RawConfig | None = None,
        *,
        gateway_factory: GatewayFactory | None = None,
        key_resolver: KeyResolver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        scheme, sep, base_url = driver_url.partition(":")
        if scheme != DRIVER_SCHEME or not sep or not base_url:
            raise ConfigurationError(
                f"Invalid driver URL '{driver_url}', expected '{DRIVER_SCHEME}:<base url>'"
            )

        self.driver_url = driver_url
        self.base_url = base_url
        self.config: RawConfig = config if config is not None else {}
        self.options = DriverOptions.from_config(self.config)

        self._gateway_factory = gateway_factory
        self._gateway: Gateway | None = None
        self._key_resolver = key_resolver or self._private_key
        self._sleep = sleep
        self._resources: dict[str, Resource] = {}

    @classmethod
    def from_url(cls, driver_url: str, config: RawConfig | None = None, **kwargs: Any) -> Driver:
        return cls(driver_url, config, **kwargs)

    @staticmethod
    def canonicalize_url(driver_url: str, config: RawConfig) -> tuple[str, RawConfig]:
        return driver_url, config

    @property
    def gateway(self) -> Gateway:
        if self._gateway is None:
            if self._gateway_factory is None:
                raise ConfigurationError(f"No gateway configured for {self.driver_url}")
            logger.debug(f"Creating gateway for {self.base_url}")
            self._gateway = self._gateway_factory(self.base_url, self.options)
        return self._gateway

    def description(self, machine_spec: MachineSpec) -> str:
        return f"X-Vradriver:{machine_spec.name}"

    def _machine_options(self, machine_options: MachineOptionsLike) -> MachineOptions:
        # Mappings are layered over the configured machine_options table
        if isinstance(machine_options, MachineOptions):
            return machine_options
        return MachineOptions.from_dict(resolve_machine_options(self.config, machine_options))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def allocate_machine(
        self,
        action_handler: ActionHandler,
        machine_spec: MachineSpec,
        machine_options: MachineOptionsLike = None,
    ) -> None:
        """Create the machine's resource unless it already exists.

        On success the machine's location is written with the new
        resource's identity and the frozen ``is_windows`` flag.

        Raises:
            RequestFailedError: If the catalog request fails.
            ProvisioningInvariantViolation: If the request did not produce
                exactly one VM.
        """
        options = self._machine_options(machine_options)
        if self.resource_for(machine_spec) is not None:
            return

        catalog_id = options.bootstrap_options.catalog_id
        with action_handler.perform_action(
            f"Create {machine_spec.name} with catalog ID {catalog_id}"
        ):
            resource = self.create_resource(action_handler, machine_spec, options)

        machine_spec.location = Location(
            driver_url=self.driver_url,
            driver_version=VERSION,
            resource_id=resource.id,
            resource_name=resource.name,
            allocated_at=datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC"),
            is_windows=options.transport_options.is_windows,
        )

    def ready_machine(
        self,
        action_handler: ActionHandler,
        machine_spec: MachineSpec,
        machine_options: MachineOptionsLike = None,
    ) -> Machine:
        """Power the machine on if needed and wait until it is reachable.

        Raises:
            ResourceNotFoundError: If the machine has no resource.
        """
        options = self._machine_options(machine_options)
        resource = self._require_resource(machine_spec)

        action_handler.report_progress(f"Powering on {machine_spec.name} if needed")
        with action_handler.perform_action(f"Power on machine {machine_spec.name}"):
            self.power_on_machine(action_handler, resource)

        action_handler.report_progress(f"Waiting for {machine_spec.name} to be reachable")
        transport = self.transport_for(machine_spec, options)
        with action_handler.perform_action(f"Confirm {machine_spec.name} is reachable"):
            self.wait_for(action_handler, transport.available)

        return self.machine_for(machine_spec, options, transport)

    def stop_machine(
        self,
        action_handler: ActionHandler,
        machine_spec: MachineSpec,
        machine_options: MachineOptionsLike = None,
    ) -> None:
        """Power the machine off if needed.

        Raises:
            ResourceNotFoundError: If the machine has no resource.
        """
        resource = self._require_resource(machine_spec)

        action_handler.report_progress(
            f"Submitting shutdown / power-off request for {machine_spec.name}"
        )
        with action_handler.perform_action(f"Powering off machine {machine_spec.name}"):
            self.power_off_machine(action_handler, resource)

    def destroy_machine(
        self,
        action_handler: ActionHandler,
        machine_spec: MachineSpec,
        machine_options: MachineOptionsLike = None,
    ) -> None:
        """Destroy the machine's resource.

        A machine without a resource is already destroyed; this returns
        without touching the gateway.

        Raises:
            RequestFailedError: If the destroy request fails.
        """
        resource = self.resource_for(machine_spec)
        if resource is None:
            return

        action_handler.report_progress(f"Submitting destroy request for {machine_spec.name}")
        with action_handler.perform_action(f"Destroy machine {machine_spec.name}"):
            # Refresh so the resource exposes its current action set
            resource.refresh()
            request = resource.destroy()
            self.wait_for_request(action_handler, request)

    def connect_to_machine(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptionsLike = None,
    ) -> Machine:
        return self.machine_for(machine_spec, self._machine_options(machine_options))

    # =========================================================================
    # Resources and requests
    # =========================================================================

    def resource_for(self, machine_spec: MachineSpec) -> Resource | None:
        """Look up the machine's resource, or None if it has none."""
        if machine_spec.location is None:
            return None

        resource_id = machine_spec.location.resource_id
        if resource_id not in self._resources:
            try:
                self._resources[resource_id] = self.gateway.resource_by_id(resource_id)
            except GatewayNotFoundError:
                logger.debug(f"Resource {resource_id} for {machine_spec.name} not found")
                return None
        return self._resources[resource_id]

    def _require_resource(self, machine_spec: MachineSpec) -> Resource:
        resource = self.resource_for(machine_spec)
        if resource is None:
            raise ResourceNotFoundError(machine_spec.name)
        return resource

    def create_resource(
        self,
        action_handler: ActionHandler,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
    ) -> Resource:
        """Submit a catalog request and return the single VM it produced."""
        action_handler.report_progress(f"Submitting catalog request for {machine_spec.name}")

        submitted = self.catalog_request(machine_spec, machine_options).submit()
        action_handler.report_progress(f"Catalog request {submitted.id} submitted.")

        self.wait_for_request(action_handler, submitted)

        servers = [r for r in submitted.resources if r.vm()]
        if len(servers) > 1:
            raise ProvisioningInvariantViolation(
                "The vRA request created more than one server. "
                "The catalog blueprint should only return one."
            )
        if not servers:
            raise ProvisioningInvariantViolation("The vRA request did not create any servers.")

        return servers[0]

    def catalog_request(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
    ) -> CatalogRequest:
        bootstrap = machine_options.bootstrap_options
        if not bootstrap.catalog_id:
            raise ConfigurationError(
                f"No catalog_id in bootstrap_options for {machine_spec.name}"
            )

        request = self.gateway.catalog_request(bootstrap.catalog_id)
        request.notes = self.description(machine_spec)
        request.cpus = bootstrap.cpus
        request.memory = bootstrap.memory
        request.requested_for = bootstrap.requested_for
        if bootstrap.lease_days is not None:
            request.lease_days = bootstrap.lease_days
        if bootstrap.subtenant_id is not None:
            request.subtenant_id = bootstrap.subtenant_id

        for key, parameter in bootstrap.extra_parameters.items():
            request.set_parameter(key, parameter.type, parameter.value)

        return request

    def power_on_machine(self, action_handler: ActionHandler, resource: Resource) -> None:
        resource.refresh()
        if (
            resource.machine_on()
            or resource.machine_turning_on()
            or resource.machine_in_provisioned_state()
        ):
            return

        action_handler.report_progress(
            f"Machine status is {resource.machine_status}. "
            f"Submitting power-on request for resource {resource.id}"
        )
        request = resource.poweron()
        self.wait_for_request(action_handler, request)

        # Request completion and actual power state are not simultaneous
        action_handler.report_progress(f"Waiting for resource {resource.id} to be powered on")
        self.wait_for(action_handler, self._refreshed_state(resource, resource.machine_on))

    def power_off_machine(self, action_handler: ActionHandler, resource: Resource) -> None:
        resource.refresh()
        if resource.machine_off() or resource.machine_turning_off():
            return

        action_handler.report_progress(
            f"Submitting shutdown/power-off request for resource {resource.id}"
        )
        try:
            request = resource.shutdown()
        except GatewayNotFoundError:
            action_handler.report_progress(
                f"No shutdown action for resource {resource.id}, powering off instead"
            )
            request = resource.poweroff()

        self.wait_for_request(action_handler, request)

        action_handler.report_progress(f"Waiting for resource {resource.id} to be powered off")
        self.wait_for(action_handler, self._refreshed_state(resource, resource.machine_off))

    @staticmethod
    def _refreshed_state(resource: Resource, predicate: Callable[[], bool]) -> Callable[[], bool]:
        def check() -> bool:
            resource.refresh()
            return predicate()

        return check

    # =========================================================================
    # Polling
    # =========================================================================

    def wait_for(self, action_handler: ActionHandler, check: Callable[[], bool]) -> None:
        """Poll ``check`` under the driver's wait budget, narrating progress."""
        budget = self.options.max_wait_time

        def on_tick(elapsed: float, interval: float) -> None:
            action_handler.report_progress(
                f"been waiting {elapsed:.0f}/{budget} seconds -- sleeping {interval:g} seconds"
            )

        def on_error(error: Exception, attempt: int) -> None:
            action_handler.report_progress(
                f"Error encountered: {type(error).__name__} - {error}"
            )

        wait_for(
            check,
            max_wait_time=budget,
            max_retries=self.options.max_retries,
            interval=self.options.poll_interval,
            on_tick=on_tick,
            on_error=on_error,
            sleep=self._sleep,
        )

    def wait_for_request(self, action_handler: ActionHandler, request: Request) -> None:
        """Poll a request to completion.

        Raises:
            RequestFailedError: If the platform reports the request failed.
        """
        self.wait_for(action_handler, _refreshed(request))
        if request.failed():
            raise RequestFailedError(request.id, request.completion_details)

    # =========================================================================
    # Transport binding
    # =========================================================================

    def machine_for(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
        transport: Transport | None = None,
    ) -> Machine:
        binding = binding_for(machine_spec)
        return Machine(
            spec=machine_spec,
            platform=binding.platform,
            transport=transport or self.transport_for(machine_spec, machine_options),
            convergence_strategy=self.convergence_strategy_for(machine_spec, machine_options),
        )

    def convergence_strategy_for(
        self, machine_spec: MachineSpec, machine_options: MachineOptions
    ) -> ConvergenceStrategy:
        return ConvergenceStrategy(
            kind=binding_for(machine_spec).convergence,
            options=machine_options.convergence_options,
            config=self.config,
        )

    def transport_for(self, machine_spec: MachineSpec, machine_options: MachineOptions) -> Transport:
        resource = self._require_resource(machine_spec)
        if binding_for(machine_spec).platform is Platform.WINDOWS:
            return self.create_winrm_transport(machine_spec, machine_options, resource)
        return self.create_ssh_transport(machine_spec, machine_options, resource)

    def username_for(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
        default_username: str,
    ) -> str:
        return (
            machine_spec.reference.get("username")
            or machine_options.transport_options.username
            or default_username
        )

    def remote_host_for(self, machine_options: MachineOptions, resource: Resource) -> str:
        if not resource.ip_addresses or machine_options.transport_options.use_hostname:
            return resource.name
        return resource.ip_addresses[0]

    def create_winrm_transport(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
        resource: Resource,
    ) -> WinRMTransport:
        transport_options = machine_options.transport_options
        remote_host = self.remote_host_for(machine_options, resource)
        default_username = binding_for(machine_spec).default_username
        username = self.username_for(machine_spec, machine_options, default_username)

        scheme = transport_options.winrm_transport or WinRMScheme.NEGOTIATE.value
        logger.debug(f"WinRM transport: {scheme}")
        unencrypted = scheme in WINRM_UNENCRYPTED_SCHEMES
        port = transport_options.winrm_port or (WINRM_HTTP_PORT if unencrypted else WINRM_HTTPS_PORT)
        url = f"{'http' if unencrypted else 'https'}://{remote_host}:{port}/wsman"

        logger.debug(f"Creating WinRM connection to {url}")
        return WinRMTransport(
            url,
            scheme,
            self.winrm_options_for(username, transport_options.password),
            self.config,
        )

    @staticmethod
    def winrm_options_for(username: str, password: str | None) -> dict[str, Any]:
        # Domain accounts (DOMAIN\user) must skip SSPI
        auth_type = "disable_sspi" if "\\" in username else "basic_auth_only"
        return {"user": username, "pass": password, auth_type: True}

    def create_ssh_transport(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
        resource: Resource,
    ) -> SSHTransport:
        ssh_options = self.ssh_options_for(machine_spec, machine_options, resource)
        remote_host = self.remote_host_for(machine_options, resource)
        default_username = binding_for(machine_spec).default_username
        username = self.username_for(machine_spec, machine_options, default_username)
        options = self.ssh_transport_options_for(machine_spec, machine_options, username)

        return SSHTransport(remote_host, username, ssh_options, options, self.config)

    def ssh_transport_options_for(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
        username: str,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"ssh_pty_enable": True}
        if self.use_sudo(machine_spec, username, machine_options):
            options["prefix"] = "sudo "
        gateway = machine_spec.reference.get("ssh_gateway") or machine_options.transport_options.ssh_gateway
        if gateway:
            options["ssh_gateway"] = gateway
        return options

    def use_sudo(
        self,
        machine_spec: MachineSpec,
        username: str,
        machine_options: MachineOptions | None = None,
    ) -> bool:
        if "sudo" in machine_spec.reference:
            return bool(machine_spec.reference["sudo"])
        if machine_options is not None and machine_options.transport_options.sudo is not None:
            return machine_options.transport_options.sudo
        return username != DEFAULT_UNIX_USERNAME

    def ssh_options_for(
        self,
        machine_spec: MachineSpec,
        machine_options: MachineOptions,
        resource: Resource,
    ) -> dict[str, Any]:
        """Build SSH auth options.

        Password auth when a password is configured; otherwise public key
        auth from ``key_path`` or ``key_name``. Raw ``ssh_options`` from the
        machine options override everything computed here.

        Raises:
            MissingCredentialError: If neither a password nor a key is configured.
        """
        transport_options = machine_options.transport_options

        ssh_options: dict[str, Any]
        if transport_options.password is not None:
            ssh_options = {
                "auth_methods": ["password"],
                "keys_only": False,
                "password": transport_options.password,
            }
        else:
            ssh_options = {"auth_methods": ["publickey"], "keys_only": True}
            if transport_options.key_path:
                ssh_options["key_data"] = [Path(transport_options.key_path).expanduser().read_text()]
            elif transport_options.key_name:
                ssh_options["key_data"] = [self._key_resolver(transport_options.key_name)]
            else:
                raise MissingCredentialError(
                    f"No key found to connect to {machine_spec.name}"
                    " - set a key_path or key_name in the machine's transport_options"
                )

        ssh_options["host_key_alias"] = f"{resource.id}{HOST_KEY_ALIAS_SUFFIX}"
        return {**ssh_options, **machine_options.ssh_options}

    def _private_key(self, name: str) -> str:
        return private_key_for(name, self.options.private_key_paths)
