"""vradriver - provision machines through catalog requests.

Example:

    from vradriver import ActionHandler, Driver, MachineSpec

    driver = Driver.from_url(
        "vra:https://vra.corp.local",
        {"driver_options": {"max_wait_time": 900}},
        gateway_factory=make_client,
    )
    spec = MachineSpec(name="web01")
    options = {
        "bootstrap_options": {"catalog_id": "c1", "cpus": 2, "memory": 4096},
        "transport_options": {"key_path": "~/.ssh/id_ed25519"},
    }

    handler = ActionHandler()
    driver.allocate_machine(handler, spec, options)
    machine = driver.ready_machine(handler, spec, options)
"""

from vradriver.action import ActionHandler
from vradriver.config import DriverOptions, load_config
from vradriver.constants import VERSION
from vradriver.core.exceptions import (
    ConfigurationError,
    GatewayNotFoundError,
    MissingCredentialError,
    ProvisioningError,
    ProvisioningInvariantViolation,
    RequestFailedError,
    ResourceNotFoundError,
    TransientPollError,
    VradriverError,
    WaitTimeoutError,
)
from vradriver.driver import Driver, MachineDriver
from vradriver.logging import LogConfig, setup_logging, teardown_logging
from vradriver.machine import ConvergenceStrategy, Machine, Platform
from vradriver.types import (
    BootstrapOptions,
    ExtraParameter,
    Location,
    MachineOptions,
    MachineSpec,
    TransportOptions,
)
from vradriver.wait import wait_for

__version__ = VERSION

__all__ = [
    "ActionHandler",
    "BootstrapOptions",
    "ConfigurationError",
    "ConvergenceStrategy",
    "Driver",
    "DriverOptions",
    "ExtraParameter",
    "GatewayNotFoundError",
    "Location",
    "LogConfig",
    "Machine",
    "MachineDriver",
    "MachineOptions",
    "MachineSpec",
    "MissingCredentialError",
    "Platform",
    "ProvisioningError",
    "ProvisioningInvariantViolation",
    "RequestFailedError",
    "ResourceNotFoundError",
    "TransientPollError",
    "TransportOptions",
    "VradriverError",
    "WaitTimeoutError",
    "load_config",
    "setup_logging",
    "teardown_logging",
    "wait_for",
]
