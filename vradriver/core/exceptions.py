"""Custom exception hierarchy for vradriver.

All vradriver-specific exceptions inherit from VradriverError, enabling
callers to catch every driver failure with a single except clause.
"""

from __future__ import annotations


class VradriverError(Exception):
    """Base exception for all vradriver errors."""


class ConfigurationError(VradriverError):
    """Raised for invalid configuration or missing required settings."""


class GatewayNotFoundError(VradriverError):
    """Raised by gateway implementations when a remote object does not exist.

    Also signals an unsupported resource action (e.g. no shutdown action
    available for a resource).
    """


class ResourceNotFoundError(VradriverError):
    """Raised when a lifecycle operation targets a machine with no remote resource."""

    def __init__(self, machine_name: str) -> None:
        self.machine_name = machine_name
        super().__init__(f"Unable to locate machine for {machine_name}")


class RequestFailedError(VradriverError):
    """Raised when the platform reports an asynchronous request as failed."""

    def __init__(self, request_id: str, details: str | None) -> None:
        self.request_id = request_id
        self.details = details
        super().__init__(f"The vRA request failed: {details}")


class ProvisioningError(VradriverError):
    """Raised when machine provisioning fails."""


class ProvisioningInvariantViolation(ProvisioningError):
    """Raised when a catalog request does not produce exactly one VM."""


class WaitTimeoutError(VradriverError):
    """Raised when a poll loop exceeds its wall-clock budget."""

    def __init__(self, elapsed: float, budget: float) -> None:
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(f"Timed out after waiting {elapsed:.0f}/{budget:.0f} seconds")


class TransientPollError(VradriverError):
    """Raised when a poll check keeps failing after its retries are spent.

    The last error raised by the check is available as ``__cause__``.
    """

    def __init__(self, attempts: int, error: BaseException) -> None:
        self.attempts = attempts
        self.error = error
        super().__init__(
            f"Retries exceeded after {attempts} failed attempts: "
            f"{type(error).__name__} - {error}"
        )


class MissingCredentialError(VradriverError):
    """Raised when no usable SSH key material can be found for a machine."""
