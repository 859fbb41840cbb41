"""Centralized constants and enums for vradriver.

All magic strings, ports, and default values are defined here to keep the
driver, transports, and configuration layer consistent.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

VERSION: Final = "0.1.0"

DRIVER_SCHEME: Final = "vra"

# =============================================================================
# Polling
# =============================================================================

DEFAULT_MAX_WAIT_TIME: Final = 600
DEFAULT_MAX_RETRIES: Final = 1
DEFAULT_POLL_INTERVAL: Final = 5.0

# =============================================================================
# Transports
# =============================================================================


class WinRMScheme(StrEnum):
    """WinRM transport schemes accepted in transport options."""

    PLAINTEXT = "plaintext"
    NEGOTIATE = "negotiate"
    SSL = "ssl"
    KERBEROS = "kerberos"


WINRM_HTTP_PORT: Final = 5985
WINRM_HTTPS_PORT: Final = 5986

# Schemes that talk plain http on the unencrypted listener
WINRM_UNENCRYPTED_SCHEMES: Final = frozenset({WinRMScheme.PLAINTEXT.value, WinRMScheme.NEGOTIATE.value})

SSH_PORT: Final = 22

DEFAULT_UNIX_USERNAME: Final = "root"
DEFAULT_WINDOWS_USERNAME: Final = "Administrator"

HOST_KEY_ALIAS_SUFFIX: Final = ".vra"

# Host keys trusted per alias (resource id), independent of the machine address
DEFAULT_KNOWN_HOSTS: Final = "~/.vradriver/known_hosts"

# =============================================================================
# Convergence
# =============================================================================


class ConvergenceKind(StrEnum):
    """Convergence strategies handed a reachable machine."""

    INSTALL_MSI = "install_msi"
    INSTALL_CACHED = "install_cached"
