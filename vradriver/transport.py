"""Transports for reaching a machine once it is powered on.

Provides a Protocol for remote command execution plus the two concrete
transports the driver binds: SSH (paramiko) for unix machines and WinRM
(pywinrm) for windows machines.
"""

from __future__ import annotations

import io
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import paramiko
import requests
import winrm
from loguru import logger
from winrm.exceptions import WinRMError, WinRMTransportError

from vradriver.constants import DEFAULT_KNOWN_HOSTS, SSH_PORT, WinRMScheme
from vradriver.core.exceptions import MissingCredentialError

_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)

# pywinrm names the negotiate scheme after its NTLM implementation
_SESSION_TRANSPORTS = {
    WinRMScheme.NEGOTIATE.value: "ntlm",
    WinRMScheme.PLAINTEXT.value: "plaintext",
    WinRMScheme.SSL.value: "ssl",
    WinRMScheme.KERBEROS.value: "kerberos",
}


@runtime_checkable
class Transport(Protocol):
    """Remote command execution channel."""

    def available(self) -> bool:
        """Return True once the machine accepts commands."""
        ...

    def run_command(self, command: str, timeout: int = 30) -> str:
        """Execute command on the machine and return stdout.

        Raises:
            RuntimeError: If the command exits non-zero.
        """
        ...


def _parse_private_key(data: str) -> paramiko.PKey:
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(data))
        except paramiko.SSHException:
            continue
    raise MissingCredentialError("SSH key material is not a supported private key")


def parse_gateway(gateway: str) -> tuple[str | None, str, int]:
    """Split a ``[user@]host[:port]`` gateway reference."""
    user, _, hostport = gateway.rpartition("@")
    host, sep, port = hostport.partition(":")
    return (user or None, host, int(port) if sep else SSH_PORT)


class AliasHostKeyPolicy(paramiko.MissingHostKeyPolicy):
    """Trust host keys under a stable alias instead of the machine address.

    Addresses are recycled across machines, so keys are recorded in
    ``known_hosts`` under the alias (the resource id). The first key seen for
    an alias is saved; a later connection presenting any other key for the
    same alias is rejected with ``BadHostKeyException``.

    Args:
        alias: Name the host key is trusted under.
        known_hosts: OpenSSH-format file holding trusted keys.
    """

    def __init__(self, alias: str, known_hosts: Path) -> None:
        self.alias = alias
        self.known_hosts = known_hosts

    def _load(self) -> paramiko.HostKeys:
        host_keys = paramiko.HostKeys()
        if self.known_hosts.is_file():
            host_keys.load(str(self.known_hosts))
        return host_keys

    def missing_host_key(self, client: paramiko.SSHClient, hostname: str, key: paramiko.PKey) -> None:
        host_keys = self._load()
        known = host_keys.lookup(self.alias)
        if known is not None:
            expected = known.get(key.get_name())
            if expected is None or expected != key:
                logger.warning(f"SSH: host key for {self.alias} ({hostname}) has changed")
                trusted = expected if expected is not None else next(iter(known.values()))
                raise paramiko.BadHostKeyException(hostname, key, trusted)
            return

        host_keys.add(self.alias, key.get_name(), key)
        self.known_hosts.parent.mkdir(parents=True, exist_ok=True)
        host_keys.save(str(self.known_hosts))
        logger.debug(f"SSH: trusting {key.get_name()} key for {self.alias} ({hostname})")


class SSHTransport:
    """SSH transport for unix machines.

    Args:
        host: Remote host IP or hostname.
        username: SSH username.
        ssh_options: Authentication options (auth_methods, keys_only,
            password, key_data, host_key_alias, user_known_hosts_file, port,
            timeout).
        options: Behavior options (prefix, ssh_pty_enable, ssh_gateway).
        config: Shared driver configuration.
    """

    __slots__ = ("host", "username", "ssh_options", "options", "config")

    def __init__(
        self,
        host: str,
        username: str,
        ssh_options: dict[str, Any],
        options: dict[str, Any],
        config: dict[str, Any],
    ) -> None:
        self.host = host
        self.username = username
        self.ssh_options = ssh_options
        self.options = options
        self.config = config

    @property
    def prefix(self) -> str:
        return self.options.get("prefix", "")

    def _connect_kwargs(self) -> dict[str, Any]:
        keys_only = bool(self.ssh_options.get("keys_only", False))
        kwargs: dict[str, Any] = {
            "hostname": self.host,
            "port": int(self.ssh_options.get("port", SSH_PORT)),
            "username": self.username,
            "timeout": self.ssh_options.get("timeout", 10),
            "allow_agent": not keys_only,
            "look_for_keys": not keys_only,
        }
        if "password" in self.ssh_options.get("auth_methods", ()):
            kwargs["password"] = self.ssh_options.get("password")
        key_data = self.ssh_options.get("key_data") or []
        if key_data:
            kwargs["pkey"] = _parse_private_key(key_data[0])
        return kwargs

    def _host_key_policy(self) -> paramiko.MissingHostKeyPolicy:
        # The client loads no system host keys, so every connection reaches the policy
        alias = self.ssh_options.get("host_key_alias")
        if not alias:
            return paramiko.AutoAddPolicy()
        known_hosts = self.ssh_options.get("user_known_hosts_file", DEFAULT_KNOWN_HOSTS)
        return AliasHostKeyPolicy(alias, Path(known_hosts).expanduser())

    @contextmanager
    def _session(self) -> Iterator[paramiko.SSHClient]:
        jump: paramiko.SSHClient | None = None
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(self._host_key_policy())
        try:
            kwargs = self._connect_kwargs()
            if gateway := self.options.get("ssh_gateway"):
                jump, kwargs["sock"] = self._open_gateway(gateway)
            logger.debug(f"SSH: connecting to {self.host} ({self.username})")
            client.connect(**kwargs)
            yield client
        finally:
            client.close()
            if jump is not None:
                jump.close()

    def _open_gateway(self, gateway: str) -> tuple[paramiko.SSHClient, paramiko.Channel]:
        user, host, port = parse_gateway(gateway)
        logger.debug(f"SSH: opening gateway {host}:{port}")
        jump = paramiko.SSHClient()
        jump.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        jump.connect(hostname=host, port=port, username=user or self.username)
        transport = jump.get_transport()
        if transport is None:
            jump.close()
            raise paramiko.SSHException(f"SSH gateway {gateway} not connected")
        channel = transport.open_channel(
            "direct-tcpip",
            dest_addr=(self.host, int(self.ssh_options.get("port", SSH_PORT))),
            src_addr=("127.0.0.1", 0),
        )
        return jump, channel

    def _exec(self, client: paramiko.SSHClient, command: str, timeout: int) -> str:
        full = f"{self.prefix}{command}"
        preview = full[:80] + "..." if len(full) > 80 else full
        logger.debug(f"SSH.exec: {preview}")
        _, stdout, stderr = client.exec_command(
            full,
            timeout=timeout,
            get_pty=bool(self.options.get("ssh_pty_enable", False)),
        )
        code = stdout.channel.recv_exit_status()
        if code != 0:
            raise RuntimeError(f"Command failed ({code}): {stderr.read().decode()}")
        return stdout.read().decode()

    def run_command(self, command: str, timeout: int = 30) -> str:
        with self._session() as client:
            return self._exec(client, command, timeout)

    def available(self) -> bool:
        try:
            with self._session() as client:
                self._exec(client, "pwd", timeout=10)
        except paramiko.BadHostKeyException:
            raise
        except (paramiko.SSHException, OSError, EOFError, RuntimeError) as e:
            logger.debug(f"SSH: {self.host} not available yet: {type(e).__name__} - {e}")
            return False
        return True


class WinRMTransport:
    """WinRM transport for windows machines.

    The auth flag ``winrm_options_for`` adds needs no session argument in
    pywinrm: its ``ntlm`` transport never goes through SSPI, which is what
    ``disable_sspi`` asks for on domain accounts, and its ``plaintext`` and
    ``ssl`` transports only speak basic auth, which is what
    ``basic_auth_only`` asks for. The flag stays in ``options`` so callers
    can see which auth mode was chosen.

    Args:
        url: WS-Management endpoint (``http://host:5985/wsman``).
        scheme: WinRM transport scheme (negotiate, plaintext, ssl, kerberos).
        options: Credentials and auth flag from ``winrm_options_for``.
        config: Shared driver configuration.
    """

    __slots__ = ("url", "scheme", "options", "config", "_session")

    def __init__(
        self,
        url: str,
        scheme: str,
        options: dict[str, Any],
        config: dict[str, Any],
    ) -> None:
        self.url = url
        self.scheme = scheme
        self.options = options
        self.config = config
        self._session: winrm.Session | None = None

    @property
    def session(self) -> winrm.Session:
        if self._session is None:
            verify = self.config.get("driver_options", {}).get("verify_ssl", True)
            self._session = winrm.Session(
                self.url,
                auth=(self.options["user"], self.options.get("pass") or ""),
                transport=_SESSION_TRANSPORTS.get(self.scheme, self.scheme),
                server_cert_validation="validate" if verify else "ignore",
            )
        return self._session

    def run_command(self, command: str, timeout: int = 30) -> str:
        logger.debug(f"WinRM.exec: {command[:80]}")
        result = self.session.run_cmd(command)
        if result.status_code != 0:
            raise RuntimeError(
                f"Command failed ({result.status_code}): {result.std_err.decode(errors='replace')}"
            )
        return result.std_out.decode(errors="replace")

    def available(self) -> bool:
        try:
            self.run_command("echo ready")
        except (WinRMError, WinRMTransportError, requests.exceptions.RequestException, RuntimeError) as e:
            logger.debug(f"WinRM: {self.url} not available yet: {type(e).__name__} - {e}")
            return False
        return True
