"""Readiness probes run before a freshly provisioned VM is bootstrapped."""
from __future__ import annotations

import socket
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import ProbeConfig
from .polling import PollExhausted, RetryPolicy, poll_until
from .providers.ssh import SSHProvider


class ReadinessError(RuntimeError):
    """Base class for hosts that never became ready."""

    def __init__(self, host: str, attempts: int, message: str) -> None:
        """Store *host* and the number of attempts made."""
        super().__init__(message)
        self.host = host
        self.attempts = attempts


class PortUnreachable(ReadinessError):
    """The SSH port stayed closed for every polling attempt."""


class LoginNotPermitted(ReadinessError):
    """The port answered but authenticated logins were still refused."""


def tcp_port_open(host: str, port: int, timeout: float) -> bool:
    """Return ``True`` when a TCP connection to *host*:*port* succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


@dataclass(slots=True)
class ReadinessProber:
    """Wait for a host's SSH port and then for a permitted login."""

    ssh: SSHProvider
    settings: ProbeConfig = field(default_factory=ProbeConfig)
    sleep: Callable[[float], None] = time.sleep
    connect: Callable[[str, int, float], bool] = tcp_port_open
    emit: Callable[[str], None] = lambda message: None

    @property
    def port_policy(self) -> RetryPolicy:
        """Return the policy for port polling."""
        return RetryPolicy(self.settings.port_attempts, self.settings.port_interval)

    @property
    def login_policy(self) -> RetryPolicy:
        """Return the policy for login polling."""
        return RetryPolicy(self.settings.login_attempts, self.settings.login_interval)

    def wait_for_port(self, host: str, port: int | None = None) -> int:
        """Poll until the SSH port on *host* accepts connections."""
        target_port = port if port is not None else self.settings.port
        policy = self.port_policy
        self.emit(f"Waiting for port {target_port} on {host}...")
        try:
            attempt = poll_until(
                lambda: self.connect(host, target_port, self.settings.connect_timeout),
                policy,
                sleep=self.sleep,
                on_retry=lambda n: self.emit(
                    f"  attempt {n}: port {target_port} still closed, waiting {policy.interval:g}s"
                ),
            )
        except PollExhausted as exc:
            raise PortUnreachable(
                host,
                exc.attempts,
                f"SSH port {target_port} not reachable on {host} after {exc.attempts} attempts.",
            ) from exc
        self.emit(f"Port {target_port} is available on {host}.")
        return attempt

    def wait_for_login(self, host: str) -> int:
        """Poll until an authenticated no-op command succeeds on *host*."""
        policy = self.login_policy
        self.emit(f"Waiting for remote login on {host}...")
        try:
            attempt = poll_until(
                lambda: self.ssh.check_login(host).ok,
                policy,
                sleep=self.sleep,
                on_retry=lambda n: self.emit(
                    f"  login attempt {n}: still booting, waiting {policy.interval:g}s"
                ),
            )
        except PollExhausted as exc:
            raise LoginNotPermitted(
                host,
                exc.attempts,
                f"Remote login not permitted on {host} after {exc.attempts} attempts.",
            ) from exc
        self.emit(f"SSH login is permitted on {host}.")
        return attempt

    def wait_until_ready(self, host: str) -> None:
        """Run the port probe followed by the login probe."""
        self.wait_for_port(host)
        self.wait_for_login(host)


__all__ = [
    "LoginNotPermitted",
    "PortUnreachable",
    "ReadinessError",
    "ReadinessProber",
    "tcp_port_open",
]
