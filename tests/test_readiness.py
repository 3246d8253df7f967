"""Readiness probe tests."""
from __future__ import annotations

from collections.abc import Callable

import pytest

from fleetctl.config import ProbeConfig
from fleetctl.providers.commands import CommandResult, CommandSpec
from fleetctl.providers.ssh import SSHProvider
from fleetctl.readiness import LoginNotPermitted, PortUnreachable, ReadinessProber

HOST = "wk15sp4rpm.westeurope.cloudapp.azure.com"


def _prober(
    runner: object,
    *,
    connect: Callable[[str, int, float], bool],
    sleeps: list[float],
    messages: list[str] | None = None,
) -> ReadinessProber:
    ssh = SSHProvider(runner=runner, user="cloudadmin")  # type: ignore[arg-type]
    return ReadinessProber(
        ssh=ssh,
        settings=ProbeConfig(),
        sleep=sleeps.append,
        connect=connect,
        emit=(messages.append if messages is not None else lambda message: None),
    )


def test_port_never_opens_fails_on_attempt_twenty(fake_runner: Callable[..., object]) -> None:
    """A closed port exhausts all 20 attempts and no login is tried."""
    runner = fake_runner()
    probes: list[tuple[str, int, float]] = []
    sleeps: list[float] = []

    def closed(host: str, port: int, timeout: float) -> bool:
        probes.append((host, port, timeout))
        return False

    prober = _prober(runner, connect=closed, sleeps=sleeps)

    with pytest.raises(PortUnreachable) as excinfo:
        prober.wait_until_ready(HOST)

    assert excinfo.value.attempts == 20
    assert excinfo.value.host == HOST
    assert len(probes) == 20
    assert probes[0] == (HOST, 22, 5.0)
    assert sleeps == [10.0] * 19
    assert runner.specs == []  # type: ignore[attr-defined]


def test_login_retries_until_permitted(fake_runner: Callable[..., object]) -> None:
    """The login probe keeps trying while the host refuses sessions."""
    outcomes = iter([255, 255, 0])
    runner = fake_runner(lambda spec: CommandResult(exit_code=next(outcomes)))
    sleeps: list[float] = []
    messages: list[str] = []

    prober = _prober(runner, connect=lambda *args: True, sleeps=sleeps, messages=messages)
    prober.wait_until_ready(HOST)

    specs: list[CommandSpec] = runner.specs  # type: ignore[attr-defined]
    assert len(specs) == 3
    assert specs[0].args[-2:] == (f"cloudadmin@{HOST}", "true")
    assert sleeps == [15.0, 15.0]
    assert messages[-1] == f"SSH login is permitted on {HOST}."


def test_login_attempts_exhausted(fake_runner: Callable[..., object]) -> None:
    """Fifteen refused logins raise LoginNotPermitted."""
    runner = fake_runner(lambda spec: CommandResult(exit_code=255))
    sleeps: list[float] = []

    prober = _prober(runner, connect=lambda *args: True, sleeps=sleeps)

    with pytest.raises(LoginNotPermitted) as excinfo:
        prober.wait_for_login(HOST)

    assert excinfo.value.attempts == 15
    assert len(runner.specs) == 15  # type: ignore[attr-defined]
    assert len(sleeps) == 14
