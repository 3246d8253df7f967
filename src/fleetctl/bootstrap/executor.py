"""Run a bootstrap plan on a single host."""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..config import ProbeConfig
from ..logging import append_log_line
from ..machines import MachineEntry
from ..providers.commands import CommandError
from ..providers.ssh import SSHProvider
from ..readiness import ReadinessError, ReadinessProber, tcp_port_open
from ..templates import TemplateEngine
from .plan import BootstrapSettings, build_plan, render_script


@dataclass(frozen=True)
class HostOutcome:
    """Result of bootstrapping one host."""

    entry: MachineEntry
    ok: bool
    output: str = ""
    error: str | None = None


@dataclass(slots=True)
class BootstrapExecutor:
    """Wait for a host to become reachable, then stream its bootstrap script."""

    ssh: SSHProvider
    templates: TemplateEngine
    settings: BootstrapSettings
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    sleep: Callable[[float], None] = time.sleep
    connect: Callable[[str, int, float], bool] = tcp_port_open

    def run(self, entry: MachineEntry, log_path: Path) -> HostOutcome:
        """Bootstrap *entry*, writing every line of output to *log_path*."""
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("", encoding="utf-8")

        def log(message: str) -> None:
            append_log_line(log_path, message)

        plan = build_plan(entry, self.settings)
        log(f"Starting {plan.profile.value} initialization of {entry.base_name} ({entry.fqdn})")
        prober = ReadinessProber(
            ssh=self.ssh,
            settings=self.probe,
            sleep=self.sleep,
            connect=self.connect,
            emit=log,
        )
        try:
            prober.wait_until_ready(entry.fqdn)
        except ReadinessError as exc:
            log(str(exc))
            return HostOutcome(entry=entry, ok=False, error=str(exc))

        script = render_script(plan, self.templates)
        try:
            result = self.ssh.run_script(entry.fqdn, script, log_path=log_path)
        except CommandError as exc:
            log(str(exc))
            return HostOutcome(entry=entry, ok=False, error=str(exc))
        if not result.ok:
            message = f"Remote execution failed for {entry.base_name} (exit {result.exit_code})."
            log(message)
            return HostOutcome(entry=entry, ok=False, output=result.output, error=message)
        log(f"Initialization completed for {entry.base_name}")
        return HostOutcome(entry=entry, ok=True, output=result.output)


__all__ = ["BootstrapExecutor", "HostOutcome"]
