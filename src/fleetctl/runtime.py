"""Per-invocation run context shared by every pipeline stage."""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console

from .bootstrap.plan import BootstrapSettings
from .certificates import CertificateBackend, CryptographyBackend, OpenSSLBackend
from .config import AppConfig
from .logging import StructuredLogger
from .machines import MachineEntry, load_machines
from .providers.ansible import AnsibleProvider
from .providers.azure import AzureProvider
from .providers.commands import CommandRunner
from .providers.ssh import SSHProvider
from .providers.terraform import TerraformProvider
from .readiness import tcp_port_open
from .templates import TemplateEngine


@dataclass
class RunContext:
    """Configuration, logging and tool access for one CLI invocation."""

    config: AppConfig
    logger: StructuredLogger
    runner: CommandRunner
    templates: TemplateEngine
    console: Console = field(default_factory=Console)
    sleep: Callable[[float], None] = time.sleep
    connect: Callable[[str, int, float], bool] = tcp_port_open

    def machines(self) -> tuple[MachineEntry, ...]:
        """Load the registry using the configured location."""
        self.config.require("azure.vms_location")
        return load_machines(self.config.machines_file, domain_suffix=self.config.azure.domain_suffix)

    def stage_log(self, name: str, *, header: str | None = None) -> Path:
        """Truncate and return the log file for stage *name*."""
        return self.logger.reset_log(self.logger.stage_log(name), header=header or name)

    def ssh(self) -> SSHProvider:
        """Return an SSH provider for the configured identity."""
        ssh = self.config.ssh
        return SSHProvider(
            runner=self.runner,
            user=ssh.user or "",
            private_key_path=ssh.private_key_path,
            ssh_bin=ssh.ssh_bin,
            keygen_bin=ssh.keygen_bin,
            known_hosts=ssh.known_hosts,
        )

    def azure(self, log_path: Path | None = None) -> AzureProvider:
        """Return an Azure CLI provider logging to *log_path*."""
        return AzureProvider(runner=self.runner, az_bin=self.config.azure.az_bin, log_path=log_path)

    def terraform(self) -> TerraformProvider:
        """Return a Terraform provider for the configured directory."""
        settings = self.config.terraform
        return TerraformProvider(
            runner=self.runner,
            directory=settings.directory,
            terraform_bin=settings.terraform_bin,
        )

    def ansible(self, log_path: Path | None = None) -> AnsibleProvider:
        """Return an Ansible provider using the dedicated virtualenv."""
        settings = self.config.ansible
        return AnsibleProvider(
            runner=self.runner,
            venv_dir=settings.venv_dir,
            python_exec=settings.python_exec,
            core_version=settings.core_version,
            log_path=log_path,
        )

    def certificate_backend(self, log_path: Path | None = None) -> CertificateBackend:
        """Return the configured certificate backend."""
        if self.config.certs.backend == "openssl":
            return OpenSSLBackend(
                runner=self.runner,
                templates=self.templates,
                openssl_bin=self.config.certs.openssl_bin,
                log_path=log_path,
            )
        return CryptographyBackend()

    def bootstrap_settings(self) -> BootstrapSettings:
        """Return credentials interpolated into bootstrap scripts."""
        return BootstrapSettings.from_config(self.config)


def build_run_context(
    config: AppConfig,
    runner: CommandRunner,
    *,
    console: Console | None = None,
) -> RunContext:
    """Assemble a :class:`RunContext` from resolved configuration."""
    return RunContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        runner=runner,
        templates=TemplateEngine.with_overrides(config.templates_dir),
        console=console or Console(),
    )


__all__ = ["RunContext", "build_run_context"]
