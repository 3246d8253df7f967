"""Probe registration entry point for the doctor command."""

from __future__ import annotations

import stat
from collections.abc import Callable, Sequence

from ..config import ConfigError
from ..machines import RegistryParseError, ansible_managed, load_machines
from .models import (
    DoctorImpact,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)

# Settings every full pipeline run needs, in the order they are consumed.
PIPELINE_SETTINGS: tuple[str, ...] = (
    "ssh.user",
    "ssh.private_key_path",
    "azure.vms_location",
    "azure.resource_group",
    "suse.registration_code",
    "suse.registration_email",
    "ansible.certs_path",
    "ansible.inventories_path",
    "ansible.project_path",
)


def collect_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    """Return the set of probes that should run for the current context."""
    probes: list[ProbeDefinition] = []
    probes.extend(_env_probes(context))
    probes.extend(_config_probes())
    probes.append(_make_probe("registry-parse", "registry", _probe_registry))
    probes.append(_make_probe("fs-ssh-key", "fs", _probe_ssh_key))
    probes.append(_make_probe("tls-certificates", "tls", _probe_tls))
    return tuple(probes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: str,
    category: ProbeCategory,
    handler: Callable[[ProbeContext], ProbeResult],
) -> ProbeDefinition:
    return ProbeDefinition(id=probe_id, category=category, run=handler)


def _result(
    probe_id: str,
    category: ProbeCategory,
    status: ProbeStatus,
    message: str,
    *,
    impact: DoctorImpact = DoctorImpact.OK,
    remediation: str | None = None,
    data: dict[str, object] | None = None,
) -> ProbeResult:
    return ProbeResult(
        id=probe_id,
        category=category,
        status=status,
        impact=impact,
        message=message,
        remediation=remediation,
        data=data,
    )


# ---------------------------------------------------------------------------
# Environment probes
# ---------------------------------------------------------------------------


def _env_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    config = context.config
    binaries = [
        ("env-az", config.azure.az_bin, True),
        ("env-terraform", config.terraform.terraform_bin, True),
        ("env-ssh", config.ssh.ssh_bin, True),
        ("env-ssh-keygen", config.ssh.keygen_bin, True),
        ("env-python", config.ansible.python_exec, True),
        ("env-openssl", config.certs.openssl_bin, config.certs.backend == "openssl"),
    ]
    return tuple(
        _make_probe(probe_id, "env", _probe_command(probe_id, command, fatal=fatal))
        for probe_id, command, fatal in binaries
    )


def _probe_command(
    probe_id: str,
    command: str,
    *,
    fatal: bool,
) -> Callable[[ProbeContext], ProbeResult]:
    def _probe(context: ProbeContext) -> ProbeResult:
        resolved = context.which(command)
        if resolved:
            return _result(
                probe_id, "env", ProbeStatus.GREEN, f"{command} found at {resolved}.",
                data={"path": resolved},
            )
        if fatal:
            return _result(
                probe_id,
                "env",
                ProbeStatus.RED,
                f"{command} not found on PATH.",
                impact=DoctorImpact.ENVIRONMENT,
                remediation=f"Install {command} or point the configuration at it.",
            )
        return _result(
            probe_id, "env", ProbeStatus.YELLOW, f"{command} not found on PATH (optional)."
        )

    return _probe


# ---------------------------------------------------------------------------
# Configuration probes
# ---------------------------------------------------------------------------


def _config_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("config-env-file", "config", _probe_env_file),
        _make_probe("config-required", "config", _probe_required_settings),
    )


def _probe_env_file(context: ProbeContext) -> ProbeResult:
    env_file = context.config.env_file
    if env_file.is_file():
        return _result(
            "config-env-file",
            "config",
            ProbeStatus.GREEN,
            f"Loaded {len(context.config.dotenv)} value(s) from {env_file}.",
        )
    return _result(
        "config-env-file",
        "config",
        ProbeStatus.YELLOW,
        f"No .env file at {env_file}; provisioning will refuse to run.",
        remediation="Create the .env file with the pipeline settings.",
    )


def _probe_required_settings(context: ProbeContext) -> ProbeResult:
    missing: list[str] = []
    for key in PIPELINE_SETTINGS:
        try:
            context.config.require(key)
        except ConfigError:
            missing.append(key)
    if not missing:
        return _result(
            "config-required", "config", ProbeStatus.GREEN, "All pipeline settings are present."
        )
    return _result(
        "config-required",
        "config",
        ProbeStatus.RED,
        f"Missing settings: {', '.join(missing)}.",
        impact=DoctorImpact.VALIDATION,
        remediation="Set the missing values in .env or fleetctl.yml.",
        data={"missing": missing},
    )


# ---------------------------------------------------------------------------
# Registry, filesystem and TLS probes
# ---------------------------------------------------------------------------


def _probe_registry(context: ProbeContext) -> ProbeResult:
    config = context.config
    try:
        entries = load_machines(config.machines_file, domain_suffix=config.azure.domain_suffix)
    except (ConfigError, RegistryParseError) as exc:
        return _result(
            "registry-parse",
            "registry",
            ProbeStatus.RED,
            str(exc),
            impact=DoctorImpact.VALIDATION,
            remediation=f"Fix {config.machines_file} before running the pipeline.",
        )
    if not entries:
        return _result(
            "registry-parse",
            "registry",
            ProbeStatus.YELLOW,
            f"{config.machines_file} lists no machines.",
        )
    managed = len(ansible_managed(entries))
    return _result(
        "registry-parse",
        "registry",
        ProbeStatus.GREEN,
        f"{len(entries)} machine(s), {managed} managed by Ansible.",
        data={"machines": len(entries), "ansible_managed": managed},
    )


def _probe_ssh_key(context: ProbeContext) -> ProbeResult:
    key_path = context.config.ssh.private_key_path
    if key_path is None:
        return _result(
            "fs-ssh-key", "fs", ProbeStatus.YELLOW, "No SSH private key configured; ssh defaults apply."
        )
    if not key_path.is_file():
        return _result(
            "fs-ssh-key",
            "fs",
            ProbeStatus.RED,
            f"SSH private key {key_path} does not exist.",
            impact=DoctorImpact.ENVIRONMENT,
            remediation="Set SSH_PRIVATE_KEY_PATH to an existing key.",
        )
    mode = stat.S_IMODE(key_path.stat().st_mode)
    if mode & 0o077:
        return _result(
            "fs-ssh-key",
            "fs",
            ProbeStatus.YELLOW,
            f"SSH private key {key_path} has permissions {mode:03o}; ssh may reject it.",
            remediation=f"chmod 600 {key_path}",
        )
    return _result("fs-ssh-key", "fs", ProbeStatus.GREEN, f"SSH private key {key_path} is usable.")


def _probe_tls(context: ProbeContext) -> ProbeResult:
    config = context.config
    certs_path = config.ansible.certs_path
    if certs_path is None or not certs_path.is_dir():
        return _result(
            "tls-certificates",
            "tls",
            ProbeStatus.YELLOW,
            "Certificate directory not present yet; run 'fleetctl certs generate'.",
        )
    try:
        entries = load_machines(config.machines_file, domain_suffix=config.azure.domain_suffix)
    except (ConfigError, RegistryParseError) as exc:
        return _result(
            "tls-certificates", "tls", ProbeStatus.YELLOW, f"Skipped: {exc}"
        )
    reports = context.tls_validator.validate_fleet(entries, certs_path)
    failing = [report.material.fqdn for report in reports if report.has_errors]
    warning = [report.material.fqdn for report in reports if report.has_warnings]
    if failing:
        return _result(
            "tls-certificates",
            "tls",
            ProbeStatus.RED,
            f"Invalid certificates for: {', '.join(failing)}.",
            impact=DoctorImpact.VALIDATION,
            remediation="Re-run 'fleetctl certs generate'.",
            data={"failing": failing},
        )
    if warning:
        return _result(
            "tls-certificates",
            "tls",
            ProbeStatus.YELLOW,
            f"Certificates need attention for: {', '.join(warning)}.",
            data={"warning": warning},
        )
    return _result(
        "tls-certificates",
        "tls",
        ProbeStatus.GREEN,
        f"{len(reports)} certificate pair(s) valid.",
    )


__all__ = ["PIPELINE_SETTINGS", "collect_probes"]
