"""Pipeline stages.

Each stage validates the settings it needs before touching anything, then
does its work and returns a :class:`StageOutcome`. Configuration and registry
problems propagate as :class:`~fleetctl.config.ConfigError` or
:class:`~fleetctl.machines.RegistryParseError`; tool failures are reported in
the outcome so the caller can log them and choose an exit code.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .bootstrap import BootstrapExecutor, FleetOrchestrator, FleetRunResult
from .certificates import CertificateIssuer
from .config import ConfigError
from .inventory import InventoryError, InventorySettings, write_inventory
from .logging import append_log_line
from .machines import ansible_managed
from .providers.ansible import PLAYBOOK_NAME, AnsibleError
from .providers.azure import AzureError
from .providers.commands import CommandError
from .providers.terraform import TerraformError
from .runtime import RunContext
from .sweeper import FleetDeletionSweeper, SweepError
from .tls import TLSValidationReport, TLSValidator

TERRAFORM_LOG = "tf-apply"
CERTS_LOG = "generate-certs"
ANSIBLE_LOG = "ansible-run"
CLEANUP_LOG = "azure-delete-vm"


class StageStatus(str, Enum):
    """Result classification for a stage."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StageOutcome:
    """What a stage did and whether the pipeline may continue."""

    name: str
    status: StageStatus
    message: str
    rc: int = 0
    changed: int = 0
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    context: dict[str, object] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Return ``True`` when the pipeline may proceed past this stage."""
        return self.rc == 0


def _success(name: str, message: str, **kwargs: object) -> StageOutcome:
    return StageOutcome(name, StageStatus.SUCCESS, message, **kwargs)  # type: ignore[arg-type]


def _warning(name: str, message: str, **kwargs: object) -> StageOutcome:
    return StageOutcome(name, StageStatus.WARNING, message, **kwargs)  # type: ignore[arg-type]


def _error(
    name: str,
    message: str,
    *,
    errors: Sequence[str] = (),
    rc: int = 1,
    **kwargs: object,
) -> StageOutcome:
    return StageOutcome(
        name,
        StageStatus.ERROR,
        message,
        rc=rc or 1,
        errors=tuple(errors) or (message,),
        **kwargs,  # type: ignore[arg-type]
    )


# ----------------------------------------------------------------------
# Provisioning
# ----------------------------------------------------------------------
def provision(ctx: RunContext, *, extra_args: Sequence[str] = ()) -> StageOutcome:
    """Apply the Terraform configuration with ``.env`` values exported."""
    config = ctx.config
    if not config.env_file.is_file():
        raise ConfigError(f".env file not found at {config.env_file}.")
    if not config.terraform.directory.is_dir():
        raise ConfigError(f"Terraform directory not found at {config.terraform.directory}.")
    log_path = ctx.stage_log(TERRAFORM_LOG, header="terraform init/apply")
    append_log_line(log_path, f"Exporting {len(config.dotenv)} variable(s) from {config.env_file}")
    try:
        ctx.terraform().apply(config.dotenv, log_path=log_path, extra_args=tuple(extra_args))
    except TerraformError as exc:
        return _error(
            "provision",
            f"Terraform apply failed (exit {exc.exit_code}). Check {log_path} for details.",
            errors=(str(exc),),
            rc=exc.exit_code,
            context={"log": log_path},
        )
    except CommandError as exc:
        return _error("provision", str(exc), context={"log": log_path})
    return _success(
        "provision",
        f"Terraform apply completed. Full log: {log_path}",
        changed=1,
        context={"log": log_path},
    )


def clear_known_hosts(ctx: RunContext) -> StageOutcome:
    """Forget the host keys of every registry entry."""
    entries = ctx.machines()
    known_hosts = ctx.config.ssh.known_hosts
    if not known_hosts.is_file():
        return _success(
            "known-hosts",
            f"No known_hosts file at {known_hosts}; nothing to clear.",
            context={"known_hosts": known_hosts, "machines": len(entries)},
        )
    ssh = ctx.ssh()
    removed = [entry.fqdn for entry in entries if ssh.forget_host(entry.fqdn)]
    if removed:
        message = f"Removed {len(removed)} SSH host key(s) from known_hosts."
    elif entries:
        message = "No existing SSH host keys found to remove."
    else:
        return _warning("known-hosts", "No valid machine definitions found in the registry.")
    return _success(
        "known-hosts",
        message,
        changed=len(removed),
        context={"removed": removed, "machines": len(entries)},
    )


# ----------------------------------------------------------------------
# Bootstrap
# ----------------------------------------------------------------------
def setup_machines(
    ctx: RunContext,
    *,
    max_workers: int | None = None,
    on_launch: Callable[[FleetRunResult], None] | None = None,
    on_finish: Callable[[FleetRunResult], None] | None = None,
) -> StageOutcome:
    """Bootstrap every registry entry concurrently."""
    config = ctx.config
    if not config.env_file.is_file():
        raise ConfigError(f".env file not found at {config.env_file}.")
    config.require(
        "ssh.user",
        "ssh.private_key_path",
        "suse.registration_code",
        "suse.registration_email",
        "azure.vms_location",
    )
    key_path = config.ssh.private_key_path
    if key_path is not None and not key_path.is_file():
        raise ConfigError(f"SSH private key not found at {key_path}.")
    entries = ctx.machines()
    if any(entry.profile == "full" and "rpm" in entry.base_name for entry in entries):
        config.require("azure.blob_storage", "azure.blob_container", "azure.sas_token")
    if not entries:
        return _warning("setup", "No valid machine definitions found in the registry.")

    executor = BootstrapExecutor(
        ssh=ctx.ssh(),
        templates=ctx.templates,
        settings=ctx.bootstrap_settings(),
        probe=ctx.config.probe,
        sleep=ctx.sleep,
        connect=ctx.connect,
    )
    orchestrator = FleetOrchestrator(
        executor.run,
        lambda entry: ctx.logger.host_log(entry.base_name),
        max_workers=max_workers,
        on_launch=on_launch,
        on_finish=on_finish,
    )
    report = orchestrator.run(entries)
    context = {"report": report.to_dict()}
    if report.ok:
        return _success(
            "setup",
            f"Initialized {len(report.results)} VM(s).",
            changed=len(report.results),
            context=context,
        )
    errors = [
        f"{result.entry.fqdn}: {result.error or 'failed'} (log: {result.log_path})"
        for result in report.failed
    ]
    return _error(
        "setup",
        f"{len(report.failed)} VM(s) failed during initialization. Check logs in {ctx.config.logs_dir}.",
        errors=errors,
        changed=len(report.results) - len(report.failed),
        context=context,
    )


# ----------------------------------------------------------------------
# Certificates
# ----------------------------------------------------------------------
def generate_certificates(ctx: RunContext) -> StageOutcome:
    """Issue a self-signed certificate for each Ansible-managed host."""
    ctx.config.require("azure.vms_location", "ansible.certs_path")
    entries = ctx.machines()
    certs_dir = _required_path(ctx.config.ansible.certs_path, "ansible.certs_path")
    log_path = ctx.stage_log(CERTS_LOG, header="certificate issuance")
    issuer = CertificateIssuer(backend=ctx.certificate_backend(log_path), certs_dir=certs_dir)
    report = issuer.issue_all(entries)
    for artifact in report.artifacts:
        append_log_line(log_path, f"Issued {artifact.certificate_path}")
    for failure in report.failures:
        append_log_line(log_path, f"FAILED {failure}")
    context = {"certs_dir": certs_dir, "log": log_path, "report": report.to_dict()}
    if report.total == 0:
        return _warning(
            "certs",
            "No Ansible-managed machine definitions found; no certificates issued.",
            warnings=("no-eligible-machines",),
            context=context,
        )
    if report.failures:
        return _warning(
            "certs",
            f"Generated {report.succeeded} out of {report.total} certificates. Check {log_path}.",
            warnings=report.failures,
            changed=report.succeeded,
            context=context,
        )
    return _success(
        "certs",
        f"All {report.succeeded} certificates generated successfully.",
        changed=report.succeeded,
        context=context,
    )


def verify_certificates(ctx: RunContext) -> list[TLSValidationReport]:
    """Validate the issued certificate of every Ansible-managed host."""
    ctx.config.require("azure.vms_location", "ansible.certs_path")
    entries = ctx.machines()
    certs_dir = _required_path(ctx.config.ansible.certs_path, "ansible.certs_path")
    validator = TLSValidator(warn_expiry_days=ctx.config.certs.warn_expiry_days)
    return validator.validate_fleet(entries, certs_dir)


# ----------------------------------------------------------------------
# Inventory and playbooks
# ----------------------------------------------------------------------
def generate_inventory(ctx: RunContext) -> StageOutcome:
    """Write the Ansible inventory for the managed hosts."""
    ctx.config.require(
        "ansible.certs_path", "ssh.user", "azure.vms_location", "ansible.inventories_path"
    )
    entries = ctx.machines()
    settings = InventorySettings(
        ssh_user=ctx.config.ssh.user or "",
        certs_path=_required_path(ctx.config.ansible.certs_path, "ansible.certs_path"),
    )
    inventories = _required_path(ctx.config.ansible.inventories_path, "ansible.inventories_path")
    try:
        path, changed = write_inventory(entries, settings, inventories)
    except InventoryError as exc:
        return _error("inventory", f"{exc} ({ctx.config.machines_file})")
    hosts = [entry.fqdn for entry in ansible_managed(entries)]
    return _success(
        "inventory",
        f"Generated {path} with {len(hosts)} host(s).",
        changed=int(changed),
        context={"path": path, "hosts": hosts},
    )


def run_playbooks(ctx: RunContext) -> StageOutcome:
    """Prepare the Ansible virtualenv and run the project playbook."""
    ctx.config.require("ansible.inventories_path", "ansible.project_path")
    ansible_config = ctx.config.ansible
    inventory = ansible_config.inventory_file
    project = _required_path(ansible_config.project_path, "ansible.project_path")
    if inventory is None or not inventory.is_file():
        raise ConfigError(f"Inventory file not found at {inventory}.")
    playbook = project / PLAYBOOK_NAME
    if not playbook.is_file():
        raise ConfigError(f"Playbook file not found at {playbook}.")
    requirements_dir = ansible_config.requirements_path or project

    log_path = ctx.stage_log(ANSIBLE_LOG, header="ansible playbook run")
    provider = ctx.ansible(log_path)
    steps: list[str] = []
    try:
        steps.append("venv-created" if provider.ensure_venv() else "venv-reused")
        if provider.install_collections(requirements_dir):
            steps.append("collections-installed")
        append_log_line(log_path, f"Inventory: {inventory}")
        append_log_line(log_path, f"Playbook:  {playbook}")
        provider.run_playbook(inventory, playbook)
    except (AnsibleError, CommandError) as exc:
        append_log_line(log_path, "Playbook failed")
        return _error(
            "playbook",
            f"Ansible playbook failed. Check {log_path} for details.",
            errors=(str(exc),),
            context={"log": log_path, "steps": steps},
        )
    append_log_line(log_path, "Playbook finished successfully")
    return _success(
        "playbook",
        "Ansible playbook completed successfully.",
        changed=1,
        context={"log": log_path, "steps": steps, "inventory": inventory, "playbook": playbook},
    )


# ----------------------------------------------------------------------
# Cleanup
# ----------------------------------------------------------------------
def cleanup(ctx: RunContext) -> StageOutcome:
    """Delete VMs and dependencies from the configured resource group."""
    ctx.config.require("azure.resource_group")
    resource_group = ctx.config.azure.resource_group or ""
    log_path = ctx.stage_log(CLEANUP_LOG, header=f"delete resources in {resource_group}")
    sweeper = FleetDeletionSweeper(
        azure=ctx.azure(log_path),
        settings=ctx.config.sweep,
        sleep=ctx.sleep,
        emit=lambda message: append_log_line(log_path, message),
    )
    try:
        report = sweeper.sweep(resource_group)
    except (SweepError, AzureError, CommandError) as exc:
        return _error("cleanup", str(exc), context={"log": log_path})
    context = {"log": log_path, "report": report.to_dict()}
    if report.complete:
        return _success(
            "cleanup",
            f"Delete process completed successfully. Full log: {log_path}",
            changed=len(report.vms_deleted) + sum(len(item.deleted) for item in report.passes),
            context=context,
        )
    return _warning(
        "cleanup",
        f"Delete process completed with warnings. Check {log_path} for details.",
        rc=1,
        warnings=tuple(resource.id for resource in report.remaining),
        context=context,
    )


# ----------------------------------------------------------------------
# Full pipeline
# ----------------------------------------------------------------------
Stage = Callable[[RunContext], StageOutcome]

PIPELINE_STAGES: tuple[tuple[str, Stage], ...] = (
    ("Provision Azure infrastructure with Terraform", provision),
    ("Clear SSH known hosts", clear_known_hosts),
    ("Set up machines", setup_machines),
    ("Generate SSL certificates", generate_certificates),
    ("Generate Ansible inventory", generate_inventory),
    ("Run Ansible playbooks", run_playbooks),
)


def run_pipeline(
    ctx: RunContext,
    *,
    stages: Sequence[tuple[str, Stage]] = PIPELINE_STAGES,
    on_stage_start: Callable[[str], None] | None = None,
    on_stage_end: Callable[[StageOutcome], None] | None = None,
) -> list[StageOutcome]:
    """Purge stage logs, then run *stages* in order until one fails."""
    ctx.logger.purge()
    outcomes: list[StageOutcome] = []
    for title, stage in stages:
        if on_stage_start is not None:
            on_stage_start(title)
        outcome = stage(ctx)
        outcomes.append(outcome)
        if on_stage_end is not None:
            on_stage_end(outcome)
        if not outcome.ok:
            break
    return outcomes


def _required_path(value: Path | None, key: str) -> Path:
    if value is None:
        raise ConfigError(f"Missing required settings: {key}.")
    return value


__all__ = [
    "PIPELINE_STAGES",
    "Stage",
    "StageOutcome",
    "StageStatus",
    "cleanup",
    "clear_known_hosts",
    "generate_certificates",
    "generate_inventory",
    "provision",
    "run_pipeline",
    "run_playbooks",
    "setup_machines",
    "verify_certificates",
]
