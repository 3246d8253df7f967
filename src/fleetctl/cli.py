"""Typer-powered command line for ``fleetctl``.

Every command runs inside a structured logger operation so the outcome lands
in ``operations.jsonl`` next to the per-stage and per-host logs. Stage
functions live in :mod:`fleetctl.pipeline`; this module only wires options,
renders results and maps outcomes to exit codes.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from functools import partial
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .bootstrap import FleetRunResult, RunStatus
from .config import ConfigError, load_config
from .doctor import (
    DoctorEngine,
    DoctorImpact,
    DoctorReport,
    ProbeExecutorOptions,
    ProbeStatus,
    collect_probes,
    create_probe_context,
)
from .exit_codes import ExitCode
from .logging import OperationScope
from .machines import RegistryParseError
from .pipeline import (
    PIPELINE_STAGES,
    Stage,
    StageOutcome,
    StageStatus,
    cleanup,
    clear_known_hosts,
    generate_certificates,
    generate_inventory,
    provision,
    run_pipeline,
    run_playbooks,
    setup_machines,
    verify_certificates,
)
from .providers import SubprocessRunner
from .runtime import RunContext, build_run_context
from .tls import TLSValidationReport, TLSValidationSeverity

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to fleetctl's YAML config file.",
)
ENV_FILE_OPTION = typer.Option(
    None,
    "--env-file",
    dir_okay=False,
    help="Read pipeline settings from this dotenv file instead of <project>/.env.",
)
PROJECT_ROOT_OPTION = typer.Option(
    None,
    "--project-root",
    file_okay=False,
    help="Directory holding .env, the machine registry and the terraform/ tree.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)
MAX_WORKERS_OPTION = typer.Option(
    None,
    "--max-workers",
    min=1,
    help="Bootstrap at most this many hosts at once (default: all of them).",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Skip the confirmation prompt.",
)
DOCTOR_MAX_CONCURRENCY_OPTION = typer.Option(
    None,
    "--max-concurrency",
    min=1,
    help="Maximum number of probes to run in parallel.",
)

_STAGE_STATUS_STYLE = {
    StageStatus.SUCCESS: "green",
    StageStatus.WARNING: "yellow",
    StageStatus.ERROR: "red",
}
_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]PASS[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}
_DOCTOR_IMPACT_MESSAGES = {
    DoctorImpact.OK: "Doctor run completed successfully.",
    DoctorImpact.VALIDATION: "Doctor detected configuration validation errors.",
    DoctorImpact.ENVIRONMENT: "Doctor detected environment dependency errors.",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision, bootstrap and configure a fleet of SUSE test VMs on Azure.

        Run the whole pipeline with `fleetctl run`, or drive each stage on its
        own. Settings come from the project's .env file, the environment and
        an optional fleetctl.yml.
        """
    ).strip(),
)
known_hosts_app = typer.Typer(help="Manage SSH host keys for fleet machines.")
certs_app = typer.Typer(help="Issue and validate per-host TLS certificates.")
inventory_app = typer.Typer(help="Generate the Ansible inventory.")
playbook_app = typer.Typer(help="Run the Ansible project against the fleet.")
machines_app = typer.Typer(help="Inspect the machine registry.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(known_hosts_app, name="known-hosts")
app.add_typer(certs_app, name="certs")
app.add_typer(inventory_app, name="inventory")
app.add_typer(playbook_app, name="playbook")
app.add_typer(machines_app, name="machines")
app.add_typer(config_app, name="config")


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    env_file: Path | None = None,
    project_root: Path | None = None,
) -> RunContext:
    runtime = ctx.obj
    if isinstance(runtime, RunContext):
        return runtime

    try:
        config = load_config(project_root, config_file=config_file, env_file=env_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc
    runtime = build_run_context(config, SubprocessRunner(), console=console)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RunContext:
    runtime = ctx.obj
    if isinstance(runtime, RunContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the fleetctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    env_file: Path | None = ENV_FILE_OPTION,
    project_root: Path | None = PROJECT_ROOT_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"fleetctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, env_file, project_root)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _print_outcome(outcome: StageOutcome) -> None:
    style = _STAGE_STATUS_STYLE[outcome.status]
    console.print(f"[{style}]{outcome.message}[/{style}]")
    for warning in outcome.warnings:
        console.print(f"  [yellow]- {warning}[/yellow]")
    if outcome.status is StageStatus.ERROR:
        for error in outcome.errors:
            if error != outcome.message:
                console.print(f"  [red]- {error}[/red]")


def _finish(op: OperationScope, outcome: StageOutcome) -> None:
    """Record *outcome* on *op* and exit non-zero when the stage failed."""
    _print_outcome(outcome)
    if outcome.status is StageStatus.SUCCESS:
        op.success(outcome.message, changed=outcome.changed, context=outcome.context)
    elif outcome.status is StageStatus.WARNING:
        op.warning(
            outcome.message,
            warnings=list(outcome.warnings) or None,
            changed=outcome.changed,
            rc=outcome.rc,
            context=outcome.context,
        )
    else:
        op.error(
            outcome.message,
            errors=list(outcome.errors),
            rc=outcome.rc,
            context=outcome.context,
        )
    if outcome.rc:
        raise typer.Exit(code=outcome.rc)


def _run_stage(
    ctx: typer.Context,
    command: str,
    stage: Stage,
    *,
    args: dict[str, object] | None = None,
    scope: str,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        command,
        args=args,
        target={"kind": "fleet", "scope": scope},
    ) as op:
        try:
            outcome = stage(runtime)
        except (ConfigError, RegistryParseError) as exc:
            _command_error(op, str(exc))
        _finish(op, outcome)


def _host_launched(result: FleetRunResult) -> None:
    console.print(
        f"Initializing {result.entry.base_name} ({result.entry.profile}); log: {result.log_path}"
    )


def _host_finished(result: FleetRunResult) -> None:
    if result.status is RunStatus.SUCCEEDED:
        console.print(f"[green]{result.entry.base_name} ready[/green] ({result.duration_ms} ms)")
    else:
        console.print(f"[red]{result.entry.base_name} failed[/red]: {result.error}")


def _setup_stage(max_workers: int | None) -> Stage:
    return partial(
        setup_machines,
        max_workers=max_workers,
        on_launch=_host_launched,
        on_finish=_host_finished,
    )


@app.command()
def run(
    ctx: typer.Context,
    max_workers: int | None = MAX_WORKERS_OPTION,
) -> None:
    """Run every stage from provisioning to playbooks, stopping at the first failure."""
    runtime = _get_runtime(ctx)
    stages = [
        (title, _setup_stage(max_workers) if stage is setup_machines else stage)
        for title, stage in PIPELINE_STAGES
    ]
    with runtime.logger.operation(
        "run",
        args={"max_workers": max_workers},
        target={"kind": "fleet", "scope": "pipeline"},
    ) as op:

        def stage_ended(outcome: StageOutcome) -> None:
            _print_outcome(outcome)
            op.add_step(outcome.name, status=outcome.status.value, detail=outcome.message)

        try:
            outcomes = run_pipeline(
                runtime,
                stages=stages,
                on_stage_start=lambda title: console.rule(title),
                on_stage_end=stage_ended,
            )
        except (ConfigError, RegistryParseError) as exc:
            _command_error(op, str(exc))

        last = outcomes[-1]
        if not last.ok:
            message = f"Pipeline stopped at stage '{last.name}'."
            console.print(f"[red]{message}[/red]")
            op.error(message, errors=list(last.errors), rc=last.rc)
            raise typer.Exit(code=last.rc)

        warnings = [warning for outcome in outcomes for warning in outcome.warnings]
        if any(outcome.status is StageStatus.WARNING for outcome in outcomes):
            console.print("[yellow]Pipeline completed with warnings.[/yellow]")
            op.warning("Pipeline completed with warnings.", warnings=warnings or None)
            return
        console.print("[green]Pipeline completed successfully.[/green]")
        op.success(
            "Pipeline completed successfully.",
            changed=sum(outcome.changed for outcome in outcomes),
        )


@app.command("provision")
def provision_command(
    ctx: typer.Context,
    terraform_args: list[str] | None = typer.Argument(
        None,
        help="Extra arguments appended to 'terraform apply'.",
    ),
) -> None:
    """Provision Azure infrastructure with Terraform."""
    extra = tuple(terraform_args or ())
    _run_stage(
        ctx,
        "provision",
        partial(provision, extra_args=extra),
        args={"terraform_args": list(extra)},
        scope="terraform",
    )


@app.command("setup")
def setup_command(
    ctx: typer.Context,
    max_workers: int | None = MAX_WORKERS_OPTION,
) -> None:
    """Wait for every VM and run its bootstrap script concurrently."""
    _run_stage(
        ctx,
        "setup",
        _setup_stage(max_workers),
        args={"max_workers": max_workers},
        scope="bootstrap",
    )


@app.command("cleanup")
def cleanup_command(
    ctx: typer.Context,
    yes: bool = YES_OPTION,
) -> None:
    """Delete VMs and their dependencies from the resource group."""
    runtime = _get_runtime(ctx)
    resource_group = runtime.config.azure.resource_group
    if not yes and resource_group:
        typer.confirm(
            f"Delete all VMs and dependent resources in '{resource_group}'?",
            abort=True,
        )
    _run_stage(ctx, "cleanup", cleanup, args={"yes": yes}, scope="azure")


@app.command()
def doctor(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    max_concurrency: int | None = DOCTOR_MAX_CONCURRENCY_OPTION,
) -> None:
    """Check local tools, settings and the machine registry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "doctor",
        args={"json": json_output, "max_concurrency": max_concurrency},
        target={"kind": "system", "scope": "health"},
    ) as op:
        defaults = ProbeExecutorOptions()
        options = ProbeExecutorOptions(
            max_concurrency=max_concurrency or defaults.max_concurrency,
        )
        context = create_probe_context(runtime, options)
        report = DoctorEngine(context).run(list(collect_probes(context)))
        payload = report.to_dict()

        if json_output:
            console.print_json(data=payload)
        else:
            _render_doctor_report(report)

        summary = report.summary
        warning_ids = [r.id for r in report.results if r.status is ProbeStatus.YELLOW]
        error_ids = [r.id for r in report.results if r.status is ProbeStatus.RED]
        log_context = {"report": payload}
        if summary.exit_code == 0:
            if summary.status is ProbeStatus.YELLOW:
                op.warning(
                    "Doctor completed with warnings.",
                    warnings=warning_ids,
                    context=log_context,
                )
            else:
                op.success(_DOCTOR_IMPACT_MESSAGES[DoctorImpact.OK], context=log_context)
            return

        op.error(
            _DOCTOR_IMPACT_MESSAGES[summary.impact],
            rc=summary.exit_code,
            errors=error_ids or None,
            warnings=warning_ids or None,
            context=log_context,
        )
        raise typer.Exit(code=summary.exit_code)


def _render_doctor_report(report: DoctorReport) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Status")
    table.add_column("Probe", style="bold")
    table.add_column("Message")
    for result in report.results:
        message = result.message
        if result.remediation:
            message = f"{message}\n[dim]{result.remediation}[/dim]"
        table.add_row(_PROBE_STATUS_STYLE[result.status], f"{result.category}:{result.id}", message)
    console.print(table)
    summary = report.summary
    if summary.exit_code:
        console.print(f"[red]{_DOCTOR_IMPACT_MESSAGES[summary.impact]}[/red]")
    elif summary.status is ProbeStatus.YELLOW:
        console.print("[yellow]Doctor completed with warnings.[/yellow]")
    else:
        console.print(f"[green]{_DOCTOR_IMPACT_MESSAGES[DoctorImpact.OK]}[/green]")


@known_hosts_app.command("clear")
def known_hosts_clear(ctx: typer.Context) -> None:
    """Forget cached host keys for every registry entry."""
    _run_stage(ctx, "known-hosts clear", clear_known_hosts, scope="ssh")


@certs_app.command("generate")
def certs_generate(ctx: typer.Context) -> None:
    """Issue a self-signed certificate for each Ansible-managed host."""
    _run_stage(ctx, "certs generate", generate_certificates, scope="certificates")


@certs_app.command("verify")
def certs_verify(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Validate the issued certificates against their hosts."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "certs verify",
        args={"json": json_output},
        target={"kind": "fleet", "scope": "certificates"},
    ) as op:
        try:
            reports = verify_certificates(runtime)
        except (ConfigError, RegistryParseError) as exc:
            _command_error(op, str(exc))

        if json_output:
            console.print_json(data=[report.to_dict() for report in reports])
        else:
            _render_tls_reports(reports)

        errors = _findings(reports, TLSValidationSeverity.ERROR)
        warnings = _findings(reports, TLSValidationSeverity.WARNING)
        context = {"reports": [report.to_dict() for report in reports]}
        if errors:
            op.error(
                "Certificate validation failed.",
                errors=errors,
                warnings=warnings,
                context=context,
            )
            raise typer.Exit(code=ExitCode.FAILURE)
        if warnings:
            op.warning(
                "Certificate validation completed with warnings.",
                warnings=warnings,
                context=context,
            )
            return
        op.success(f"Validated {len(reports)} certificate pair(s).", context=context)


def _findings(
    reports: Sequence[TLSValidationReport],
    severity: TLSValidationSeverity,
) -> list[str]:
    return [
        f"{report.material.fqdn} {finding.scope}:{finding.check} {finding.message}"
        for report in reports
        for finding in report.findings
        if finding.severity is severity
    ]


def _severity_label(severity: TLSValidationSeverity) -> str:
    if severity is TLSValidationSeverity.OK:
        return "[green]OK[/green]"
    if severity is TLSValidationSeverity.WARNING:
        return "[yellow]WARN[/yellow]"
    return "[red]ERROR[/red]"


def _render_tls_reports(reports: Sequence[TLSValidationReport]) -> None:
    if not reports:
        console.print("No Ansible-managed machines in the registry.")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Host", style="bold")
    table.add_column("Status")
    table.add_column("Expires")
    table.add_column("Findings")
    for report in reports:
        expires = report.not_valid_after.date().isoformat() if report.not_valid_after else "-"
        notes = [
            finding.message
            for finding in report.findings
            if finding.severity is not TLSValidationSeverity.OK
        ]
        table.add_row(
            report.material.fqdn,
            _severity_label(report.status),
            expires,
            "\n".join(notes) or "-",
        )
    console.print(table)


@inventory_app.command("generate")
def inventory_generate(ctx: typer.Context) -> None:
    """Write the Ansible inventory for Ansible-managed hosts."""
    _run_stage(ctx, "inventory generate", generate_inventory, scope="inventory")


@playbook_app.command("run")
def playbook_run(ctx: typer.Context) -> None:
    """Install Ansible into its virtualenv and run the project playbook."""
    _run_stage(ctx, "playbook run", run_playbooks, scope="ansible")


@machines_app.command("list")
def machines_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the parsed machine registry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "machines list",
        args={"json": json_output},
        target={"kind": "registry", "path": str(runtime.config.machines_file)},
    ) as op:
        try:
            entries = runtime.machines()
        except (ConfigError, RegistryParseError) as exc:
            _command_error(op, str(exc))

        if json_output:
            console.print_json(data=[entry.to_dict() for entry in entries])
            op.success("Rendered machines as JSON.", changed=0)
            return

        if not entries:
            console.print("No machines defined.")
            op.success("No machines defined.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("FQDN")
        table.add_column("OS")
        table.add_column("Role")
        table.add_column("Profile")
        table.add_column("Manual")
        table.add_column("Ansible")
        for entry in entries:
            table.add_row(
                entry.base_name,
                entry.fqdn,
                f"{entry.os_version} SP{entry.service_pack}",
                entry.role.value,
                entry.profile,
                "yes" if entry.manual_only else "no",
                "yes" if entry.ansible_managed else "no",
            )
        console.print(table)
        op.success(f"Listed {len(entries)} machine(s).", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration with secrets masked."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict(mask_secrets=True)

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
