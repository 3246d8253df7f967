"""Pipeline stage tests with fake tools."""
from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from fleetctl.config import AppConfig, ConfigError, load_config
from fleetctl.pipeline import (
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
from fleetctl.providers.commands import CommandResult, CommandSpec
from fleetctl.runtime import RunContext, build_run_context


def _context(config: AppConfig, runner: object) -> RunContext:
    ctx = build_run_context(config, runner, console=Console(record=True))  # type: ignore[arg-type]
    ctx.sleep = lambda seconds: None
    ctx.connect = lambda host, port, timeout: True
    return ctx


@pytest.fixture
def registry(write_registry: Callable[..., Path]) -> Path:
    return write_registry("wk,15,4,rpm", "wk,15,5,helm", "wk,16,0,rpm")


def test_provision_exports_env_and_applies(
    tmp_path: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Terraform sees every .env value under both spellings."""
    (tmp_path / "terraform").mkdir()
    runner = fake_runner()

    outcome = provision(_context(project_config(), runner))

    assert outcome.status is StageStatus.SUCCESS
    specs: list[CommandSpec] = runner.specs  # type: ignore[attr-defined]
    assert [spec.args[2] for spec in specs] == ["init", "apply"]
    assert specs[1].env is not None
    assert specs[1].env["TF_VAR_ssh_user"] == "cloudadmin"
    assert specs[1].env["AZURE_VMS_LOCATION"] == "westeurope"
    assert (tmp_path / "logs" / "tf-apply.log").is_file()


def test_provision_failure_propagates_exit_code(
    tmp_path: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """A failing apply stops the stage with terraform's exit status."""
    (tmp_path / "terraform").mkdir()
    runner = fake_runner(lambda spec: CommandResult(exit_code=0 if "init" in spec.args else 3))

    outcome = provision(_context(project_config(), runner))

    assert outcome.status is StageStatus.ERROR
    assert outcome.rc == 3
    assert not outcome.ok


def test_provision_requires_env_file_and_directory(
    tmp_path: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Provisioning refuses to start without .env or the terraform tree."""
    with pytest.raises(ConfigError, match=".env file not found"):
        provision(_context(load_config(tmp_path, env={}), fake_runner()))
    with pytest.raises(ConfigError, match="Terraform directory not found"):
        provision(_context(project_config(), fake_runner()))


def test_clear_known_hosts(
    tmp_path: Path,
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Keys are removed per entry only when a known_hosts file exists."""
    runner = fake_runner(lambda spec: CommandResult(exit_code=0, output="updated."))
    ctx = _context(project_config(), runner)

    first = clear_known_hosts(ctx)
    assert first.status is StageStatus.SUCCESS
    assert runner.commands == []  # type: ignore[attr-defined]

    (tmp_path / "known_hosts").write_text("", encoding="utf-8")
    second = clear_known_hosts(ctx)

    assert second.changed == 3
    assert [c[2] for c in runner.commands] == [  # type: ignore[attr-defined]
        "wk15sp4rpm.westeurope.cloudapp.azure.com",
        "wk15sp5helm.westeurope.cloudapp.azure.com",
        "wk16sp0rpm.westeurope.cloudapp.azure.com",
    ]


def test_setup_machines_bootstraps_every_host(
    tmp_path: Path,
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Each host gets its own log and script; all succeed."""
    runner = fake_runner()

    outcome = setup_machines(_context(project_config(), runner))

    assert outcome.status is StageStatus.SUCCESS
    assert outcome.changed == 3
    scripts = [spec for spec in runner.specs if spec.args[-1] == "bash"]  # type: ignore[attr-defined]
    assert len(scripts) == 3
    for name in ("wk15sp4rpm", "wk15sp5helm", "wk16sp0rpm"):
        assert (tmp_path / "logs" / f"{name}.log").is_file()


def test_setup_machines_reports_failed_hosts(
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """A failing host fails the stage while its siblings still finish."""

    def respond(spec: CommandSpec) -> CommandResult:
        if spec.args[-1] == "bash" and any("wk15sp5helm" in arg for arg in spec.args):
            return CommandResult(exit_code=1)
        return CommandResult(exit_code=0)

    runner = fake_runner(respond)
    outcome = setup_machines(_context(project_config(), runner))

    assert outcome.status is StageStatus.ERROR
    assert outcome.rc == 1
    assert outcome.changed == 2
    assert len(outcome.errors) == 1
    assert "wk15sp5helm" in outcome.errors[0]
    assert len([s for s in runner.specs if s.args[-1] == "bash"]) == 3  # type: ignore[attr-defined]


def test_setup_requires_blob_storage_for_full_rpm_hosts(
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Package repository hosts need blob storage coordinates."""
    config = project_config(AZURE_BLOB_STORAGE="")
    with pytest.raises(ConfigError, match="AZURE_BLOB_STORAGE"):
        setup_machines(_context(config, fake_runner()))


@pytest.mark.parametrize(
    "missing",
    [
        "SUSE_REGISTRATION_CODE",
        "SUSE_REGISTRATION_EMAIL",
        "SSH_PRIVATE_KEY_PATH",
        "AZURE_BLOB_STORAGE_SAS_TOKEN",
    ],
)
def test_setup_requires_credentials_before_contacting_hosts(
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
    missing: str,
) -> None:
    """Missing credentials abort the stage before any command runs."""
    runner = fake_runner()

    with pytest.raises(ConfigError, match=missing):
        setup_machines(_context(project_config(**{missing: ""}), runner))

    assert runner.commands == []  # type: ignore[attr-defined]


def test_setup_requires_existing_key_and_env_file(
    tmp_path: Path,
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """A dangling key path or a missing .env file is a configuration error."""
    runner = fake_runner()
    config = project_config(SSH_PRIVATE_KEY_PATH=str(tmp_path / "absent"))
    with pytest.raises(ConfigError, match="SSH private key not found"):
        setup_machines(_context(config, runner))

    (tmp_path / ".env").unlink()
    bare = load_config(tmp_path, env={"SSH_USER": "cloudadmin"})
    with pytest.raises(ConfigError, match=".env file not found"):
        setup_machines(_context(bare, runner))

    assert runner.commands == []  # type: ignore[attr-defined]


def test_certificates_then_verify(
    tmp_path: Path,
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Only the managed host is issued a pair, and it verifies cleanly."""
    ctx = _context(project_config(), fake_runner())

    outcome = generate_certificates(ctx)
    reports = verify_certificates(ctx)

    assert outcome.status is StageStatus.SUCCESS
    assert outcome.message == "All 1 certificates generated successfully."
    assert sorted(p.name for p in (tmp_path / "certs").iterdir()) == [
        "wk15sp4rpm.westeurope.cloudapp.azure.com.crt",
        "wk15sp4rpm.westeurope.cloudapp.azure.com.key",
    ]
    assert [report.has_errors for report in reports] == [False]


def test_certificates_without_eligible_hosts_warn(
    write_registry: Callable[..., Path],
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """An all-helm registry is a warning, not a failure."""
    write_registry("wk,15,5,helm")

    outcome = generate_certificates(_context(project_config(), fake_runner()))

    assert outcome.status is StageStatus.WARNING
    assert outcome.rc == 0


def test_inventory_stage(
    tmp_path: Path,
    registry: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """The inventory lists the single managed host."""
    outcome = generate_inventory(_context(project_config(), fake_runner()))

    assert outcome.status is StageStatus.SUCCESS
    assert outcome.context["hosts"] == ["wk15sp4rpm.westeurope.cloudapp.azure.com"]
    assert (tmp_path / "inventories" / "inventory.yml").is_file()


def test_inventory_stage_without_managed_hosts_fails(
    write_registry: Callable[..., Path],
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """No managed hosts means no inventory and a failed stage."""
    write_registry("wk,16,0,rpm")

    outcome = generate_inventory(_context(project_config(), fake_runner()))

    assert outcome.status is StageStatus.ERROR


def test_playbooks_require_inventory_and_playbook(
    tmp_path: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Missing inputs are configuration errors; present inputs run the playbook."""
    ctx = _context(project_config(), fake_runner())
    with pytest.raises(ConfigError, match="Inventory file not found"):
        run_playbooks(ctx)

    (tmp_path / "inventories").mkdir()
    (tmp_path / "inventories" / "inventory.yml").write_text("all: {}\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Playbook file not found"):
        run_playbooks(ctx)

    (tmp_path / "ansible").mkdir()
    (tmp_path / "ansible" / "playbook.yml").write_text("- hosts: all\n", encoding="utf-8")
    outcome = run_playbooks(ctx)

    assert outcome.status is StageStatus.SUCCESS
    assert outcome.context["steps"] == ["venv-created"]
    log = (tmp_path / "logs" / "ansible-run.log").read_text(encoding="utf-8")
    assert "Playbook finished successfully" in log


def test_cleanup_incomplete_sweep_fails_with_warning(
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Leftover resources make cleanup exit non-zero."""
    leftover = json.dumps([{"id": "/x/nic", "name": "nic", "type": "Microsoft.Network/nics"}])

    def respond(spec: CommandSpec) -> CommandResult:
        if spec.args[1:3] == ("vm", "list"):
            return CommandResult(exit_code=0, output="[]")
        if spec.args[1:3] == ("resource", "list"):
            return CommandResult(exit_code=0, output=leftover)
        return CommandResult(exit_code=0)

    outcome = cleanup(_context(project_config(), fake_runner(respond)))

    assert outcome.status is StageStatus.WARNING
    assert outcome.rc == 1
    assert outcome.warnings == ("/x/nic",)


def test_cleanup_missing_group(
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """An inaccessible resource group fails the stage."""
    outcome = cleanup(_context(project_config(), fake_runner(lambda s: CommandResult(3))))

    assert outcome.status is StageStatus.ERROR
    assert "does not exist" in outcome.message


def test_run_pipeline_stops_at_first_failure(
    tmp_path: Path,
    project_config: Callable[..., AppConfig],
    fake_runner: Callable[..., object],
) -> None:
    """Stages after a failing one never run and old logs are purged first."""
    ctx = _context(project_config(), fake_runner())
    stale = tmp_path / "logs" / "old-host.log"
    stale.parent.mkdir(parents=True, exist_ok=True)
    stale.write_text("stale", encoding="utf-8")
    ran: list[str] = []

    def stage(name: str, rc: int) -> Callable[[RunContext], StageOutcome]:
        def _run(ctx: RunContext) -> StageOutcome:
            ran.append(name)
            status = StageStatus.SUCCESS if rc == 0 else StageStatus.ERROR
            return StageOutcome(name, status, name, rc=rc)

        return _run

    outcomes = run_pipeline(
        ctx,
        stages=[("a", stage("a", 0)), ("b", stage("b", 2)), ("c", stage("c", 0))],
    )

    assert ran == ["a", "b"]
    assert outcomes[-1].rc == 2
    assert not stale.exists()
