"""External tool provider tests using a fake command runner."""
from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from fleetctl.providers import (
    AnsibleError,
    AnsibleProvider,
    AzureError,
    AzureProvider,
    CommandError,
    CommandResult,
    CommandSpec,
    SSHProvider,
    SubprocessRunner,
    TerraformError,
    TerraformProvider,
)
from fleetctl.providers.commands import TIMEOUT_EXIT_CODE, run_checked
from fleetctl.providers.ssh import SSHError
from fleetctl.providers.terraform import terraform_environment


def test_subprocess_runner_merges_output_and_writes_transcript(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Captured output is returned and appended to the log with the command line."""
    captured: dict[str, object] = {}

    def fake_run(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        captured.update(kwargs)
        return subprocess.CompletedProcess(args, 3, stdout="hello\nworld")

    monkeypatch.setattr(subprocess, "run", fake_run)
    log_path = tmp_path / "logs" / "tf-apply.log"

    result = SubprocessRunner().run(
        CommandSpec.of("terraform", "init", env={"A": "1"}, log_path=log_path)
    )

    assert result.exit_code == 3
    assert result.output == "hello\nworld"
    assert captured["stderr"] is subprocess.STDOUT
    env = captured["env"]
    assert isinstance(env, dict) and env["A"] == "1" and "PATH" in env
    assert log_path.read_text(encoding="utf-8") == "$ terraform init\nhello\nworld\n[exit 3]\n"


def test_subprocess_runner_timeout_and_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    """Timeouts map to exit 124; a missing binary raises CommandError."""

    def timeout(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(args, 1.0, output="partial")

    monkeypatch.setattr(subprocess, "run", timeout)
    result = SubprocessRunner().run(CommandSpec.of("ssh", "host", timeout=1.0))
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.timed_out
    assert result.output.startswith("partial")

    def missing(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(subprocess, "run", missing)
    with pytest.raises(CommandError, match="az not found"):
        SubprocessRunner().run(CommandSpec.of("az", "group", "show"))


def test_run_checked_raises_with_last_output_line(fake_runner: Callable[..., object]) -> None:
    """Failures surface the tool's final line of output."""
    runner = fake_runner(lambda spec: CommandResult(exit_code=2, output="noise\nreal problem\n"))

    with pytest.raises(RuntimeError, match="exit 2\\): real problem"):
        run_checked(runner, CommandSpec.of("tool"), error=RuntimeError)  # type: ignore[arg-type]


def test_ssh_arguments_and_forget_host(
    tmp_path: Path,
    fake_runner: Callable[..., object],
) -> None:
    """Host-key checking accepts new keys; ssh-keygen -R reports removals."""
    outputs = iter(
        [
            "# Host a.example found: line 1\n/home/u/.ssh/known_hosts updated.\n",
            "Host b.example not found in /home/u/.ssh/known_hosts\n",
        ]
    )
    runner = fake_runner(lambda spec: CommandResult(exit_code=0, output=next(outputs)))
    ssh = SSHProvider(
        runner=runner,  # type: ignore[arg-type]
        user="cloudadmin",
        private_key_path=tmp_path / "id_rsa",
        known_hosts=tmp_path / "known_hosts",
    )

    assert ssh.base_args("a.example") == [
        "ssh",
        "-o",
        "StrictHostKeyChecking=accept-new",
        "-o",
        "BatchMode=yes",
        "-i",
        str(tmp_path / "id_rsa"),
        "cloudadmin@a.example",
    ]
    assert ssh.forget_host("a.example") is True
    assert ssh.forget_host("b.example") is False
    assert runner.commands[0] == (  # type: ignore[attr-defined]
        "ssh-keygen",
        "-R",
        "a.example",
        "-f",
        str(tmp_path / "known_hosts"),
    )


def test_ssh_requires_user(fake_runner: Callable[..., object]) -> None:
    """An empty user is rejected before anything runs."""
    ssh = SSHProvider(runner=fake_runner(), user="")  # type: ignore[arg-type]
    with pytest.raises(SSHError):
        ssh.check_login("a.example")


def test_azure_json_parsing_and_errors(fake_runner: Callable[..., object]) -> None:
    """Listings parse JSON; failures and malformed output raise AzureError."""
    responses = iter(
        [
            CommandResult(exit_code=0, output='[{"name": "vm1"}, {"name": ""}, {}]'),
            CommandResult(exit_code=1, output="ERROR: (AuthorizationFailed)"),
            CommandResult(exit_code=0, output="not json"),
            CommandResult(exit_code=0, output='{"name": "vm1"}'),
        ]
    )
    runner = fake_runner(lambda spec: next(responses))
    azure = AzureProvider(runner=runner)  # type: ignore[arg-type]

    assert azure.list_vm_names("rg") == ["vm1"]
    assert runner.commands[0] == (  # type: ignore[attr-defined]
        "az",
        "vm",
        "list",
        "--resource-group",
        "rg",
        "--output",
        "json",
        "--only-show-errors",
    )
    with pytest.raises(AzureError, match="AuthorizationFailed"):
        azure.list_vm_names("rg")
    with pytest.raises(AzureError, match="Unexpected output"):
        azure.list_resources("rg")
    with pytest.raises(AzureError, match="Expected a JSON list"):
        azure.list_resources("rg")


def test_terraform_environment_exports_both_spellings() -> None:
    """Every value is exported as-is and as a lowercase TF_VAR."""
    env = terraform_environment({"AZURE_VMS_LOCATION": "westeurope", "SSH_USER": "u"})

    assert env == {
        "AZURE_VMS_LOCATION": "westeurope",
        "TF_VAR_azure_vms_location": "westeurope",
        "SSH_USER": "u",
        "TF_VAR_ssh_user": "u",
    }


def test_terraform_apply_runs_init_then_apply(
    tmp_path: Path,
    fake_runner: Callable[..., object],
) -> None:
    """init precedes apply and a failing step carries its exit code."""
    runner = fake_runner()
    terraform = TerraformProvider(runner=runner, directory=tmp_path)  # type: ignore[arg-type]

    terraform.apply({"SSH_USER": "u"})

    assert runner.commands == [  # type: ignore[attr-defined]
        ("terraform", f"-chdir={tmp_path}", "init"),
        ("terraform", f"-chdir={tmp_path}", "apply", "-auto-approve"),
    ]
    assert runner.specs[1].env["TF_VAR_ssh_user"] == "u"  # type: ignore[attr-defined]

    failing = fake_runner(lambda spec: CommandResult(exit_code=0 if "init" in spec.args else 7))
    with pytest.raises(TerraformError) as excinfo:
        TerraformProvider(runner=failing, directory=tmp_path).apply({})  # type: ignore[arg-type]
    assert excinfo.value.exit_code == 7


def test_ansible_builds_venv_once_and_runs_playbook(
    tmp_path: Path,
    fake_runner: Callable[..., object],
) -> None:
    """The venv is built when missing; collections install only with requirements."""
    runner = fake_runner()
    venv = tmp_path / ".venv-ansible"
    provider = AnsibleProvider(runner=runner, venv_dir=venv)  # type: ignore[arg-type]

    assert provider.ensure_venv() is True
    assert runner.commands == [  # type: ignore[attr-defined]
        ("python3", "-m", "venv", str(venv)),
        (str(venv / "bin" / "pip"), "install", "--upgrade", "pip"),
        (str(venv / "bin" / "pip"), "install", "ansible-core==2.16.*"),
    ]

    provider.playbook_bin.parent.mkdir(parents=True)
    provider.playbook_bin.touch()
    assert provider.ensure_venv() is False

    assert provider.install_collections(tmp_path) is False
    (tmp_path / "requirements.yml").write_text("collections: []\n", encoding="utf-8")
    assert provider.install_collections(tmp_path) is True
    provider.run_playbook(tmp_path / "inventory.yml", tmp_path / "playbook.yml")

    assert runner.commands[-2][1:] == (  # type: ignore[attr-defined]
        "collection",
        "install",
        "-r",
        str(tmp_path / "requirements.yml"),
    )
    assert runner.commands[-1] == (  # type: ignore[attr-defined]
        str(venv / "bin" / "ansible-playbook"),
        "-i",
        str(tmp_path / "inventory.yml"),
        str(tmp_path / "playbook.yml"),
    )


def test_ansible_failure_raises(tmp_path: Path, fake_runner: Callable[..., object]) -> None:
    """A failing playbook raises AnsibleError."""
    runner = fake_runner(lambda spec: CommandResult(exit_code=2))
    provider = AnsibleProvider(runner=runner, venv_dir=tmp_path)  # type: ignore[arg-type]

    with pytest.raises(AnsibleError, match="exit 2"):
        provider.run_playbook(tmp_path / "inventory.yml", tmp_path / "playbook.yml")
