"""Shared fixtures for the fleetctl test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from fleetctl.config import AppConfig, load_config
from fleetctl.providers.commands import CommandResult, CommandSpec

REGISTRY_HEADER = "prefix,slesVersion,spVersion,suffix\n"

Responder = Callable[[CommandSpec], CommandResult]


class FakeRunner:
    """Record every command and answer from a responder callable."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.specs: list[CommandSpec] = []
        self._responder = responder or (lambda spec: CommandResult(exit_code=0))

    def run(self, spec: CommandSpec) -> CommandResult:
        self.specs.append(spec)
        return self._responder(spec)

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [spec.args for spec in self.specs]


@pytest.fixture
def fake_runner() -> Callable[..., FakeRunner]:
    """Return a factory for :class:`FakeRunner` instances."""

    def _factory(responder: Responder | None = None) -> FakeRunner:
        return FakeRunner(responder)

    return _factory


@pytest.fixture
def write_registry(tmp_path: Path) -> Callable[..., Path]:
    """Write ``.machines.conf.csv`` under *tmp_path* from data rows."""

    def _write(*rows: str, header: bool = True) -> Path:
        path = tmp_path / ".machines.conf.csv"
        body = "".join(f"{row}\n" for row in rows)
        path.write_text((REGISTRY_HEADER if header else "") + body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def project_config(tmp_path: Path) -> Callable[..., AppConfig]:
    """Load configuration rooted at *tmp_path* with a complete ``.env``."""

    def _load(**env_values: str) -> AppConfig:
        key_file = tmp_path / "id_ed25519"
        key_file.write_text("private-key\n", encoding="utf-8")
        key_file.chmod(0o600)
        values = {
            "SSH_USER": "cloudadmin",
            "SSH_PRIVATE_KEY_PATH": str(key_file),
            "AZURE_VMS_LOCATION": "westeurope",
            "AZURE_RESOURCE_GROUP": "rg-fleet",
            "SUSE_REGISTRATION_CODE": "REG-CODE",
            "SUSE_REGISTRATION_EMAIL": "ops@example.com",
            "AZURE_BLOB_STORAGE": "fleetblobs",
            "AZURE_BLOB_STORAGE_CONTAINER": "rpms",
            "AZURE_BLOB_STORAGE_SAS_TOKEN": "sv=2024&sig=abc",
            "ANSIBLE_VM_CERTS_PATH": str(tmp_path / "certs"),
            "ANSIBLE_INVENTORIES_PATH": str(tmp_path / "inventories"),
            "ANSIBLE_PROJECT_PATH": str(tmp_path / "ansible"),
        }
        values.update(env_values)
        lines = [f"{key}={value}" for key, value in values.items() if value]
        (tmp_path / ".env").write_text("\n".join(lines) + "\n", encoding="utf-8")
        return load_config(
            tmp_path,
            env={"FLEETCTL_SSH__KNOWN_HOSTS": str(tmp_path / "known_hosts")},
        )

    return _load
