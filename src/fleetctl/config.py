"""Configuration loader for fleetctl.

Settings are merged from several sources, lowest precedence first:

1. Built-in defaults (:data:`DEFAULTS`).
2. ``fleetctl.yml`` in the project root (or an explicit override path).
3. The process environment, for the flat keys the pipeline has always used
   (``SSH_USER``, ``AZURE_VMS_LOCATION``...).
4. The project's ``.env`` file, for the same flat keys. Values sourced from
   ``.env`` win over the inherited environment, matching ``set -a; source``.
5. Environment variables prefixed with ``FLEETCTL_``. Double underscores
   express nesting, e.g.::

       export FLEETCTL_PROBE__PORT_ATTEMPTS=5
       export FLEETCTL_CERTS__BACKEND=openssl

6. Explicit overrides supplied programmatically (CLI flags).

Flat keys are kept as raw strings: registration codes and SAS tokens must not
be reinterpreted. ``FLEETCTL_`` values are coerced through PyYAML so numbers
and booleans parse naturally. Relative paths resolve against the project
root. The result is exposed as immutable dataclasses.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml
from dotenv import dotenv_values

ENV_PREFIX = "FLEETCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
PROJECT_ROOT_ENV_VAR = f"{ENV_PREFIX}PROJECT_ROOT"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR, PROJECT_ROOT_ENV_VAR}

# Flat keys read from ``.env`` and the environment, mapped onto the nested tree.
LEGACY_ENV_KEYS: dict[str, tuple[str, str]] = {
    "SSH_USER": ("ssh", "user"),
    "SSH_PRIVATE_KEY_PATH": ("ssh", "private_key_path"),
    "SUSE_REGISTRATION_CODE": ("suse", "registration_code"),
    "SUSE_REGISTRATION_EMAIL": ("suse", "registration_email"),
    "AZURE_VMS_LOCATION": ("azure", "vms_location"),
    "AZURE_RESOURCE_GROUP": ("azure", "resource_group"),
    "AZURE_BLOB_STORAGE": ("azure", "blob_storage"),
    "AZURE_BLOB_STORAGE_CONTAINER": ("azure", "blob_container"),
    "AZURE_BLOB_STORAGE_SAS_TOKEN": ("azure", "sas_token"),
    "ANSIBLE_VM_CERTS_PATH": ("ansible", "certs_path"),
    "ANSIBLE_INVENTORIES_PATH": ("ansible", "inventories_path"),
    "ANSIBLE_PROJECT_PATH": ("ansible", "project_path"),
    "ANSIBLE_REQUIREMENTS_PATH": ("ansible", "requirements_path"),
    "ANSIBLE_PYTHON_EXEC": ("ansible", "python_exec"),
}
_DOTTED_TO_ENV = {f"{section}.{key}": name for name, (section, key) in LEGACY_ENV_KEYS.items()}

SECRET_KEYS = {"suse.registration_code", "azure.sas_token"}
PROTECTED_RESOURCE_TYPES = (
    "Microsoft.Storage/storageAccounts",
    "Microsoft.ContainerRegistry/registries",
)
ALLOWED_CERT_BACKENDS = {"cryptography", "openssl"}


class ConfigError(RuntimeError):
    """Raised when configuration is missing or cannot be parsed."""


@dataclass(frozen=True)
class SSHConfig:
    """Remote login identity and client binaries."""

    user: str | None = None
    private_key_path: Path | None = None
    known_hosts: Path = Path("~/.ssh/known_hosts").expanduser()
    ssh_bin: str = "ssh"
    keygen_bin: str = "ssh-keygen"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "user": self.user,
            "private_key_path": _path_or_none(self.private_key_path),
            "known_hosts": str(self.known_hosts),
            "ssh_bin": self.ssh_bin,
            "keygen_bin": self.keygen_bin,
        }


@dataclass(frozen=True)
class AzureConfig:
    """Cloud location, resource group and blob storage coordinates."""

    vms_location: str | None = None
    resource_group: str | None = None
    blob_storage: str | None = None
    blob_container: str | None = None
    sas_token: str | None = None
    az_bin: str = "az"

    @property
    def domain_suffix(self) -> str:
        """Return the DNS suffix every VM name is published under."""
        if not self.vms_location:
            raise ConfigError("Missing required settings: AZURE_VMS_LOCATION (azure.vms_location).")
        return f"{self.vms_location}.cloudapp.azure.com"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "vms_location": self.vms_location,
            "resource_group": self.resource_group,
            "blob_storage": self.blob_storage,
            "blob_container": self.blob_container,
            "sas_token": self.sas_token,
            "az_bin": self.az_bin,
        }


@dataclass(frozen=True)
class SuseConfig:
    """SUSE Customer Center registration credentials."""

    registration_code: str | None = None
    registration_email: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "registration_code": self.registration_code,
            "registration_email": self.registration_email,
        }


@dataclass(frozen=True)
class AnsibleConfig:
    """Locations consumed by the inventory, certificate and playbook stages."""

    certs_path: Path | None = None
    inventories_path: Path | None = None
    project_path: Path | None = None
    requirements_path: Path | None = None
    python_exec: str = "python3"
    core_version: str = "2.16.*"
    venv_dir: Path = Path(".venv-ansible")

    @property
    def inventory_file(self) -> Path | None:
        """Return the generated inventory path when the directory is known."""
        if self.inventories_path is None:
            return None
        return self.inventories_path / "inventory.yml"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "certs_path": _path_or_none(self.certs_path),
            "inventories_path": _path_or_none(self.inventories_path),
            "project_path": _path_or_none(self.project_path),
            "requirements_path": _path_or_none(self.requirements_path),
            "python_exec": self.python_exec,
            "core_version": self.core_version,
            "venv_dir": str(self.venv_dir),
        }


@dataclass(frozen=True)
class ProbeConfig:
    """Readiness polling limits."""

    port: int = 22
    port_attempts: int = 20
    port_interval: float = 10.0
    connect_timeout: float = 5.0
    login_attempts: int = 15
    login_interval: float = 15.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "port": self.port,
            "port_attempts": self.port_attempts,
            "port_interval": self.port_interval,
            "connect_timeout": self.connect_timeout,
            "login_attempts": self.login_attempts,
            "login_interval": self.login_interval,
        }


@dataclass(frozen=True)
class SweepConfig:
    """Bounded deletion passes for the cleanup stage."""

    max_passes: int = 3
    vm_settle: float = 60.0
    pass_settle: float = 5.0
    protected_types: tuple[str, ...] = PROTECTED_RESOURCE_TYPES

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "max_passes": self.max_passes,
            "vm_settle": self.vm_settle,
            "pass_settle": self.pass_settle,
            "protected_types": list(self.protected_types),
        }


@dataclass(frozen=True)
class CertsConfig:
    """Certificate issuance backend selection."""

    backend: str = "cryptography"
    openssl_bin: str = "openssl"
    warn_expiry_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "backend": self.backend,
            "openssl_bin": self.openssl_bin,
            "warn_expiry_days": self.warn_expiry_days,
        }


@dataclass(frozen=True)
class TerraformConfig:
    """Infrastructure-as-code working directory and binary."""

    directory: Path = Path("terraform")
    terraform_bin: str = "terraform"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"directory": str(self.directory), "terraform_bin": self.terraform_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for fleetctl."""

    project_root: Path
    config_file: Path
    env_file: Path
    machines_file: Path
    logs_dir: Path
    templates_dir: Path | None
    ssh: SSHConfig
    azure: AzureConfig
    suse: SuseConfig
    ansible: AnsibleConfig
    probe: ProbeConfig
    sweep: SweepConfig
    certs: CertsConfig
    terraform: TerraformConfig
    dotenv: Mapping[str, str] = field(default_factory=dict)

    def require(self, *keys: str) -> None:
        """Raise :class:`ConfigError` listing every dotted *key* left unset."""
        missing: list[str] = []
        for key in keys:
            section_name, _, attr = key.partition(".")
            section = getattr(self, section_name, None)
            value = getattr(section, attr, None) if attr else section
            if value is None or (isinstance(value, str) and not value.strip()):
                env_name = _DOTTED_TO_ENV.get(key)
                missing.append(f"{env_name} ({key})" if env_name else key)
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}.")

    def to_dict(self, *, mask_secrets: bool = False) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        payload: dict[str, object] = {
            "project_root": str(self.project_root),
            "config_file": str(self.config_file),
            "env_file": str(self.env_file),
            "machines_file": str(self.machines_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": _path_or_none(self.templates_dir),
            "ssh": self.ssh.to_dict(),
            "azure": self.azure.to_dict(),
            "suse": self.suse.to_dict(),
            "ansible": self.ansible.to_dict(),
            "probe": self.probe.to_dict(),
            "sweep": self.sweep.to_dict(),
            "certs": self.certs.to_dict(),
            "terraform": self.terraform.to_dict(),
        }
        if mask_secrets:
            for dotted in SECRET_KEYS:
                section, _, key = dotted.partition(".")
                block = cast(dict[str, object], payload[section])
                if block.get(key):
                    block[key] = "********"
        return payload


DEFAULTS: dict[str, object] = {
    "config_file": "fleetctl.yml",
    "env_file": ".env",
    "machines_file": ".machines.conf.csv",
    "logs_dir": "logs",
    "templates_dir": None,
    "ssh": {
        "user": None,
        "private_key_path": None,
        "known_hosts": "~/.ssh/known_hosts",
        "ssh_bin": "ssh",
        "keygen_bin": "ssh-keygen",
    },
    "azure": {
        "vms_location": None,
        "resource_group": None,
        "blob_storage": None,
        "blob_container": None,
        "sas_token": None,
        "az_bin": "az",
    },
    "suse": {
        "registration_code": None,
        "registration_email": None,
    },
    "ansible": {
        "certs_path": None,
        "inventories_path": None,
        "project_path": None,
        "requirements_path": None,
        "python_exec": "python3",
        "core_version": "2.16.*",
        "venv_dir": ".venv-ansible",
    },
    "probe": {
        "port": 22,
        "port_attempts": 20,
        "port_interval": 10,
        "connect_timeout": 5,
        "login_attempts": 15,
        "login_interval": 15,
    },
    "sweep": {
        "max_passes": 3,
        "vm_settle": 60,
        "pass_settle": 5,
        "protected_types": list(PROTECTED_RESOURCE_TYPES),
    },
    "certs": {
        "backend": "cryptography",
        "openssl_bin": "openssl",
        "warn_expiry_days": 30,
    },
    "terraform": {
        "directory": "terraform",
        "terraform_bin": "terraform",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def load_config(
    project_root: str | os.PathLike[str] | None = None,
    *,
    config_file: str | os.PathLike[str] | None = None,
    env_file: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    resolved_env = dict(os.environ if env is None else env)
    root = _determine_project_root(project_root, resolved_env)

    merged: dict[str, object] = _deep_copy(DEFAULTS)

    config_path = _determine_config_path(root, config_file, resolved_env)
    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_path = _resolve(root, env_file) if env_file else _resolve(root, merged["env_file"])
    dotenv = _load_env_file(env_path)

    legacy = _build_legacy_overrides(resolved_env)
    _deep_merge(merged, legacy)
    _deep_merge(merged, _build_legacy_overrides(dotenv))

    prefixed = _build_env_overrides(resolved_env)
    if prefixed:
        _deep_merge(merged, prefixed)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)
    merged["env_file"] = str(env_path)

    _validate_structure(merged)

    return _build_app_config(root, merged, dotenv)


def _determine_project_root(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser().resolve()
    if env.get(PROJECT_ROOT_ENV_VAR):
        return Path(env[PROJECT_ROOT_ENV_VAR]).expanduser().resolve()
    return Path.cwd()


def _determine_config_path(
    root: Path,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return _resolve(root, cli_override)
    if CONFIG_ENV_VAR in env:
        return _resolve(root, env[CONFIG_ENV_VAR])
    return _resolve(root, DEFAULTS["config_file"])


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _load_env_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values = dotenv_values(path)
    return {key: value for key, value in values.items() if value is not None}


def _build_legacy_overrides(source: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for name, (section, key) in LEGACY_ENV_KEYS.items():
        raw = source.get(name)
        if raw is None:
            continue
        value = raw.replace("\r", "").strip()
        if not value:
            continue
        _assign_nested(overrides, [section, key], value)
    return overrides


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS or not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section in ("ssh", "azure", "suse", "ansible", "probe", "sweep", "certs", "terraform"):
        section_map = _as_dict(raw.get(section), section)
        allowed = set(_as_dict(DEFAULTS[section], section).keys())
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    certs_map = _as_dict(raw.get("certs"), "certs")
    backend = str(certs_map.get("backend", "cryptography"))
    if backend not in ALLOWED_CERT_BACKENDS:
        allowed_backends = ", ".join(sorted(ALLOWED_CERT_BACKENDS))
        raise ConfigError(
            f"Unsupported certificate backend '{backend}'. Allowed: {allowed_backends}."
        )


def _build_app_config(
    root: Path,
    raw: Mapping[str, object],
    dotenv: Mapping[str, str],
) -> AppConfig:
    ssh_map = _as_dict(raw.get("ssh"), "ssh")
    ssh = SSHConfig(
        user=_optional_str(ssh_map.get("user")),
        private_key_path=_optional_path(root, ssh_map.get("private_key_path")),
        known_hosts=_resolve(root, ssh_map.get("known_hosts", "~/.ssh/known_hosts")),
        ssh_bin=str(ssh_map.get("ssh_bin", "ssh")),
        keygen_bin=str(ssh_map.get("keygen_bin", "ssh-keygen")),
    )

    azure_map = _as_dict(raw.get("azure"), "azure")
    azure = AzureConfig(
        vms_location=_optional_str(azure_map.get("vms_location")),
        resource_group=_optional_str(azure_map.get("resource_group")),
        blob_storage=_optional_str(azure_map.get("blob_storage")),
        blob_container=_optional_str(azure_map.get("blob_container")),
        sas_token=_optional_str(azure_map.get("sas_token")),
        az_bin=str(azure_map.get("az_bin", "az")),
    )

    suse_map = _as_dict(raw.get("suse"), "suse")
    suse = SuseConfig(
        registration_code=_optional_str(suse_map.get("registration_code")),
        registration_email=_optional_str(suse_map.get("registration_email")),
    )

    ansible_map = _as_dict(raw.get("ansible"), "ansible")
    project_path = _optional_path(root, ansible_map.get("project_path"))
    requirements_path = _optional_path(root, ansible_map.get("requirements_path")) or project_path
    ansible = AnsibleConfig(
        certs_path=_optional_path(root, ansible_map.get("certs_path")),
        inventories_path=_optional_path(root, ansible_map.get("inventories_path")),
        project_path=project_path,
        requirements_path=requirements_path,
        python_exec=str(ansible_map.get("python_exec", "python3")),
        core_version=str(ansible_map.get("core_version", "2.16.*")),
        venv_dir=_resolve(root, ansible_map.get("venv_dir", ".venv-ansible")),
    )

    probe_map = _as_dict(raw.get("probe"), "probe")
    probe = ProbeConfig(
        port=_expect_int(probe_map.get("port"), "probe.port", default=22, minimum=1),
        port_attempts=_expect_int(
            probe_map.get("port_attempts"), "probe.port_attempts", default=20, minimum=1
        ),
        port_interval=_expect_non_negative_float(
            probe_map.get("port_interval"), "probe.port_interval", default=10.0
        ),
        connect_timeout=_expect_non_negative_float(
            probe_map.get("connect_timeout"), "probe.connect_timeout", default=5.0
        ),
        login_attempts=_expect_int(
            probe_map.get("login_attempts"), "probe.login_attempts", default=15, minimum=1
        ),
        login_interval=_expect_non_negative_float(
            probe_map.get("login_interval"), "probe.login_interval", default=15.0
        ),
    )

    sweep_map = _as_dict(raw.get("sweep"), "sweep")
    protected_raw = sweep_map.get("protected_types", list(PROTECTED_RESOURCE_TYPES))
    if isinstance(protected_raw, str) or not isinstance(protected_raw, (list, tuple)):
        raise ConfigError("sweep.protected_types must be a list of resource types.")
    sweep = SweepConfig(
        max_passes=_expect_int(sweep_map.get("max_passes"), "sweep.max_passes", default=3, minimum=1),
        vm_settle=_expect_non_negative_float(
            sweep_map.get("vm_settle"), "sweep.vm_settle", default=60.0
        ),
        pass_settle=_expect_non_negative_float(
            sweep_map.get("pass_settle"), "sweep.pass_settle", default=5.0
        ),
        protected_types=tuple(str(item) for item in protected_raw),
    )

    certs_map = _as_dict(raw.get("certs"), "certs")
    certs = CertsConfig(
        backend=str(certs_map.get("backend", "cryptography")),
        openssl_bin=str(certs_map.get("openssl_bin", "openssl")),
        warn_expiry_days=_expect_int(
            certs_map.get("warn_expiry_days"), "certs.warn_expiry_days", default=30, minimum=0
        ),
    )

    terraform_map = _as_dict(raw.get("terraform"), "terraform")
    terraform = TerraformConfig(
        directory=_resolve(root, terraform_map.get("directory", "terraform")),
        terraform_bin=str(terraform_map.get("terraform_bin", "terraform")),
    )

    templates_value = raw.get("templates_dir")
    return AppConfig(
        project_root=root,
        config_file=_resolve(root, raw.get("config_file")),
        env_file=_resolve(root, raw.get("env_file")),
        machines_file=_resolve(root, raw.get("machines_file")),
        logs_dir=_resolve(root, raw.get("logs_dir")),
        templates_dir=_optional_path(root, templates_value),
        ssh=ssh,
        azure=azure,
        suse=suse,
        ansible=ansible,
        probe=probe,
        sweep=sweep,
        certs=certs,
        terraform=terraform,
        dotenv=dict(dotenv),
    )


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            f"Environment overrides conflict with existing scalar value at {'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw


def _resolve(root: Path, value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if not isinstance(value, (str, os.PathLike)):
        raise ConfigError(f"Cannot convert value {value!r} to Path.")
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def _optional_path(root: Path, value: object) -> Path | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _resolve(root, value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _path_or_none(value: Path | None) -> str | None:
    return str(value) if value is not None else None


def _expect_int(value: object | None, label: str, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")
    if number < minimum:
        raise ConfigError(f"{label} must be at least {minimum}. Got {number}.")
    return number


def _expect_non_negative_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AnsibleConfig",
    "AppConfig",
    "AzureConfig",
    "CertsConfig",
    "ConfigError",
    "ProbeConfig",
    "SSHConfig",
    "SuseConfig",
    "SweepConfig",
    "TerraformConfig",
    "load_config",
]
