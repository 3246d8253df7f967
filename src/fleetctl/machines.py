"""Machine registry parsing.

The registry is a small CSV file (``.machines.conf.csv``) with the columns
``prefix,slesVersion,spVersion,suffix``. Each data row describes one VM whose
host name is ``<prefix><slesVersion>sp<spVersion><suffix>``.
"""
from __future__ import annotations

import csv
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import ConfigError

HEADER_MARKER = "prefix"
EXPECTED_COLUMNS = 4
MANUAL_ONLY_VERSION = 16


class RegistryParseError(ValueError):
    """Raised when a registry row cannot be interpreted."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        """Record the offending line number when known."""
        prefix = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{prefix}{message}")
        self.line_number = line_number


class Role(str, Enum):
    """Installation flavour requested for a VM."""

    RPM = "rpm"
    HELM = "helm"


class BootstrapProfile(str, Enum):
    """Which setup a host receives."""

    FULL = "full"
    REGISTRATION_FUTURE = "registration-future"
    REGISTRATION_HELM = "registration-helm"

    @classmethod
    def for_entry(cls, entry: MachineEntry) -> BootstrapProfile:
        """Dispatch on OS generation first, then on role."""
        if entry.manual_only:
            return cls.REGISTRATION_FUTURE
        if entry.role is Role.HELM:
            return cls.REGISTRATION_HELM
        return cls.FULL


@dataclass(frozen=True)
class MachineEntry:
    """One VM definition from the registry."""

    name_prefix: str
    os_version: int
    service_pack: int
    role: Role
    domain_suffix: str

    @property
    def base_name(self) -> str:
        """Return the short host name, e.g. ``wk15sp4rpm``."""
        return f"{self.name_prefix}{self.os_version}sp{self.service_pack}{self.role.value}"

    @property
    def fqdn(self) -> str:
        """Return the fully-qualified host name."""
        return f"{self.base_name}.{self.domain_suffix}"

    @property
    def manual_only(self) -> bool:
        """Return ``True`` for OS generations the automation does not set up."""
        return self.os_version >= MANUAL_ONLY_VERSION

    @property
    def ansible_managed(self) -> bool:
        """Return ``True`` when the host gets certificates, inventory and playbooks."""
        return self.role is Role.RPM and not self.manual_only

    @property
    def profile(self) -> str:
        """Return the bootstrap profile name for this entry."""
        return BootstrapProfile.for_entry(self).value

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name_prefix": self.name_prefix,
            "os_version": self.os_version,
            "service_pack": self.service_pack,
            "role": self.role.value,
            "base_name": self.base_name,
            "fqdn": self.fqdn,
            "manual_only": self.manual_only,
            "profile": self.profile,
        }


def _clean(field: str) -> str:
    return field.replace("\r", "").strip()


def _parse_int(value: str, label: str, line_number: int) -> int:
    try:
        number = int(value, 10)
    except ValueError as exc:
        raise RegistryParseError(
            f"{label} must be an integer, got {value!r}.", line_number=line_number
        ) from exc
    if number < 0:
        raise RegistryParseError(f"{label} must not be negative.", line_number=line_number)
    return number


def parse_machines(lines: Iterable[str], *, domain_suffix: str) -> tuple[MachineEntry, ...]:
    """Parse registry *lines* into entries, preserving source order.

    The header row (first field ``prefix``) and blank rows are skipped. Every
    field has carriage returns and surrounding whitespace removed. Any invalid
    row aborts the whole parse with :class:`RegistryParseError`.
    """
    entries: list[MachineEntry] = []
    for line_number, row in enumerate(csv.reader(lines), start=1):
        fields = [_clean(field) for field in row]
        if not any(fields):
            continue
        if fields[0] == HEADER_MARKER:
            continue
        if len(fields) != EXPECTED_COLUMNS:
            raise RegistryParseError(
                f"expected {EXPECTED_COLUMNS} columns, found {len(fields)}.",
                line_number=line_number,
            )
        prefix, os_version, service_pack, suffix = fields
        if not prefix:
            raise RegistryParseError("name prefix must not be empty.", line_number=line_number)
        try:
            role = Role(suffix)
        except ValueError as exc:
            raise RegistryParseError(
                f"invalid suffix {suffix!r}; only 'rpm' and 'helm' are supported.",
                line_number=line_number,
            ) from exc
        entries.append(
            MachineEntry(
                name_prefix=prefix,
                os_version=_parse_int(os_version, "slesVersion", line_number),
                service_pack=_parse_int(service_pack, "spVersion", line_number),
                role=role,
                domain_suffix=domain_suffix,
            )
        )
    return tuple(entries)


def load_machines(path: str | os.PathLike[str], *, domain_suffix: str) -> tuple[MachineEntry, ...]:
    """Read and parse the registry file at *path*."""
    registry = Path(path)
    if not registry.is_file():
        raise ConfigError(f"Machines configuration file not found at {registry}.")
    with registry.open(encoding="utf-8", newline="") as handle:
        return parse_machines(handle, domain_suffix=domain_suffix)


def ansible_managed(entries: Sequence[MachineEntry]) -> list[MachineEntry]:
    """Return entries eligible for certificates, inventory and playbooks."""
    return [entry for entry in entries if entry.ansible_managed]


__all__ = [
    "BootstrapProfile",
    "MachineEntry",
    "RegistryParseError",
    "Role",
    "ansible_managed",
    "load_machines",
    "parse_machines",
]
