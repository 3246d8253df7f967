"""Validation of issued host certificates."""
from __future__ import annotations

import os
import stat
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from .machines import MachineEntry, ansible_managed


class TLSValidationSeverity(Enum):
    """Validation severities for TLS checks."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class TLSValidationFinding:
    """Individual validation check outcome."""

    scope: str
    check: str
    severity: TLSValidationSeverity
    message: str
    path: Path | None = None


@dataclass(frozen=True)
class TLSMaterial:
    """Certificate and key files for one host."""

    fqdn: str
    certificate: Path
    key: Path

    @classmethod
    def for_entry(cls, entry: MachineEntry, certs_dir: Path) -> TLSMaterial:
        """Return the expected file locations for *entry*."""
        return cls(
            fqdn=entry.fqdn,
            certificate=certs_dir / f"{entry.fqdn}.crt",
            key=certs_dir / f"{entry.fqdn}.key",
        )


@dataclass(frozen=True)
class TLSValidationReport:
    """Aggregate validation results for one host's material."""

    material: TLSMaterial
    findings: tuple[TLSValidationFinding, ...]
    not_valid_before: datetime | None
    not_valid_after: datetime | None

    @property
    def has_errors(self) -> bool:
        """Return True when any finding is classified as an error."""
        return any(f.severity is TLSValidationSeverity.ERROR for f in self.findings)

    @property
    def has_warnings(self) -> bool:
        """Return True when the report includes warning findings."""
        return any(f.severity is TLSValidationSeverity.WARNING for f in self.findings)

    @property
    def status(self) -> TLSValidationSeverity:
        """Return the overall status derived from the findings."""
        if self.has_errors:
            return TLSValidationSeverity.ERROR
        if self.has_warnings:
            return TLSValidationSeverity.WARNING
        return TLSValidationSeverity.OK

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the report."""
        return {
            "fqdn": self.material.fqdn,
            "paths": {
                "certificate": str(self.material.certificate),
                "key": str(self.material.key),
            },
            "status": self.status.value,
            "not_valid_before": (
                self.not_valid_before.isoformat() if self.not_valid_before else None
            ),
            "not_valid_after": (
                self.not_valid_after.isoformat() if self.not_valid_after else None
            ),
            "findings": [
                {
                    "scope": finding.scope,
                    "check": finding.check,
                    "severity": finding.severity.value,
                    "message": finding.message,
                    "path": str(finding.path) if finding.path is not None else None,
                }
                for finding in self.findings
            ],
        }


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


class TLSValidator:
    """Check issued certificates against the host they were issued for."""

    def __init__(self, *, warn_expiry_days: int = 30) -> None:
        """Capture the expiry warning threshold."""
        self._warn_expiry_days = warn_expiry_days

    def validate_fleet(
        self,
        entries: Sequence[MachineEntry],
        certs_dir: Path,
        *,
        now: datetime | None = None,
    ) -> list[TLSValidationReport]:
        """Validate the material of every Ansible-managed entry."""
        return [
            self.validate(TLSMaterial.for_entry(entry, certs_dir), now=now)
            for entry in ansible_managed(entries)
        ]

    def validate(
        self,
        material: TLSMaterial,
        *,
        now: datetime | None = None,
    ) -> TLSValidationReport:
        """Validate *material* and return a structured report."""
        now = now or datetime.now(UTC)
        findings: list[TLSValidationFinding] = []

        cert_exists = self._check_file(material.certificate, "certificate", findings)
        key_exists = self._check_file(material.key, "key", findings)
        if key_exists:
            self._check_key_permissions(material.key, findings)

        cert_obj: x509.Certificate | None = None
        key_obj: PrivateKeyProtocol | None = None
        not_before: datetime | None = None
        not_after: datetime | None = None

        if cert_exists:
            try:
                cert_obj = _load_certificate(material.certificate)
                findings.append(
                    TLSValidationFinding(
                        scope="certificate",
                        check="parse",
                        severity=TLSValidationSeverity.OK,
                        message=f"Loaded certificate (serial {cert_obj.serial_number})",
                        path=material.certificate,
                    )
                )
            except ValueError as exc:
                findings.append(
                    TLSValidationFinding(
                        scope="certificate",
                        check="parse",
                        severity=TLSValidationSeverity.ERROR,
                        message=f"Failed to parse certificate: {exc}",
                        path=material.certificate,
                    )
                )

        if key_exists:
            try:
                key_obj = _load_private_key(material.key)
                findings.append(
                    TLSValidationFinding(
                        scope="key",
                        check="parse",
                        severity=TLSValidationSeverity.OK,
                        message="Loaded private key.",
                        path=material.key,
                    )
                )
            except (ValueError, TypeError) as exc:
                findings.append(
                    TLSValidationFinding(
                        scope="key",
                        check="parse",
                        severity=TLSValidationSeverity.ERROR,
                        message=f"Failed to parse private key: {exc}",
                        path=material.key,
                    )
                )

        if cert_obj is not None and key_obj is not None:
            matches = _public_keys_match(cert_obj, key_obj)
            findings.append(
                TLSValidationFinding(
                    scope="certificate",
                    check="match",
                    severity=TLSValidationSeverity.OK if matches else TLSValidationSeverity.ERROR,
                    message=(
                        "Certificate and key match."
                        if matches
                        else "Certificate does not match the private key."
                    ),
                    path=material.certificate,
                )
            )

        if cert_obj is not None:
            findings.extend(_identity_findings(cert_obj, material))
            not_before = cert_obj.not_valid_before_utc
            not_after = cert_obj.not_valid_after_utc
            findings.append(self._expiry_finding(not_after, now, material.certificate))

        return TLSValidationReport(
            material=material,
            findings=tuple(findings),
            not_valid_before=not_before,
            not_valid_after=not_after,
        )

    def _expiry_finding(
        self,
        not_after: datetime,
        now: datetime,
        path: Path,
    ) -> TLSValidationFinding:
        if not_after <= now:
            return TLSValidationFinding(
                scope="certificate",
                check="expiry",
                severity=TLSValidationSeverity.ERROR,
                message=f"Certificate expired on {not_after.isoformat()}",
                path=path,
            )
        days_remaining = (not_after - now).days
        if days_remaining <= self._warn_expiry_days:
            return TLSValidationFinding(
                scope="certificate",
                check="expiry",
                severity=TLSValidationSeverity.WARNING,
                message=(
                    "Certificate expires soon "
                    f"({not_after.isoformat()}, {days_remaining} day(s) remaining)"
                ),
                path=path,
            )
        return TLSValidationFinding(
            scope="certificate",
            check="expiry",
            severity=TLSValidationSeverity.OK,
            message=f"Certificate valid until {not_after.isoformat()}",
            path=path,
        )

    def _check_file(
        self,
        path: Path,
        scope: str,
        findings: list[TLSValidationFinding],
    ) -> bool:
        if not path.exists():
            findings.append(
                TLSValidationFinding(
                    scope=scope,
                    check="exists",
                    severity=TLSValidationSeverity.ERROR,
                    message="File does not exist.",
                    path=path,
                )
            )
            return False
        if not path.is_file() or not os.access(path, os.R_OK):
            findings.append(
                TLSValidationFinding(
                    scope=scope,
                    check="readable",
                    severity=TLSValidationSeverity.ERROR,
                    message="Path is not a readable regular file.",
                    path=path,
                )
            )
            return False
        findings.append(
            TLSValidationFinding(
                scope=scope,
                check="exists",
                severity=TLSValidationSeverity.OK,
                message="File present and readable.",
                path=path,
            )
        )
        return True

    def _check_key_permissions(self, path: Path, findings: list[TLSValidationFinding]) -> None:
        mode = stat.S_IMODE(path.stat().st_mode)
        if mode & 0o077:
            findings.append(
                TLSValidationFinding(
                    scope="key",
                    check="permissions",
                    severity=TLSValidationSeverity.WARNING,
                    message=f"Private key is accessible to group/other ({mode:04o}).",
                    path=path,
                )
            )
            return
        findings.append(
            TLSValidationFinding(
                scope="key",
                check="permissions",
                severity=TLSValidationSeverity.OK,
                message=f"Permissions ok ({mode:04o})",
                path=path,
            )
        )


def _identity_findings(
    cert: x509.Certificate,
    material: TLSMaterial,
) -> list[TLSValidationFinding]:
    findings: list[TLSValidationFinding] = []
    common_names = [
        str(attribute.value) for attribute in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    ]
    cn_ok = common_names == [material.fqdn]
    findings.append(
        TLSValidationFinding(
            scope="certificate",
            check="common-name",
            severity=TLSValidationSeverity.OK if cn_ok else TLSValidationSeverity.ERROR,
            message=(
                f"Subject CN is {material.fqdn}."
                if cn_ok
                else f"Subject CN {common_names or ['<none>']} does not equal {material.fqdn}."
            ),
            path=material.certificate,
        )
    )
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        dns_names = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        dns_names = []
    san_ok = material.fqdn in dns_names
    findings.append(
        TLSValidationFinding(
            scope="certificate",
            check="subject-alt-name",
            severity=TLSValidationSeverity.OK if san_ok else TLSValidationSeverity.ERROR,
            message=(
                f"subjectAltName includes DNS:{material.fqdn}."
                if san_ok
                else f"subjectAltName {dns_names or ['<none>']} lacks DNS:{material.fqdn}."
            ),
            path=material.certificate,
        )
    )
    return findings


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


__all__ = [
    "TLSMaterial",
    "TLSValidationFinding",
    "TLSValidationReport",
    "TLSValidationSeverity",
    "TLSValidator",
]
