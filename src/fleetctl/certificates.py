"""Self-signed TLS certificates for Ansible-managed hosts.

Each eligible host receives ``<fqdn>.key`` (RSA 2048) and ``<fqdn>.crt``
(valid 365 days) whose subject CN and DNS subjectAltName both equal the fqdn.
A host whose key and certificate do not both exist afterwards counts as a
failure; a lone leftover file is removed. One failure never stops the batch.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .machines import MachineEntry, ansible_managed
from .providers.commands import CommandError, CommandRunner, CommandSpec
from .templates import TemplateEngine

KEY_SIZE = 2048
VALIDITY_DAYS = 365
OPENSSL_CONFIG_TEMPLATE = "openssl/req.cnf.j2"


class CertificateError(RuntimeError):
    """Raised when a backend cannot produce a key/certificate pair."""


@dataclass(frozen=True)
class CertificateRequest:
    """What to issue for one host."""

    fqdn: str
    certificate_path: Path
    key_path: Path
    key_size: int = KEY_SIZE
    validity_days: int = VALIDITY_DAYS

    @classmethod
    def for_entry(cls, entry: MachineEntry, certs_dir: Path) -> CertificateRequest:
        """Build the request for *entry* under *certs_dir*."""
        return cls(
            fqdn=entry.fqdn,
            certificate_path=certs_dir / f"{entry.fqdn}.crt",
            key_path=certs_dir / f"{entry.fqdn}.key",
        )


@dataclass(frozen=True)
class CertificateArtifact:
    """An issued key/certificate pair."""

    fqdn: str
    certificate_path: Path
    key_path: Path
    validity_days: int = VALIDITY_DAYS

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "fqdn": self.fqdn,
            "certificate": str(self.certificate_path),
            "key": str(self.key_path),
            "validity_days": self.validity_days,
        }


@dataclass(frozen=True)
class IssuanceReport:
    """Counts and artifacts for one issuance batch."""

    total: int
    succeeded: int
    failures: tuple[str, ...] = field(default_factory=tuple)
    artifacts: tuple[CertificateArtifact, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        """Return ``True`` when every attempted certificate was issued."""
        return not self.failures

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failures": list(self.failures),
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
        }


class CertificateBackend(Protocol):
    """Something that writes the key and certificate named by a request."""

    def issue(self, request: CertificateRequest) -> None:
        """Write ``request.key_path`` and ``request.certificate_path``."""


class CryptographyBackend:
    """Generate keys and certificates in-process with ``cryptography``."""

    def issue(self, request: CertificateRequest) -> None:
        """Write a fresh key and self-signed certificate for *request*."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=request.key_size)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, request.fqdn)])
        now = datetime.now(UTC)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=request.validity_days))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(request.fqdn)]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
        key_bytes = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        _write_bytes(request.key_path, key_bytes, mode=0o600)
        _write_bytes(
            request.certificate_path,
            certificate.public_bytes(serialization.Encoding.PEM),
            mode=0o644,
        )


@dataclass(slots=True)
class OpenSSLBackend:
    """Shell out to ``openssl req -x509`` with a rendered request config."""

    runner: CommandRunner
    templates: TemplateEngine
    openssl_bin: str = "openssl"
    log_path: Path | None = None

    def issue(self, request: CertificateRequest) -> None:
        """Run ``openssl req`` for *request*; raise on a non-zero exit."""
        with tempfile.TemporaryDirectory(prefix="fleetctl-openssl-") as workdir:
            config_path = Path(workdir) / "req.cnf"
            self.templates.render_to_path(
                OPENSSL_CONFIG_TEMPLATE, config_path, {"fqdn": request.fqdn}, mode=0o600
            )
            spec = CommandSpec(
                args=(
                    self.openssl_bin,
                    "req",
                    "-newkey",
                    f"rsa:{request.key_size}",
                    "-nodes",
                    "-keyout",
                    str(request.key_path),
                    "-x509",
                    "-days",
                    str(request.validity_days),
                    "-out",
                    str(request.certificate_path),
                    "-subj",
                    f"/CN={request.fqdn}",
                    "-reqexts",
                    "v3_req",
                    "-extensions",
                    "v3_req",
                    "-config",
                    str(config_path),
                ),
                input="",
                log_path=self.log_path,
            )
            result = self.runner.run(spec)
        if not result.ok:
            raise CertificateError(f"openssl exited with {result.exit_code} for {request.fqdn}.")


@dataclass(slots=True)
class CertificateIssuer:
    """Issue one certificate per Ansible-managed entry."""

    backend: CertificateBackend
    certs_dir: Path

    def issue_all(self, entries: Sequence[MachineEntry]) -> IssuanceReport:
        """Issue certificates for the eligible subset of *entries*."""
        self.certs_dir.mkdir(parents=True, exist_ok=True)
        eligible = ansible_managed(entries)
        artifacts: list[CertificateArtifact] = []
        failures: list[str] = []
        for entry in eligible:
            request = CertificateRequest.for_entry(entry, self.certs_dir)
            try:
                artifacts.append(self.issue_one(request))
            except CertificateError as exc:
                failures.append(f"{entry.fqdn}: {exc}")
        return IssuanceReport(
            total=len(eligible),
            succeeded=len(artifacts),
            failures=tuple(failures),
            artifacts=tuple(artifacts),
        )

    def issue_one(self, request: CertificateRequest) -> CertificateArtifact:
        """Issue *request*; raise :class:`CertificateError` unless both files exist."""
        _remove_pair(request)
        try:
            self.backend.issue(request)
        except (CommandError, OSError, ValueError) as exc:
            _remove_pair(request)
            raise CertificateError(str(exc)) from exc
        except CertificateError:
            _remove_pair(request)
            raise
        if not (request.certificate_path.is_file() and request.key_path.is_file()):
            _remove_pair(request)
            raise CertificateError("certificate or key missing after issuance.")
        return CertificateArtifact(
            fqdn=request.fqdn,
            certificate_path=request.certificate_path,
            key_path=request.key_path,
            validity_days=request.validity_days,
        )


def _remove_pair(request: CertificateRequest) -> None:
    request.certificate_path.unlink(missing_ok=True)
    request.key_path.unlink(missing_ok=True)


def _write_bytes(path: Path, data: bytes, *, mode: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    os.chmod(path, mode)


__all__ = [
    "CertificateArtifact",
    "CertificateBackend",
    "CertificateError",
    "CertificateIssuer",
    "CertificateRequest",
    "CryptographyBackend",
    "IssuanceReport",
    "OpenSSLBackend",
]
