"""TLS validation tests for issued host certificates."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from fleetctl.certificates import CertificateRequest, CryptographyBackend
from fleetctl.machines import MachineEntry, Role
from fleetctl.tls import TLSMaterial, TLSValidationSeverity, TLSValidator

ENTRY = MachineEntry("wk", 15, 4, Role.RPM, "westeurope.cloudapp.azure.com")


def _issue(tmp_path: Path) -> TLSMaterial:
    CryptographyBackend().issue(CertificateRequest.for_entry(ENTRY, tmp_path))
    return TLSMaterial.for_entry(ENTRY, tmp_path)


def _checks(report: object, severity: TLSValidationSeverity) -> set[str]:
    return {
        finding.check
        for finding in report.findings  # type: ignore[attr-defined]
        if finding.severity is severity
    }


def test_freshly_issued_pair_is_valid(tmp_path: Path) -> None:
    """A pair from the issuer passes every check."""
    report = TLSValidator().validate(_issue(tmp_path))

    assert report.status is TLSValidationSeverity.OK
    assert {"exists", "parse", "match", "common-name", "subject-alt-name", "expiry"} <= _checks(
        report, TLSValidationSeverity.OK
    )
    assert report.to_dict()["fqdn"] == ENTRY.fqdn


def test_missing_files_are_errors(tmp_path: Path) -> None:
    """Absent material is reported, not raised."""
    report = TLSValidator().validate(TLSMaterial.for_entry(ENTRY, tmp_path))

    assert report.has_errors
    assert _checks(report, TLSValidationSeverity.ERROR) == {"exists"}
    assert report.not_valid_after is None


def test_expiry_window_and_expired(tmp_path: Path) -> None:
    """Certificates near expiry warn; expired ones fail."""
    material = _issue(tmp_path)
    validator = TLSValidator(warn_expiry_days=30)

    soon = validator.validate(material, now=datetime.now(UTC) + timedelta(days=350))
    expired = validator.validate(material, now=datetime.now(UTC) + timedelta(days=400))

    assert soon.status is TLSValidationSeverity.WARNING
    assert _checks(soon, TLSValidationSeverity.WARNING) == {"expiry"}
    assert _checks(expired, TLSValidationSeverity.ERROR) == {"expiry"}


def test_loose_key_permissions_warn(tmp_path: Path) -> None:
    """A group-readable key is a warning."""
    material = _issue(tmp_path)
    material.key.chmod(0o644)

    report = TLSValidator().validate(material)

    assert _checks(report, TLSValidationSeverity.WARNING) == {"permissions"}


def test_mismatched_key_and_wrong_name(tmp_path: Path) -> None:
    """A certificate for another host, signed with another key, fails identity checks."""
    material = _issue(tmp_path)
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "other.example")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(other_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=90))
        .sign(other_key, hashes.SHA256())
    )
    material.certificate.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    report = TLSValidator().validate(material)

    assert _checks(report, TLSValidationSeverity.ERROR) == {
        "match",
        "common-name",
        "subject-alt-name",
    }


def test_validate_fleet_skips_unmanaged_hosts(tmp_path: Path) -> None:
    """Only Ansible-managed entries are validated."""
    helm = MachineEntry("wk", 15, 4, Role.HELM, "westeurope.cloudapp.azure.com")
    _issue(tmp_path)

    reports = TLSValidator().validate_fleet([ENTRY, helm], tmp_path)

    assert [report.material.fqdn for report in reports] == [ENTRY.fqdn]
