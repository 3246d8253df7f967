"""Ansible inventory generation tests."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from fleetctl.inventory import (
    DERIVED_GROUPS,
    HOST_GROUP,
    InventoryError,
    InventorySettings,
    build_inventory,
    render_inventory,
    write_inventory,
)
from fleetctl.machines import MachineEntry, Role

SUFFIX = "westeurope.cloudapp.azure.com"
SETTINGS = InventorySettings(ssh_user="cloudadmin", certs_path=Path("/srv/certs"))


def _entry(os_version: int, service_pack: int, role: Role) -> MachineEntry:
    return MachineEntry("wk", os_version, service_pack, role, SUFFIX)


def test_single_managed_host_layout() -> None:
    """One host under the main group; derived groups reference it."""
    document = build_inventory([_entry(15, 4, Role.RPM), _entry(15, 4, Role.HELM)], SETTINGS)

    children = document["all"]["children"]  # type: ignore[index]
    hosts = children[HOST_GROUP]["hosts"]
    assert hosts == {f"wk15sp4rpm.{SUFFIX}": {"ansible_user": "cloudadmin"}}
    for group in DERIVED_GROUPS:
        assert children[group] == {"children": {HOST_GROUP: {}}}


def test_group_vars_reference_certificates_by_hostname() -> None:
    """TLS paths are Ansible lookups keyed on inventory_hostname."""
    document = build_inventory([_entry(15, 4, Role.RPM)], SETTINGS)
    variables = document["all"]["children"][HOST_GROUP]["vars"]  # type: ignore[index]

    assert variables["nginx_ssl_cert"] == (
        "{{ lookup('file', '/srv/certs/' + inventory_hostname + '.crt') }}"
    )
    assert variables["nginx_ssl_key"].endswith("+ '.key') }}")
    assert variables["trento_server_name"] == "{{ inventory_hostname }}"
    assert variables["provision_prometheus"] is False


def test_no_managed_hosts_is_an_error() -> None:
    """Helm-only and next-generation registries produce no inventory."""
    with pytest.raises(InventoryError):
        build_inventory([_entry(15, 4, Role.HELM), _entry(16, 0, Role.RPM)], SETTINGS)


def test_render_is_deterministic_and_round_trips() -> None:
    """Rendering twice gives identical text that parses back to the document."""
    entries = [_entry(15, 3, Role.RPM), _entry(15, 5, Role.RPM)]

    first = render_inventory(entries, SETTINGS)
    second = render_inventory(entries, SETTINGS)

    assert first == second
    assert yaml.safe_load(first) == build_inventory(entries, SETTINGS)
    assert first.index("wk15sp3rpm") < first.index("wk15sp5rpm")


def test_write_inventory_reports_changes(tmp_path: Path) -> None:
    """The file is rewritten only when its content changes."""
    entries = [_entry(15, 4, Role.RPM)]

    path, changed = write_inventory(entries, SETTINGS, tmp_path / "inventories")
    _, changed_again = write_inventory(entries, SETTINGS, tmp_path / "inventories")

    assert path == tmp_path / "inventories" / "inventory.yml"
    assert changed is True
    assert changed_again is False
