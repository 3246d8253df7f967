"""Ansible inventory generation."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import yaml

from .machines import MachineEntry, ansible_managed
from .templates import TemplateEngine

INVENTORY_FILENAME = "inventory.yml"
HOST_GROUP = "trento_hosts"
DERIVED_GROUPS = ("trento_server", "postgres_hosts", "rabbitmq_hosts")


class InventoryError(RuntimeError):
    """Raised when no inventory can be produced."""


@dataclass(frozen=True)
class InventorySettings:
    """Values the inventory needs besides the registry."""

    ssh_user: str
    certs_path: Path


def _cert_lookup(certs_path: Path, extension: str) -> str:
    return f"{{{{ lookup('file', '{certs_path}/' + inventory_hostname + '.{extension}') }}}}"


def group_vars(settings: InventorySettings) -> dict[str, object]:
    """Return the fixed variables applied to every managed host."""
    return {
        "ansible_python_interpreter": "/usr/bin/python3",
        "provision_prometheus": False,
        "provision_proxy": True,
        "web_postgres_password": "postgres",
        "wanda_postgres_password": "postgres",
        "rabbitmq_password": "guest",
        "web_admin_password": "adminpassword",
        "trento_server_name": "{{ inventory_hostname }}",
        "nginx_vhost_filename": "{{ inventory_hostname }}",
        "nginx_ssl_cert": _cert_lookup(settings.certs_path, "crt"),
        "nginx_ssl_key": _cert_lookup(settings.certs_path, "key"),
    }


def build_inventory(
    entries: Sequence[MachineEntry],
    settings: InventorySettings,
) -> dict[str, object]:
    """Return the inventory document for the Ansible-managed *entries*."""
    managed = ansible_managed(entries)
    if not managed:
        raise InventoryError("No Ansible-managed machines found in the registry.")
    children: dict[str, object] = {
        HOST_GROUP: {
            "vars": group_vars(settings),
            "hosts": {entry.fqdn: {"ansible_user": settings.ssh_user} for entry in managed},
        },
    }
    for group in DERIVED_GROUPS:
        children[group] = {"children": {HOST_GROUP: {}}}
    return {"all": {"children": children}}


def render_inventory(entries: Sequence[MachineEntry], settings: InventorySettings) -> str:
    """Serialise the inventory document as YAML."""
    document = build_inventory(entries, settings)
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, width=1000)


def write_inventory(
    entries: Sequence[MachineEntry],
    settings: InventorySettings,
    inventories_path: Path,
) -> tuple[Path, bool]:
    """Write ``inventory.yml``; return its path and whether content changed."""
    destination = inventories_path / INVENTORY_FILENAME
    rendered = render_inventory(entries, settings)
    changed = TemplateEngine.write_atomic(destination, rendered, mode=0o644)
    return destination, changed


__all__ = [
    "InventoryError",
    "InventorySettings",
    "build_inventory",
    "group_vars",
    "render_inventory",
    "write_inventory",
]
