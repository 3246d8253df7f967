"""Bounded deletion of fleet resources from an Azure resource group.

The sweep deletes every VM, waits for the deletions to settle and then makes
up to ``max_passes`` passes over the remaining resources, deleting whatever
is left except protected types (storage accounts and container registries).
Deletions are issued without waiting; a short settle period follows each
pass. A final enumeration decides whether the sweep is complete.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import SweepConfig
from .providers.azure import AzureProvider, AzureResource


class SweepError(RuntimeError):
    """Raised when the sweep cannot start (e.g. the group does not exist)."""


@dataclass(frozen=True)
class SweepPass:
    """Resources found and deleted during one pass."""

    number: int
    deleted: tuple[str, ...]


@dataclass(frozen=True)
class SweepReport:
    """Outcome of a deletion sweep."""

    resource_group: str
    vms_deleted: tuple[str, ...]
    passes: tuple[SweepPass, ...]
    remaining: tuple[AzureResource, ...] = field(default_factory=tuple)

    @property
    def complete(self) -> bool:
        """Return ``True`` when the final enumeration found nothing left."""
        return not self.remaining

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "resource_group": self.resource_group,
            "vms_deleted": list(self.vms_deleted),
            "passes": [{"pass": item.number, "deleted": list(item.deleted)} for item in self.passes],
            "remaining": [resource.id for resource in self.remaining],
            "complete": self.complete,
        }


@dataclass(slots=True)
class FleetDeletionSweeper:
    """Delete VMs and their dependencies in a bounded number of passes."""

    azure: AzureProvider
    settings: SweepConfig = field(default_factory=SweepConfig)
    sleep: Callable[[float], None] = time.sleep
    emit: Callable[[str], None] = lambda message: None

    def sweep(self, resource_group: str) -> SweepReport:
        """Run the sweep against *resource_group*."""
        if not self.azure.group_exists(resource_group):
            raise SweepError(f"Resource group '{resource_group}' does not exist or access denied.")
        self.emit(f"Resource group '{resource_group}' verified.")

        vm_names = self.azure.list_vm_names(resource_group)
        if vm_names:
            for name in vm_names:
                self.emit(f"Deleting VM '{name}'")
                self.azure.delete_vm(resource_group, name)
            self.emit(f"VM deletions initiated. Waiting {self.settings.vm_settle:g}s...")
            self.sleep(self.settings.vm_settle)
        else:
            self.emit("No virtual machines found to delete.")

        passes: list[SweepPass] = []
        for number in range(1, self.settings.max_passes + 1):
            remaining = self._remaining(resource_group)
            if not remaining:
                self.emit(f"No remaining resources found in pass {number}.")
                break
            self.emit(f"Pass {number}/{self.settings.max_passes}: {len(remaining)} resource(s) to delete.")
            for resource in remaining:
                self.azure.delete_resource(resource.id)
            passes.append(SweepPass(number=number, deleted=tuple(r.id for r in remaining)))
            self.sleep(self.settings.pass_settle)

        leftover = self._remaining(resource_group)
        if leftover:
            self.emit(f"WARNING: {len(leftover)} resource(s) could not be deleted.")
        else:
            self.emit("VM and dependency cleanup complete.")
        return SweepReport(
            resource_group=resource_group,
            vms_deleted=tuple(vm_names),
            passes=tuple(passes),
            remaining=tuple(leftover),
        )

    def _remaining(self, resource_group: str) -> list[AzureResource]:
        return self.azure.list_resources(
            resource_group, exclude_types=self.settings.protected_types
        )


__all__ = ["FleetDeletionSweeper", "SweepError", "SweepPass", "SweepReport"]
