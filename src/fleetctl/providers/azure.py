"""Azure CLI provider used by the deletion sweep."""
from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .commands import CommandResult, CommandRunner, CommandSpec


class AzureError(RuntimeError):
    """Raised when an ``az`` invocation fails or returns unexpected output."""


@dataclass(frozen=True, slots=True)
class AzureResource:
    """Minimal view of a resource returned by ``az resource list``."""

    id: str
    name: str
    type: str


@dataclass(slots=True)
class AzureProvider:
    """Query and delete resources in a resource group via the ``az`` CLI."""

    runner: CommandRunner
    az_bin: str = "az"
    log_path: Path | None = None

    def group_exists(self, resource_group: str) -> bool:
        """Return ``True`` when *resource_group* exists and is accessible."""
        result = self._az("group", "show", "--name", resource_group, "--output", "none")
        return result.ok

    def list_vm_names(self, resource_group: str) -> list[str]:
        """Return the names of every VM in *resource_group*."""
        payload = self._json("vm", "list", "--resource-group", resource_group)
        return [str(item["name"]) for item in payload if isinstance(item, dict) and item.get("name")]

    def delete_vm(self, resource_group: str, name: str) -> CommandResult:
        """Request deletion of VM *name* without waiting for completion."""
        return self._az(
            "vm",
            "delete",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--yes",
            "--no-wait",
        )

    def list_resources(
        self,
        resource_group: str,
        *,
        exclude_types: Sequence[str] = (),
    ) -> list[AzureResource]:
        """Return resources in *resource_group* whose type is not excluded."""
        excluded = {item.lower() for item in exclude_types}
        resources: list[AzureResource] = []
        for item in self._json("resource", "list", "--resource-group", resource_group):
            if not isinstance(item, dict) or not item.get("id"):
                continue
            resource_type = str(item.get("type", ""))
            if resource_type.lower() in excluded:
                continue
            resources.append(
                AzureResource(id=str(item["id"]), name=str(item.get("name", "")), type=resource_type)
            )
        return resources

    def delete_resource(self, resource_id: str) -> CommandResult:
        """Request deletion of *resource_id* without waiting for completion."""
        return self._az("resource", "delete", "--ids", resource_id, "--no-wait")

    # ------------------------------------------------------------------
    def _az(self, *args: str) -> CommandResult:
        spec = CommandSpec(args=(self.az_bin, *args, "--only-show-errors"), log_path=self.log_path)
        return self.runner.run(spec)

    def _json(self, *args: str) -> list[object]:
        spec = CommandSpec(
            args=(self.az_bin, *args, "--output", "json", "--only-show-errors"),
            log_path=self.log_path,
        )
        result = self.runner.run(spec)
        if not result.ok:
            raise AzureError(
                f"{spec.display()} failed (exit {result.exit_code}): {result.output.strip()}"
            )
        raw = result.output.strip()
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise AzureError(f"Unexpected output from {spec.display()}: {exc}") from exc
        if not isinstance(payload, list):
            raise AzureError(f"Expected a JSON list from {spec.display()}.")
        return payload


__all__ = ["AzureError", "AzureProvider", "AzureResource"]
