"""Deletion sweep tests."""
from __future__ import annotations

import json
from collections.abc import Callable

import pytest

from fleetctl.config import SweepConfig
from fleetctl.providers.azure import AzureProvider
from fleetctl.providers.commands import CommandResult, CommandSpec
from fleetctl.sweeper import FleetDeletionSweeper, SweepError

RG = "rg-fleet"


class _FakeAzure:
    """Respond to az commands from a scripted resource listing sequence."""

    def __init__(
        self,
        *,
        vms: list[str],
        listings: list[list[dict[str, str]]],
        exists: bool = True,
    ) -> None:
        self.vms = vms
        self.listings = listings
        self.exists = exists
        self.list_calls = 0

    def __call__(self, spec: CommandSpec) -> CommandResult:
        args = spec.args
        if args[1:3] == ("group", "show"):
            return CommandResult(exit_code=0 if self.exists else 3)
        if args[1:3] == ("vm", "list"):
            return CommandResult(exit_code=0, output=json.dumps([{"name": n} for n in self.vms]))
        if args[1:3] == ("resource", "list"):
            index = min(self.list_calls, len(self.listings) - 1)
            self.list_calls += 1
            return CommandResult(exit_code=0, output=json.dumps(self.listings[index]))
        return CommandResult(exit_code=0)


def _resource(name: str, kind: str = "Microsoft.Network/networkInterfaces") -> dict[str, str]:
    resource_id = f"/subscriptions/s/resourceGroups/{RG}/providers/{kind}/{name}"
    return {"id": resource_id, "name": name, "type": kind}


def _sweeper(runner: object, sleeps: list[float]) -> FleetDeletionSweeper:
    return FleetDeletionSweeper(
        azure=AzureProvider(runner=runner),  # type: ignore[arg-type]
        settings=SweepConfig(),
        sleep=sleeps.append,
    )


def test_complete_sweep(fake_runner: Callable[..., object]) -> None:
    """VMs are deleted, leftovers removed, and the final listing is empty."""
    azure = _FakeAzure(
        vms=["wk15sp4rpm", "wk15sp5rpm"],
        listings=[[_resource("nic-1"), _resource("disk-1", "Microsoft.Compute/disks")], [], []],
    )
    runner = fake_runner(azure)
    sleeps: list[float] = []

    report = _sweeper(runner, sleeps).sweep(RG)

    commands = runner.commands  # type: ignore[attr-defined]
    vm_deletes = [c for c in commands if c[1:3] == ("vm", "delete")]
    assert [c[c.index("--name") + 1] for c in vm_deletes] == ["wk15sp4rpm", "wk15sp5rpm"]
    assert all("--no-wait" in c and "--yes" in c for c in vm_deletes)
    assert report.complete
    assert report.vms_deleted == ("wk15sp4rpm", "wk15sp5rpm")
    assert len(report.passes) == 1
    assert sleeps == [60.0, 5.0]


def test_protected_types_are_excluded(fake_runner: Callable[..., object]) -> None:
    """Storage accounts and registries are never deleted."""
    protected = [
        _resource("blobs", "Microsoft.Storage/storageAccounts"),
        _resource("acr", "microsoft.containerregistry/registries"),
    ]
    runner = fake_runner(_FakeAzure(vms=[], listings=[protected]))
    sleeps: list[float] = []

    report = _sweeper(runner, sleeps).sweep(RG)

    assert report.complete
    assert not any(c[1:3] == ("resource", "delete") for c in runner.commands)  # type: ignore[attr-defined]
    assert sleeps == []


def test_sweep_gives_up_after_three_passes(fake_runner: Callable[..., object]) -> None:
    """Stubborn resources bound the sweep at three passes and are reported."""
    stubborn = [_resource("nic-locked")]
    azure = _FakeAzure(vms=[], listings=[stubborn])
    runner = fake_runner(azure)
    sleeps: list[float] = []

    report = _sweeper(runner, sleeps).sweep(RG)

    deletes = [c for c in runner.commands if c[1:3] == ("resource", "delete")]  # type: ignore[attr-defined]
    assert len(deletes) == 3
    assert len(report.passes) == 3
    assert azure.list_calls == 4
    assert not report.complete
    assert [resource.name for resource in report.remaining] == ["nic-locked"]
    assert report.to_dict()["complete"] is False


def test_missing_group_aborts(fake_runner: Callable[..., object]) -> None:
    """Nothing is listed or deleted for an unknown resource group."""
    runner = fake_runner(_FakeAzure(vms=["x"], listings=[[]], exists=False))

    with pytest.raises(SweepError, match="does not exist"):
        _sweeper(runner, []).sweep(RG)

    assert len(runner.commands) == 1  # type: ignore[attr-defined]
