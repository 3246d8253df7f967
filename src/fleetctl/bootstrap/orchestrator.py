"""Bootstrap every registry entry concurrently."""
from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..machines import MachineEntry
from .executor import HostOutcome


class RunStatus(str, Enum):
    """Lifecycle of one host's bootstrap."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` for succeeded or failed."""
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


@dataclass
class FleetRunResult:
    """Outcome record for one host, finalised when its task is joined."""

    entry: MachineEntry
    log_path: Path
    status: RunStatus = RunStatus.PENDING
    error: str | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "host": self.entry.fqdn,
            "base_name": self.entry.base_name,
            "profile": self.entry.profile,
            "status": self.status.value,
            "log": str(self.log_path),
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class LaunchRecord:
    """An entry paired with the future running its bootstrap."""

    result: FleetRunResult
    future: concurrent.futures.Future[HostOutcome]


@dataclass(frozen=True)
class FleetReport:
    """Aggregate of every host's result, in launch order."""

    results: tuple[FleetRunResult, ...] = field(default_factory=tuple)

    @property
    def failed(self) -> list[FleetRunResult]:
        """Return results that did not succeed."""
        return [result for result in self.results if result.status is not RunStatus.SUCCEEDED]

    @property
    def ok(self) -> bool:
        """Return ``True`` when every host succeeded."""
        return not self.failed

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "total": len(self.results),
            "failed": len(self.failed),
            "results": [result.to_dict() for result in self.results],
        }


HostRunner = Callable[[MachineEntry, Path], HostOutcome]
LogPathFor = Callable[[MachineEntry], Path]


class FleetOrchestrator:
    """Launch one bootstrap task per entry and join them all in launch order.

    A failing host never cancels its siblings; every task is awaited and its
    result recorded exactly once.
    """

    def __init__(
        self,
        run_host: HostRunner,
        log_path_for: LogPathFor,
        *,
        max_workers: int | None = None,
        on_launch: Callable[[FleetRunResult], None] | None = None,
        on_finish: Callable[[FleetRunResult], None] | None = None,
    ) -> None:
        """Store the per-host runner and reporting hooks."""
        self._run_host = run_host
        self._log_path_for = log_path_for
        self._max_workers = max_workers
        self._on_launch = on_launch
        self._on_finish = on_finish

    def run(self, entries: Sequence[MachineEntry]) -> FleetReport:
        """Bootstrap *entries* concurrently and return the joined report."""
        if not entries:
            return FleetReport()

        workers = self._max_workers or len(entries)
        launches: list[LaunchRecord] = []
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, workers), thread_name_prefix="bootstrap"
        ) as executor:
            for entry in entries:
                result = FleetRunResult(entry=entry, log_path=self._log_path_for(entry))
                future = executor.submit(self._execute, result)
                launches.append(LaunchRecord(result=result, future=future))
                if self._on_launch is not None:
                    self._on_launch(result)

            for launch in launches:
                self._join(launch)

        return FleetReport(results=tuple(launch.result for launch in launches))

    # ------------------------------------------------------------------
    def _execute(self, result: FleetRunResult) -> HostOutcome:
        result.status = RunStatus.RUNNING
        start = time.perf_counter()
        try:
            return self._run_host(result.entry, result.log_path)
        finally:
            result.duration_ms = int((time.perf_counter() - start) * 1000)

    def _join(self, launch: LaunchRecord) -> None:
        result = launch.result
        try:
            outcome = launch.future.result()
        except Exception as exc:  # noqa: BLE001
            result.status = RunStatus.FAILED
            result.error = f"Unhandled error: {exc}"
        else:
            result.status = RunStatus.SUCCEEDED if outcome.ok else RunStatus.FAILED
            result.error = outcome.error
        if self._on_finish is not None:
            self._on_finish(result)


__all__ = [
    "FleetOrchestrator",
    "FleetReport",
    "FleetRunResult",
    "LaunchRecord",
    "RunStatus",
]
