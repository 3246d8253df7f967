"""Data models and helpers for doctor probes."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..tls import TLSValidator


class ProbeStatus(str, Enum):
    """High-level outcome for a doctor probe."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the status represents a failure."""
        return self is ProbeStatus.RED

    @property
    def is_warning(self) -> bool:
        """Return ``True`` when the status represents a warning."""
        return self is ProbeStatus.YELLOW


class DoctorImpact(Enum):
    """Impact tier used to derive the doctor exit code."""

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3


ProbeCategory = Literal["env", "config", "registry", "fs", "tls"]

PROBE_CATEGORY_VALUES: tuple[ProbeCategory, ...] = ("env", "config", "registry", "fs", "tls")


@dataclass(slots=True, frozen=True)
class ProbeExecutorOptions:
    """Runtime tunables for executing doctor probes."""

    max_concurrency: int = 4


@dataclass(slots=True, frozen=True)
class ProbeContext:
    """Execution context provided to doctor probes."""

    config: AppConfig
    tls_validator: TLSValidator
    which: Callable[[str], str | None]
    options: ProbeExecutorOptions


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Outcome of running a probe."""

    id: str
    category: ProbeCategory
    status: ProbeStatus
    impact: DoctorImpact
    message: str
    remediation: str | None = None
    duration_ms: int | None = None
    data: Mapping[str, Any] | None = None

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the probe result represents a failure."""
        return self.status.is_failure

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "category": self.category,
            "status": self.status.value,
            "impact": self.impact.name.lower(),
            "message": self.message,
        }
        if self.remediation:
            payload["remediation"] = self.remediation
        if self.duration_ms is not None:
            payload["duration_ms"] = self.duration_ms
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """Metadata + callable for a probe."""

    id: str
    category: ProbeCategory
    run: Callable[[ProbeContext], ProbeResult]


@dataclass(slots=True, frozen=True)
class DoctorSummary:
    """Aggregated summary derived from probe results."""

    status: ProbeStatus
    impact: DoctorImpact
    exit_code: int
    totals: Mapping[ProbeStatus, int]


@dataclass(slots=True, frozen=True)
class DoctorReport:
    """Complete report for a doctor run."""

    results: Sequence[ProbeResult]
    summary: DoctorSummary
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable mapping."""
        return {
            "summary": {
                "status": self.summary.status.value,
                "impact": self.summary.impact.name.lower(),
                "exit_code": self.summary.exit_code,
                "totals": {
                    status.value: int(self.summary.totals.get(status, 0))
                    for status in ProbeStatus
                },
            },
            "results": [result.to_dict() for result in self.results],
            "metadata": dict(self.metadata),
        }


STATUS_ORDER: Mapping[ProbeStatus, int] = {
    ProbeStatus.GREEN: 0,
    ProbeStatus.YELLOW: 1,
    ProbeStatus.RED: 2,
}


def aggregate_results(results: Iterable[ProbeResult]) -> DoctorSummary:
    """Compute the overall status; the exit code is the worst impact seen."""
    totals: dict[ProbeStatus, int] = {status: 0 for status in ProbeStatus}
    worst_impact = DoctorImpact.OK
    worst_status = ProbeStatus.GREEN
    for result in results:
        totals[result.status] += 1
        if result.impact.value > worst_impact.value:
            worst_impact = result.impact
        if STATUS_ORDER[result.status] > STATUS_ORDER[worst_status]:
            worst_status = result.status
    return DoctorSummary(
        status=worst_status,
        impact=worst_impact,
        exit_code=worst_impact.value,
        totals=totals,
    )


def build_report(
    results: Sequence[ProbeResult],
    metadata: Mapping[str, Any] | None = None,
) -> DoctorReport:
    """Create a full DoctorReport from probe results."""
    return DoctorReport(
        results=tuple(results),
        summary=aggregate_results(results),
        metadata=dict(metadata or {}),
    )


__all__ = [
    "PROBE_CATEGORY_VALUES",
    "DoctorImpact",
    "DoctorReport",
    "DoctorSummary",
    "ProbeCategory",
    "ProbeContext",
    "ProbeDefinition",
    "ProbeExecutorOptions",
    "ProbeResult",
    "ProbeStatus",
    "aggregate_results",
    "build_report",
]
