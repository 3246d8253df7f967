"""Doctor command infrastructure."""

from __future__ import annotations

from .engine import DoctorEngine, create_probe_context, run_probes
from .models import (
    PROBE_CATEGORY_VALUES,
    DoctorImpact,
    DoctorReport,
    DoctorSummary,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
    build_report,
)
from .probes import PIPELINE_SETTINGS, collect_probes

__all__ = [
    "DoctorEngine",
    "DoctorImpact",
    "DoctorReport",
    "DoctorSummary",
    "PIPELINE_SETTINGS",
    "PROBE_CATEGORY_VALUES",
    "ProbeCategory",
    "ProbeContext",
    "ProbeDefinition",
    "ProbeExecutorOptions",
    "ProbeResult",
    "ProbeStatus",
    "aggregate_results",
    "build_report",
    "collect_probes",
    "create_probe_context",
    "run_probes",
]
