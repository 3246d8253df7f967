"""Probe execution harness for the doctor command."""

from __future__ import annotations

import concurrent.futures
import shutil
import time
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from ..tls import TLSValidator
from .models import (
    DoctorImpact,
    DoctorReport,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    build_report,
)

if TYPE_CHECKING:
    from ..runtime import RunContext


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _run_single_probe(probe: ProbeDefinition, context: ProbeContext) -> ProbeResult:
    start = time.perf_counter()
    try:
        result = probe.run(context)
    except Exception as exc:  # noqa: BLE001
        return ProbeResult(
            id=probe.id,
            category=probe.category,
            status=ProbeStatus.RED,
            impact=DoctorImpact.ENVIRONMENT,
            message=f"Probe '{probe.id}' raised an unexpected error: {exc}",
            duration_ms=_duration_ms(start),
            data={"exception": repr(exc)},
        )
    if result.duration_ms is None:
        result = replace(result, duration_ms=_duration_ms(start))
    return result


def run_probes(
    context: ProbeContext,
    probes: Sequence[ProbeDefinition],
) -> list[ProbeResult]:
    """Execute probes with bounded concurrency, preserving registration order."""
    if not probes:
        return []

    max_workers = max(1, context.options.max_concurrency)
    if max_workers == 1:
        return [_run_single_probe(probe, context) for probe in probes]

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(_run_single_probe, probe, context) for probe in probes]
        return [future.result() for future in futures]


def create_probe_context(
    runtime: RunContext,
    options: ProbeExecutorOptions | None = None,
) -> ProbeContext:
    """Build a ProbeContext from the CLI run context."""
    return ProbeContext(
        config=runtime.config,
        tls_validator=TLSValidator(warn_expiry_days=runtime.config.certs.warn_expiry_days),
        which=shutil.which,
        options=options or ProbeExecutorOptions(),
    )


class DoctorEngine:
    """Coordinator that executes probes and aggregates the overall report."""

    def __init__(self, context: ProbeContext) -> None:
        """Store the probe execution context."""
        self._context = context

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> DoctorReport:
        """Run the supplied probes and build a doctor report."""
        start = time.perf_counter()
        results = run_probes(self._context, probes)
        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "probe_count": len(results),
            "concurrency": self._context.options.max_concurrency,
        }
        if metadata:
            run_metadata.update(metadata)
        return build_report(results, metadata=run_metadata)


__all__ = ["DoctorEngine", "create_probe_context", "run_probes"]
