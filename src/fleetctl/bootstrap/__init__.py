"""Remote bootstrap of fleet hosts."""
from __future__ import annotations

from .executor import BootstrapExecutor, HostOutcome
from .orchestrator import FleetOrchestrator, FleetReport, FleetRunResult, LaunchRecord, RunStatus
from .plan import (
    BootstrapPlan,
    BootstrapProfile,
    BootstrapSettings,
    BootstrapStep,
    StepPolicy,
    build_plan,
    render_script,
)

__all__ = [
    # planning
    "BootstrapPlan",
    "BootstrapProfile",
    "BootstrapSettings",
    "BootstrapStep",
    "StepPolicy",
    "build_plan",
    "render_script",
    # execution
    "BootstrapExecutor",
    "HostOutcome",
    # orchestration
    "FleetOrchestrator",
    "FleetReport",
    "FleetRunResult",
    "LaunchRecord",
    "RunStatus",
]
