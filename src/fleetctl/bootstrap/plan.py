"""Remote bootstrap plans.

A plan is the ordered list of shell steps executed on one VM. Each step
carries its own failure policy: best-effort steps print a warning and the
script moves on, required steps abort the script with exit status 1. The split
mirrors which steps later steps depend on (the package download, indexing and
final refresh are load-bearing, subscription and module activation are not).
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..machines import BootstrapProfile, MachineEntry
from ..templates import TemplateEngine

if TYPE_CHECKING:
    from ..config import AppConfig

SCRIPT_TEMPLATE = "bootstrap/script.sh.j2"
ZYPPER = "sudo zypper --non-interactive --gpg-auto-import-keys"
VENDOR_REPO_URL = "https://packages.microsoft.com/sles/15/prod/"
VENDOR_REPO_ALIAS = "microsoft-prod"
LOCAL_REPO_PATH = "/var/cache/zypper/custom_repo"
LOCAL_REPO_NAME = "custom_rpms"
LEGACY_MODULE_MIN_SP = 5
PYTHON_RUNTIME_MAX_SP = 6
RUNTIME_PACKAGE = "python311-base"
PACKAGE_RETRY_DELAY = 5


class StepPolicy(str, Enum):
    """What a failing step does to the rest of the script."""

    BEST_EFFORT = "best-effort"
    REQUIRED = "required"


@dataclass(frozen=True)
class BootstrapStep:
    """One shell command in a bootstrap plan."""

    name: str
    command: str
    policy: StepPolicy = StepPolicy.BEST_EFFORT
    retries: int = 0
    retry_delay: int = PACKAGE_RETRY_DELAY

    def to_dict(self) -> dict[str, object]:
        """Return the template context for this step."""
        return {
            "name": self.name,
            "command": self.command,
            "policy": self.policy.value,
            "retries": self.retries,
            "retry_delay": self.retry_delay,
        }


@dataclass(frozen=True)
class BootstrapSettings:
    """Credentials and storage coordinates interpolated into remote commands."""

    registration_code: str
    registration_email: str
    blob_storage: str | None = None
    blob_container: str | None = None
    sas_token: str | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> BootstrapSettings:
        """Build settings from the resolved application config."""
        return cls(
            registration_code=config.suse.registration_code or "",
            registration_email=config.suse.registration_email or "",
            blob_storage=config.azure.blob_storage,
            blob_container=config.azure.blob_container,
            sas_token=config.azure.sas_token,
        )

    @property
    def blob_source_url(self) -> str:
        """Return the container URL with the SAS query string appended."""
        base = f"https://{self.blob_storage}.blob.core.windows.net/{self.blob_container}"
        return f"{base}?{self.sas_token}" if self.sas_token else base


@dataclass(frozen=True)
class BootstrapPlan:
    """Ordered steps plus informational notes for one host."""

    host: str
    profile: BootstrapProfile
    steps: tuple[BootstrapStep, ...]
    notes: tuple[str, ...] = field(default_factory=tuple)

    def step_names(self) -> list[str]:
        """Return the step names in execution order."""
        return [step.name for step in self.steps]


def _registration_step(settings: BootstrapSettings) -> BootstrapStep:
    command = (
        f"sudo SUSEConnect -r {shlex.quote(settings.registration_code)} "
        f"-e {shlex.quote(settings.registration_email)}"
    )
    return BootstrapStep("register with SUSEConnect", command)


def _module_step(module: str, entry: MachineEntry) -> BootstrapStep:
    product = f"{module}/{entry.os_version}.{entry.service_pack}/x86_64"
    return BootstrapStep(f"activate {module}", f"sudo SUSEConnect -p {product}")


def _repository_steps(settings: BootstrapSettings) -> list[BootstrapStep]:
    repo_file = f"/etc/zypp/repos.d/{LOCAL_REPO_NAME}.repo"
    repo_body = (
        f"[{LOCAL_REPO_NAME}]\\nname=Local Custom RPMs\\nbaseurl=file://{LOCAL_REPO_PATH}/\\n"
        "enabled=1\\ngpgcheck=0\\npriority=1\\n"
    )
    required = StepPolicy.REQUIRED
    return [
        BootstrapStep(
            "add vendor repository",
            f"{ZYPPER} addrepo {VENDOR_REPO_URL} {VENDOR_REPO_ALIAS}",
        ),
        BootstrapStep("refresh repositories", f"{ZYPPER} refresh"),
        BootstrapStep("install azcopy", f"{ZYPPER} install -y azcopy", required, retries=1),
        BootstrapStep("create repository directory", f"sudo mkdir -p {LOCAL_REPO_PATH}"),
        BootstrapStep(
            "download package archive",
            f"sudo azcopy cp {shlex.quote(settings.blob_source_url)} {LOCAL_REPO_PATH} "
            "--recursive=true",
            required,
        ),
        BootstrapStep(
            "install createrepo_c",
            f"{ZYPPER} install --auto-agree-with-licenses createrepo_c",
        ),
        BootstrapStep("index local repository", f"sudo createrepo_c {LOCAL_REPO_PATH}", required),
        BootstrapStep(
            "register local repository",
            f"printf {shlex.quote(repo_body)} | sudo tee {repo_file} > /dev/null",
        ),
        BootstrapStep("clean package caches", "sudo zypper clean --all"),
        BootstrapStep("refresh with local repository", f"{ZYPPER} refresh", required),
    ]


def build_plan(entry: MachineEntry, settings: BootstrapSettings) -> BootstrapPlan:
    """Return the bootstrap plan for *entry*."""
    profile = BootstrapProfile.for_entry(entry)
    register = _registration_step(settings)
    if profile is BootstrapProfile.REGISTRATION_FUTURE:
        return BootstrapPlan(
            host=entry.fqdn,
            profile=profile,
            steps=(register,),
            notes=(f"SLES {entry.os_version} setup complete. Manual Trento installation required.",),
        )
    if profile is BootstrapProfile.REGISTRATION_HELM:
        return BootstrapPlan(
            host=entry.fqdn,
            profile=profile,
            steps=(register,),
            notes=("Helm VM setup complete. Manual Trento Helm installation required.",),
        )

    steps = [
        register,
        _module_step("sle-module-basesystem", entry),
        _module_step("PackageHub", entry),
    ]
    if entry.service_pack >= LEGACY_MODULE_MIN_SP:
        steps.append(_module_step("sle-module-legacy", entry))
    if entry.service_pack <= PYTHON_RUNTIME_MAX_SP:
        steps.append(
            BootstrapStep(
                f"install {RUNTIME_PACKAGE}",
                f"{ZYPPER} install --auto-agree-with-licenses {RUNTIME_PACKAGE}",
                retries=1,
            )
        )
    if "rpm" in entry.base_name:
        steps.extend(_repository_steps(settings))
    return BootstrapPlan(host=entry.fqdn, profile=profile, steps=tuple(steps))


def render_script(plan: BootstrapPlan, templates: TemplateEngine) -> str:
    """Render *plan* into a bash script."""
    context = {
        "host": plan.host,
        "profile": plan.profile.value,
        "steps": [step.to_dict() for step in plan.steps],
        "notes": list(plan.notes),
    }
    return templates.render_to_string(SCRIPT_TEMPLATE, context)


__all__ = [
    "BootstrapPlan",
    "BootstrapProfile",
    "BootstrapSettings",
    "BootstrapStep",
    "StepPolicy",
    "build_plan",
    "render_script",
]
