"""Terraform provider for the provisioning stage."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .commands import CommandResult, CommandRunner, CommandSpec


class TerraformError(RuntimeError):
    """Raised when ``terraform init`` or ``terraform apply`` fails."""

    def __init__(self, message: str, *, exit_code: int) -> None:
        """Store the failing exit code alongside the message."""
        super().__init__(message)
        self.exit_code = exit_code


def terraform_environment(values: Mapping[str, str]) -> dict[str, str]:
    """Export *values* unchanged and again as ``TF_VAR_<lowercase key>``."""
    env: dict[str, str] = {}
    for key, value in values.items():
        env[key] = value
        env[f"TF_VAR_{key.lower()}"] = value
    return env


@dataclass(slots=True)
class TerraformProvider:
    """Run ``terraform init`` and ``terraform apply`` in a working directory."""

    runner: CommandRunner
    directory: Path
    terraform_bin: str = "terraform"

    def apply(
        self,
        variables: Mapping[str, str],
        *,
        log_path: Path | None = None,
        extra_args: tuple[str, ...] = (),
    ) -> list[CommandResult]:
        """Initialise and apply the configuration; raise on the first failure."""
        env = terraform_environment(variables)
        results: list[CommandResult] = []
        for subcommand in (("init",), ("apply", "-auto-approve", *extra_args)):
            spec = CommandSpec(
                args=(self.terraform_bin, f"-chdir={self.directory}", *subcommand),
                env=env,
                log_path=log_path,
            )
            result = self.runner.run(spec)
            results.append(result)
            if not result.ok:
                raise TerraformError(
                    f"terraform {subcommand[0]} failed (exit {result.exit_code}).",
                    exit_code=result.exit_code,
                )
        return results


__all__ = ["TerraformError", "TerraformProvider", "terraform_environment"]
