"""Typed external command execution.

Every external tool (``az``, ``terraform``, ``ssh``, ``openssl``...) is invoked
through a :class:`CommandRunner` so that providers can be exercised in tests
with a fake runner instead of real binaries.
"""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

TIMEOUT_EXIT_CODE = 124


class CommandError(RuntimeError):
    """Raised when a command cannot be started at all."""


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Arguments and execution parameters for one external command."""

    args: tuple[str, ...]
    timeout: float | None = None
    input: str | None = None
    env: Mapping[str, str] | None = None
    cwd: Path | None = None
    log_path: Path | None = None

    @classmethod
    def of(cls, *args: str | os.PathLike[str], **kwargs: object) -> CommandSpec:
        """Build a spec from positional arguments."""
        return cls(args=tuple(str(arg) for arg in args), **kwargs)  # type: ignore[arg-type]

    def display(self) -> str:
        """Return the command line for log messages."""
        return " ".join(self.args)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Exit status and combined stdout/stderr of a finished command."""

    exit_code: int
    output: str = ""
    timed_out: bool = field(default=False)

    @property
    def ok(self) -> bool:
        """Return ``True`` for a zero exit status."""
        return self.exit_code == 0


class CommandRunner(Protocol):
    """Capability to execute a :class:`CommandSpec`."""

    def run(self, spec: CommandSpec) -> CommandResult:
        """Execute *spec* and return its result."""


class SubprocessRunner:
    """Run commands with :func:`subprocess.run`, merging stderr into stdout.

    When the command names a ``log_path`` the captured output is appended to it,
    preceded by the command line, so every stage keeps a full transcript.
    """

    def run(self, spec: CommandSpec) -> CommandResult:
        """Execute *spec* synchronously."""
        env = None
        if spec.env is not None:
            env = os.environ.copy()
            env.update(spec.env)
        try:
            completed = subprocess.run(  # noqa: S603
                list(spec.args),
                input=spec.input,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=spec.timeout,
                env=env,
                cwd=str(spec.cwd) if spec.cwd is not None else None,
                check=False,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"{spec.args[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            partial = exc.output if isinstance(exc.output, str) else ""
            result = CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                output=f"{partial}\n[timed out after {spec.timeout}s]".lstrip("\n"),
                timed_out=True,
            )
        else:
            result = CommandResult(exit_code=completed.returncode, output=completed.stdout or "")
        if spec.log_path is not None:
            append_transcript(spec.log_path, spec, result)
        return result


def append_transcript(path: Path, spec: CommandSpec, result: CommandResult) -> None:
    """Append *spec* and its *result* to the log at *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"$ {spec.display()}\n")
        if result.output:
            handle.write(result.output if result.output.endswith("\n") else result.output + "\n")
        handle.write(f"[exit {result.exit_code}]\n")


def run_checked(runner: CommandRunner, spec: CommandSpec, *, error: type[Exception]) -> CommandResult:
    """Run *spec* and raise *error* with the tool's output on non-zero exit."""
    result = runner.run(spec)
    if not result.ok:
        message = result.output.strip().splitlines()[-1] if result.output.strip() else "no output"
        raise error(f"{spec.display()} failed (exit {result.exit_code}): {message}")
    return result


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "CommandSpec",
    "SubprocessRunner",
    "append_transcript",
    "run_checked",
]
