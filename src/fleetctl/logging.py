"""Structured operation logging plus plain-text stage and host logs.

Every CLI operation appends one JSON line to ``operations.jsonl`` inside the
logs directory. Stage logs (``tf-apply.log``, ``generate-certs.log``...) and
per-host bootstrap logs live alongside it and receive raw tool output.

Logging must never take a pipeline down: if the directory cannot be created or
a write fails the structured logger disables itself and carries on silently.
"""
from __future__ import annotations

import json
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def append_log_line(path: Path, message: str) -> None:
    """Append a timestamped *message* to the plain-text log at *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(tz=UTC).strftime("%H:%M:%S")
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"[{stamp}] {message}\n")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass
class OperationScope:
    """Mutable record for a single CLI operation."""

    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = field(default_factory=_timestamp)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, rc=0, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        rc: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            rc=rc,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            rc=rc,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        changed: int | None = None,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message, "rc": rc}
        if changed is not None:
            result["changed"] = changed
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if context:
            result["context"] = _sanitize(context)
        self.result = result


class StructuredLogger:
    """Append operation records to ``operations.jsonl`` and manage log files."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*; disable structured logging if it is unusable."""
        self.logs_dir = logs_dir
        self._operations_log_path = logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    # ------------------------------------------------------------------
    # Plain-text logs
    # ------------------------------------------------------------------
    def stage_log(self, name: str) -> Path:
        """Return the aggregate log path for pipeline stage *name*."""
        return self.logs_dir / f"{name}.log"

    def host_log(self, base_name: str) -> Path:
        """Return the bootstrap log path for a single host."""
        return self.logs_dir / f"{base_name}.log"

    def reset_log(self, path: Path, *, header: str | None = None) -> Path:
        """Truncate *path* (creating parents) and optionally write a header line."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            if header:
                handle.write(f"--- {header} ---\n")
        return path

    def purge(self) -> int:
        """Delete every ``*.log`` file in the logs directory; return the count."""
        if not self.logs_dir.is_dir():
            return 0
        removed = 0
        for path in sorted(self.logs_dir.glob("*.log")):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    # ------------------------------------------------------------------
    # Structured operations
    # ------------------------------------------------------------------
    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Track a CLI operation and persist its outcome on exit."""
        scope = OperationScope(command=command, args=dict(args or {}), target=dict(target or {}))
        start = time.perf_counter()
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope, int((time.perf_counter() - start) * 1000))

    def _write(self, scope: OperationScope, duration_ms: int) -> None:
        if not self._enabled:
            return
        record = {
            "ts": scope.started_at,
            "op_id": scope.op_id,
            "command": scope.command,
            "args": _sanitize(scope.args),
            "target": _sanitize(scope.target),
            "duration_ms": duration_ms,
            "steps": scope.steps,
            "result": scope.result,
        }
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "append_log_line"]
