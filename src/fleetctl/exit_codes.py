"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Every failure class (configuration, registry validation, per-host
    bootstrap failures, resources left behind by a sweep) maps to ``FAILURE``
    so callers chaining stages only need to test for non-zero.
    """

    OK = 0
    FAILURE = 1
