"""Provider interfaces for fleetctl."""
from __future__ import annotations

from .ansible import AnsibleError, AnsibleProvider
from .azure import AzureError, AzureProvider, AzureResource
from .commands import CommandError, CommandResult, CommandRunner, CommandSpec, SubprocessRunner
from .ssh import SSHError, SSHProvider
from .terraform import TerraformError, TerraformProvider

__all__ = [
    "AnsibleError",
    "AnsibleProvider",
    "AzureError",
    "AzureProvider",
    "AzureResource",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "CommandSpec",
    "SSHError",
    "SSHProvider",
    "SubprocessRunner",
    "TerraformError",
    "TerraformProvider",
]
