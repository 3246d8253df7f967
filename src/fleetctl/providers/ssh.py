"""SSH provider for remote command execution and known_hosts maintenance."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .commands import CommandResult, CommandRunner, CommandSpec


class SSHError(RuntimeError):
    """Raised when the SSH client is misconfigured."""


@dataclass(slots=True)
class SSHProvider:
    """Run commands on fleet hosts through the OpenSSH client."""

    runner: CommandRunner
    user: str
    private_key_path: Path | None = None
    ssh_bin: str = "ssh"
    keygen_bin: str = "ssh-keygen"
    known_hosts: Path | None = None
    login_timeout: float = 30.0

    def target(self, host: str) -> str:
        """Return the ``user@host`` destination for *host*."""
        if not self.user:
            raise SSHError("SSH user is not configured.")
        return f"{self.user}@{host}"

    def base_args(self, host: str) -> list[str]:
        """Return the client invocation up to (and including) the destination."""
        args = [
            self.ssh_bin,
            "-o",
            "StrictHostKeyChecking=accept-new",
            "-o",
            "BatchMode=yes",
        ]
        if self.private_key_path is not None:
            args.extend(["-i", str(self.private_key_path)])
        args.append(self.target(host))
        return args

    def check_login(self, host: str) -> CommandResult:
        """Attempt an authenticated no-op on *host*."""
        spec = CommandSpec(args=(*self.base_args(host), "true"), timeout=self.login_timeout)
        return self.runner.run(spec)

    def run_script(self, host: str, script: str, *, log_path: Path | None = None) -> CommandResult:
        """Stream *script* to a remote ``bash`` on *host*."""
        spec = CommandSpec(
            args=(*self.base_args(host), "bash"),
            input=script,
            log_path=log_path,
        )
        return self.runner.run(spec)

    def forget_host(self, fqdn: str) -> bool:
        """Remove *fqdn* from known_hosts; return ``True`` when a key was removed."""
        args: list[str] = [self.keygen_bin, "-R", fqdn]
        if self.known_hosts is not None:
            args.extend(["-f", str(self.known_hosts)])
        result = self.runner.run(CommandSpec(args=tuple(args)))
        if not result.ok:
            return False
        # ssh-keygen exits 0 even when the host was absent.
        return "not found" not in result.output.lower()


__all__ = ["SSHError", "SSHProvider"]
