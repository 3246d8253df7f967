"""Ansible provider: isolated virtualenv, collection install and playbook run."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .commands import CommandResult, CommandRunner, CommandSpec

PLAYBOOK_NAME = "playbook.yml"
REQUIREMENTS_NAME = "requirements.yml"


class AnsibleError(RuntimeError):
    """Raised when virtualenv setup, collection install or a playbook fails."""


@dataclass(slots=True)
class AnsibleProvider:
    """Drive ``ansible-playbook`` from a dedicated virtual environment."""

    runner: CommandRunner
    venv_dir: Path
    python_exec: str = "python3"
    core_version: str = "2.16.*"
    log_path: Path | None = None

    @property
    def playbook_bin(self) -> Path:
        """Return the ``ansible-playbook`` executable inside the venv."""
        return self.venv_dir / "bin" / "ansible-playbook"

    @property
    def galaxy_bin(self) -> Path:
        """Return the ``ansible-galaxy`` executable inside the venv."""
        return self.venv_dir / "bin" / "ansible-galaxy"

    def ensure_venv(self) -> bool:
        """Create the virtualenv unless it already holds ``ansible-playbook``.

        Returns ``True`` when a new environment was built.
        """
        if self.playbook_bin.exists():
            return False
        pip = str(self.venv_dir / "bin" / "pip")
        self._checked(self.python_exec, "-m", "venv", str(self.venv_dir))
        self._checked(pip, "install", "--upgrade", "pip")
        self._checked(pip, "install", f"ansible-core=={self.core_version}")
        return True

    def install_collections(self, requirements_dir: Path) -> bool:
        """Install collections from ``requirements.yml`` when it exists."""
        requirements = requirements_dir / REQUIREMENTS_NAME
        if not requirements.is_file():
            return False
        self._checked(str(self.galaxy_bin), "collection", "install", "-r", str(requirements))
        return True

    def run_playbook(self, inventory: Path, playbook: Path) -> CommandResult:
        """Run *playbook* against *inventory*; raise :class:`AnsibleError` on failure."""
        return self._checked(str(self.playbook_bin), "-i", str(inventory), str(playbook))

    # ------------------------------------------------------------------
    def _checked(self, *args: str) -> CommandResult:
        spec = CommandSpec(args=args, log_path=self.log_path)
        result = self.runner.run(spec)
        if not result.ok:
            raise AnsibleError(f"{spec.display()} failed (exit {result.exit_code}).")
        return result


__all__ = ["AnsibleError", "AnsibleProvider", "PLAYBOOK_NAME", "REQUIREMENTS_NAME"]
