"""InstallCommandRunner protocol - the external install command boundary."""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an install command.

    Attributes:
        exit_code: Process exit code (non-zero on failure or timeout)
        output: Combined stdout/stderr, for diagnostics
    """

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class InstallCommandRunner(Protocol):
    """Runs the command that materializes a package in a directory."""

    async def run(self, package_spec: str, working_dir: Path) -> CommandResult:
        """Install package_spec ("name@version") into working_dir.

        Implementations must build argv lists, never shell strings, and must
        not raise for a failing command; failures are reported through the
        exit code.
        """
        ...
