"""npm-backed install command runner."""

import asyncio
import os
import subprocess
from pathlib import Path

from loguru import logger

from varietymcp.interfaces.install_runner import CommandResult

# Exit codes reported for failures that never produced a real exit status
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124

OUTPUT_TAIL_CHARS = 4000


class NpmCommandRunner:
    """Installs a package into a directory with ``npm install``.

    The directory gets its own package.json (``npm init -y``) so the package
    lands in ``<dir>/node_modules`` rather than in some parent project.
    """

    def __init__(self, npm_executable: str = "npm", timeout: float = 300.0):
        self._npm = npm_executable
        self._timeout = timeout

    async def run(self, package_spec: str, working_dir: Path) -> CommandResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        init = await self._run([self._npm, "init", "-y"], working_dir, deadline)
        if not init.ok:
            return init

        return await self._run(
            [self._npm, "install", "--no-audit", "--no-fund", package_spec],
            working_dir,
            deadline,
        )

    async def _run(self, cmd: list[str], cwd: Path, deadline: float) -> CommandResult:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return CommandResult(EXIT_TIMEOUT, f"timed out before running {cmd[1]}")

        logger.debug(f"Running {' '.join(cmd)} in {cwd}")
        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=str(cwd),
                env={**os.environ, "npm_config_update_notifier": "false"},
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=remaining)
        except FileNotFoundError:
            return CommandResult(EXIT_NOT_FOUND, f"{cmd[0]} not found")
        except asyncio.CancelledError:
            if process and process.returncode is None:
                process.kill()
            raise
        except asyncio.TimeoutError:
            if process and process.returncode is None:
                process.kill()
                await process.wait()
            return CommandResult(
                EXIT_TIMEOUT, f"{' '.join(cmd)} timed out after {self._timeout:.0f}s"
            )

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        return CommandResult(
            process.returncode if process.returncode is not None else 1,
            output[-OUTPUT_TAIL_CHARS:],
        )
