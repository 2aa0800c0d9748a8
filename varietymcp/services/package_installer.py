"""Package installer - materializes a candidate server on disk.

Every install gets a fresh, uniquely named directory under the configured
base directory. Directories are only removed by an explicit cleanup() call;
a failed install leaves its directory behind for inspection.
"""

from __future__ import annotations

import asyncio
import json
import re
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from varietymcp.core.exceptions import (
    ExecutableNotFoundError,
    InstallFailedError,
    UnsafeNameError,
)
from varietymcp.core.types import CandidateServer, InstalledPackage, InstallStatus
from varietymcp.core.validation import (
    is_within_directory,
    validate_package_name,
    validate_version,
)
from varietymcp.interfaces.install_runner import InstallCommandRunner

if TYPE_CHECKING:
    from varietymcp.core.config.installer_config import InstallerConfig

JS_SUFFIXES = (".js", ".mjs", ".cjs")


def _dir_prefix(package_name: str) -> str:
    return re.sub(r"[^a-z0-9._-]+", "_", package_name.lower()).strip("_") + "-"


class PackageInstaller:
    """Installs candidate packages and locates their server entrypoints.

    Usage:
        installer = PackageInstaller(Path("/tmp/servers"))
        installed = await installer.install(candidate)
        executable, args = installer.resolve_entrypoint(installed)
    """

    def __init__(
        self,
        base_dir: Path,
        runner: InstallCommandRunner | None = None,
        node_executable: str = "node",
    ):
        """Initialize installer.

        Args:
            base_dir: Parent directory for per-install directories
            runner: Install command boundary (npm by default)
            node_executable: Interpreter for JavaScript entrypoints
        """
        if runner is None:
            from varietymcp.providers.install.npm_runner import NpmCommandRunner

            runner = NpmCommandRunner()
        self.base_dir = Path(base_dir)
        self._runner = runner
        self._node = node_executable
        self._installed: list[InstalledPackage] = []

    @classmethod
    def from_config(
        cls, config: InstallerConfig, node_executable: str = "node"
    ) -> PackageInstaller:
        from varietymcp.providers.install.npm_runner import NpmCommandRunner

        runner = NpmCommandRunner(
            npm_executable=config.npm_executable, timeout=config.timeout_seconds
        )
        return cls(config.base_dir, runner=runner, node_executable=node_executable)

    async def install(self, candidate: CandidateServer) -> InstalledPackage:
        """Install a candidate into a fresh directory.

        Returns:
            InstalledPackage with status INSTALLED and package_dir set

        Raises:
            InstallFailedError: If the name is unsafe, the command fails, or
                the package directory is missing afterwards
        """
        try:
            package_name = validate_package_name(candidate.package_name)
            version = validate_version(candidate.version)
        except UnsafeNameError as e:
            raise InstallFailedError(f"Refusing to install: {e}") from e

        self.base_dir.mkdir(parents=True, exist_ok=True)
        install_dir = Path(
            tempfile.mkdtemp(prefix=_dir_prefix(package_name), dir=self.base_dir)
        )
        installed = InstalledPackage(
            package_name=package_name, install_dir=install_dir, version=version
        )
        self._installed.append(installed)

        package_spec = f"{package_name}@{version}"
        logger.info(f"Installing {package_spec} into {install_dir}")

        try:
            result = await self._runner.run(package_spec, install_dir)
        except asyncio.CancelledError:
            self._fail(installed, "install cancelled")
            raise
        except Exception as e:
            self._fail(installed, f"install command error: {e}")
            raise InstallFailedError(installed.failure_reason or str(e), installed) from e

        if not result.ok:
            tail = result.output.strip().splitlines()[-5:]
            detail = f"install of {package_spec} exited with code {result.exit_code}"
            if tail:
                detail += ": " + " | ".join(tail)
            self._fail(installed, detail)
            raise InstallFailedError(detail, installed)

        package_dir = install_dir / "node_modules" / package_name
        if not package_dir.is_dir():
            detail = f"install of {package_spec} reported success but {package_dir} is missing"
            self._fail(installed, detail)
            raise InstallFailedError(detail, installed)

        installed.package_dir = package_dir
        installed.status = InstallStatus.INSTALLED
        logger.info(f"Installed {package_spec}")
        return installed

    def _fail(self, installed: InstalledPackage, reason: str) -> None:
        installed.status = InstallStatus.FAILED
        installed.failure_reason = reason
        logger.warning(f"Install failed for {installed.package_name}: {reason}")

    def resolve_entrypoint(self, installed: InstalledPackage) -> tuple[str, list[str]]:
        """Find the command that starts an installed server.

        Looks at package.json "bin" first (preferring the entry named after
        the package), then "main". JavaScript files run through node.

        Raises:
            ExecutableNotFoundError: If no entrypoint exists on disk
        """
        if installed.status != InstallStatus.INSTALLED or installed.package_dir is None:
            raise ExecutableNotFoundError(
                f"{installed.package_name} is not installed ({installed.status.value})"
            )

        package_dir = installed.package_dir
        manifest = self._read_manifest(package_dir)

        relative = self._pick_bin(installed.package_name, manifest.get("bin"))
        if relative is None:
            main = manifest.get("main")
            relative = main if isinstance(main, str) and main else "index.js"

        target = (package_dir / relative).resolve()
        if not is_within_directory(package_dir, target) or not target.is_file():
            raise ExecutableNotFoundError(
                f"No entrypoint for {installed.package_name} (looked for {relative})"
            )

        if target.suffix in JS_SUFFIXES:
            return self._node, [str(target)]
        return str(target), []

    @staticmethod
    def _read_manifest(package_dir: Path) -> dict[str, Any]:
        manifest_path = package_dir / "package.json"
        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise ExecutableNotFoundError(f"Unreadable {manifest_path}: {e}") from e
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _pick_bin(package_name: str, bin_field: Any) -> str | None:
        if isinstance(bin_field, str) and bin_field:
            return bin_field
        if not isinstance(bin_field, dict) or not bin_field:
            return None
        unscoped = package_name.rsplit("/", 1)[-1]
        if isinstance(bin_field.get(unscoped), str):
            return bin_field[unscoped]
        for key in sorted(bin_field):
            if isinstance(bin_field[key], str):
                return bin_field[key]
        return None

    def cleanup(self, installed: InstalledPackage) -> bool:
        """Remove an install directory.

        Returns:
            True if a directory was removed, False if it was already gone

        Raises:
            UnsafeNameError: If the directory is not inside base_dir
        """
        install_dir = installed.install_dir
        if (
            install_dir.resolve() == self.base_dir.resolve()
            or not is_within_directory(self.base_dir, install_dir)
        ):
            raise UnsafeNameError(
                f"Refusing to remove {install_dir}: not inside {self.base_dir}"
            )
        if not install_dir.exists():
            return False
        shutil.rmtree(install_dir)
        logger.info(f"Removed install directory {install_dir}")
        return True

    def list_installed(self) -> list[InstalledPackage]:
        """Packages installed (or attempted) by this installer."""
        return list(self._installed)
