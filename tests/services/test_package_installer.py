"""Tests for PackageInstaller with a fake install runner."""

import asyncio
import os

import pytest

from tests.helpers.fake_installers import FakeNpmRunner, RaisingRunner
from varietymcp.core.config.installer_config import InstallerConfig
from varietymcp.core.exceptions import (
    ExecutableNotFoundError,
    InstallFailedError,
    UnsafeNameError,
)
from varietymcp.core.types import CandidateServer, InstalledPackage, InstallStatus
from varietymcp.services.package_installer import PackageInstaller


def make_candidate(name="@modelcontextprotocol/server-memory", version="latest"):
    return CandidateServer(package_name=name, version=version)


class TestInstall:
    @pytest.mark.asyncio
    async def test_successful_install(self, tmp_path):
        runner = FakeNpmRunner()
        installer = PackageInstaller(tmp_path, runner=runner)

        installed = await installer.install(make_candidate())

        assert installed.status == InstallStatus.INSTALLED
        assert installed.install_dir.parent == tmp_path
        assert installed.package_dir == (
            installed.install_dir / "node_modules" / "@modelcontextprotocol/server-memory"
        )
        assert runner.calls == [
            ("@modelcontextprotocol/server-memory@latest", installed.install_dir)
        ]
        assert installer.list_installed() == [installed]

    @pytest.mark.asyncio
    async def test_every_install_gets_its_own_directory(self, tmp_path):
        installer = PackageInstaller(tmp_path, runner=FakeNpmRunner())

        first = await installer.install(make_candidate())
        second = await installer.install(make_candidate())

        assert first.install_dir != second.install_dir
        assert first.install_dir.name.startswith("modelcontextprotocol_server-memory-")

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails_and_keeps_directory(self, tmp_path):
        runner = FakeNpmRunner(exit_code=1, output="npm ERR! 404 Not Found")
        installer = PackageInstaller(tmp_path, runner=runner)

        with pytest.raises(InstallFailedError) as exc_info:
            await installer.install(make_candidate("mcp-server-nope"))

        failed = exc_info.value.installed
        assert failed.status == InstallStatus.FAILED
        assert "exited with code 1" in failed.failure_reason
        assert "404 Not Found" in str(exc_info.value)
        assert failed.install_dir.is_dir()

    @pytest.mark.asyncio
    async def test_success_without_package_directory_fails(self, tmp_path):
        installer = PackageInstaller(tmp_path, runner=FakeNpmRunner(create_package=False))

        with pytest.raises(InstallFailedError, match="is missing"):
            await installer.install(make_candidate())

    @pytest.mark.asyncio
    async def test_runner_exception_becomes_install_failure(self, tmp_path):
        installer = PackageInstaller(tmp_path, runner=RaisingRunner(OSError("disk full")))

        with pytest.raises(InstallFailedError, match="disk full") as exc_info:
            await installer.install(make_candidate())
        assert exc_info.value.installed.status == InstallStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancelled_install_is_marked_failed(self, tmp_path):
        runner = FakeNpmRunner(delay=5.0)
        installer = PackageInstaller(tmp_path, runner=runner)

        task = asyncio.create_task(installer.install(make_candidate()))
        while not runner.calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (installed,) = installer.list_installed()
        assert installed.status == InstallStatus.FAILED
        assert installed.failure_reason == "install cancelled"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name,version",
        [
            ("mcp-server; rm -rf /", "latest"),
            ("../../outside", "latest"),
            ("--global", "latest"),
            ("mcp-server-ok", "1.0.0 && curl evil"),
        ],
    )
    async def test_unsafe_names_never_reach_the_runner(self, tmp_path, name, version):
        runner = FakeNpmRunner()
        installer = PackageInstaller(tmp_path, runner=runner)

        with pytest.raises(InstallFailedError, match="Refusing to install"):
            await installer.install(make_candidate(name, version))

        assert runner.calls == []
        assert list(tmp_path.iterdir()) == []


class TestResolveEntrypoint:
    @pytest.mark.asyncio
    async def test_bin_entry_named_after_package(self, tmp_path):
        runner = FakeNpmRunner(
            manifest={"bin": {"other": "other.js", "server-memory": "dist/index.js"}},
            files={"dist/index.js": "", "other.js": ""},
        )
        installer = PackageInstaller(tmp_path, runner=runner, node_executable="node18")
        installed = await installer.install(make_candidate())

        executable, args = installer.resolve_entrypoint(installed)

        assert executable == "node18"
        assert args == [str((installed.package_dir / "dist/index.js").resolve())]

    @pytest.mark.asyncio
    async def test_string_bin(self, tmp_path):
        runner = FakeNpmRunner(manifest={"bin": "cli.mjs"}, files={"cli.mjs": ""})
        installer = PackageInstaller(tmp_path, runner=runner)
        installed = await installer.install(make_candidate("mcp-x"))

        executable, args = installer.resolve_entrypoint(installed)

        assert executable == "node"
        assert args[0].endswith("cli.mjs")

    @pytest.mark.asyncio
    async def test_main_then_index_fallback(self, tmp_path):
        installer = PackageInstaller(
            tmp_path, runner=FakeNpmRunner(manifest={"name": "mcp-x"})
        )
        installed = await installer.install(make_candidate("mcp-x"))

        _, args = installer.resolve_entrypoint(installed)

        assert args[0].endswith("index.js")

    @pytest.mark.asyncio
    async def test_native_executable_runs_directly(self, tmp_path):
        runner = FakeNpmRunner(manifest={"bin": "bin/server"}, files={"bin/server": ""})
        installer = PackageInstaller(tmp_path, runner=runner)
        installed = await installer.install(make_candidate("mcp-x"))

        executable, args = installer.resolve_entrypoint(installed)

        assert executable.endswith(os.path.join("bin", "server"))
        assert args == []

    @pytest.mark.asyncio
    async def test_missing_entrypoint(self, tmp_path):
        runner = FakeNpmRunner(manifest={"main": "dist/gone.js"}, files={})
        installer = PackageInstaller(tmp_path, runner=runner)
        installed = await installer.install(make_candidate("mcp-x"))

        with pytest.raises(ExecutableNotFoundError):
            installer.resolve_entrypoint(installed)

    @pytest.mark.asyncio
    async def test_entrypoint_outside_package_is_rejected(self, tmp_path):
        runner = FakeNpmRunner(manifest={"bin": "../../../escape.js"}, files={})
        installer = PackageInstaller(tmp_path, runner=runner)
        installed = await installer.install(make_candidate("mcp-x"))
        (installed.install_dir.parent / "escape.js").write_text("")

        with pytest.raises(ExecutableNotFoundError):
            installer.resolve_entrypoint(installed)

    def test_not_installed(self, tmp_path):
        installer = PackageInstaller(tmp_path, runner=FakeNpmRunner())
        pending = InstalledPackage(package_name="mcp-x", install_dir=tmp_path / "x")

        with pytest.raises(ExecutableNotFoundError):
            installer.resolve_entrypoint(pending)

    @pytest.mark.asyncio
    async def test_corrupt_manifest(self, tmp_path):
        installer = PackageInstaller(tmp_path, runner=FakeNpmRunner())
        installed = await installer.install(make_candidate("mcp-x"))
        (installed.package_dir / "package.json").write_text("{not json")

        with pytest.raises(ExecutableNotFoundError):
            installer.resolve_entrypoint(installed)


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_removes_install_dir(self, tmp_path):
        installer = PackageInstaller(tmp_path, runner=FakeNpmRunner())
        installed = await installer.install(make_candidate())

        assert installer.cleanup(installed) is True
        assert not installed.install_dir.exists()
        assert installer.cleanup(installed) is False

    def test_cleanup_refuses_paths_outside_base(self, tmp_path):
        base = tmp_path / "servers"
        base.mkdir()
        outside = tmp_path / "precious"
        outside.mkdir()
        installer = PackageInstaller(base, runner=FakeNpmRunner())

        with pytest.raises(UnsafeNameError):
            installer.cleanup(InstalledPackage(package_name="x", install_dir=outside))
        with pytest.raises(UnsafeNameError):
            installer.cleanup(InstalledPackage(package_name="x", install_dir=base))
        assert outside.is_dir()
        assert base.is_dir()


class TestFromConfig:
    def test_from_config_uses_npm_runner(self, tmp_path):
        from varietymcp.providers.install.npm_runner import NpmCommandRunner

        installer = PackageInstaller.from_config(
            InstallerConfig(base_dir=tmp_path, npm_executable="pnpm"), node_executable="bun"
        )

        assert installer.base_dir == tmp_path
        assert isinstance(installer._runner, NpmCommandRunner)
        assert installer._runner._npm == "pnpm"
        assert installer._node == "bun"
