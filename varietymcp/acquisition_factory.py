"""Wiring for the acquisition stack.

Builds every service from one Config so the CLI, tests and embedding
applications get identically connected components.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from varietymcp.core.config.config import Config
from varietymcp.interfaces.install_runner import InstallCommandRunner
from varietymcp.interfaces.llm_provider import LLMProvider
from varietymcp.mcp_client.client import ProtocolClient
from varietymcp.services.capability_router import CapabilityRouter
from varietymcp.services.discovery_service import DiscoveryService
from varietymcp.services.health_monitor import HealthMonitor
from varietymcp.services.package_installer import PackageInstaller
from varietymcp.services.process_supervisor import ProcessSupervisor
from varietymcp.services.variety_monitor import RequiredCapabilities, VarietyMonitor


@dataclass
class AcquisitionServices:
    """Connected acquisition components."""

    config: Config
    supervisor: ProcessSupervisor
    protocol: ProtocolClient
    discovery: DiscoveryService
    installer: PackageInstaller
    router: CapabilityRouter
    monitor: VarietyMonitor
    health: HealthMonitor

    async def start(self) -> None:
        """Start the monitor loop and periodic health checks."""
        await self.monitor.start()
        await self.health.start()

    async def shutdown(self) -> None:
        """Stop both loops, close sessions and stop every process."""
        await self.health.stop()
        await self.monitor.stop()
        await self.protocol.close_all()
        await self.supervisor.stop_all()
        logger.debug("Acquisition services shut down")


def create_services(
    config: Config | None = None,
    llm_provider: LLMProvider | None = None,
    install_runner: InstallCommandRunner | None = None,
    discovery: DiscoveryService | None = None,
    required_capabilities: RequiredCapabilities | None = None,
) -> AcquisitionServices:
    """Create the acquisition stack.

    Args:
        config: Configuration (defaults when None)
        llm_provider: Provider for research discovery, overriding
            discovery.research_command
        install_runner: Replacement for the npm runner
        discovery: Replacement discovery service
        required_capabilities: Callable polled by the monitor on every tick

    Returns:
        AcquisitionServices with the router subscribed to process exits
    """
    config = config or Config()

    supervisor = ProcessSupervisor.from_config(config.supervisor)
    protocol = ProtocolClient.from_config(config.protocol)

    if discovery is None:
        discovery = DiscoveryService.from_config(config.discovery, llm_provider)

    if install_runner is None:
        installer = PackageInstaller.from_config(
            config.installer, node_executable=config.supervisor.node_executable
        )
    else:
        installer = PackageInstaller(
            config.installer.base_dir,
            runner=install_runner,
            node_executable=config.supervisor.node_executable,
        )

    router = CapabilityRouter(
        supervisor, protocol, default_timeout=config.protocol.default_call_timeout_seconds
    )
    monitor = VarietyMonitor(
        discovery,
        installer,
        supervisor,
        protocol,
        router,
        config=config.acquisition,
        required_capabilities=required_capabilities,
    )
    health = HealthMonitor.from_config(config.supervisor, supervisor, protocol, router)

    logger.debug(
        f"Acquisition services created (sources: {', '.join(discovery.source_names) or 'none'}, "
        f"install dir: {installer.base_dir})"
    )
    return AcquisitionServices(
        config=config,
        supervisor=supervisor,
        protocol=protocol,
        discovery=discovery,
        installer=installer,
        router=router,
        monitor=monitor,
        health=health,
    )
