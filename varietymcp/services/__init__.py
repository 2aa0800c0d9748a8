"""Service layer for varietymcp - acquisition, supervision and routing."""

from .capability_router import CapabilityMapping, CapabilityRouter
from .discovery_service import DiscoveryService
from .package_installer import PackageInstaller
from .process_supervisor import ProcessSupervisor, StdioTransport
from .variety_monitor import AcquisitionAttempt, VarietyMonitor

__all__ = [
    "AcquisitionAttempt",
    "CapabilityMapping",
    "CapabilityRouter",
    "DiscoveryService",
    "PackageInstaller",
    "ProcessSupervisor",
    "StdioTransport",
    "VarietyMonitor",
]
