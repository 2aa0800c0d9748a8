"""Configuration models for varietymcp."""

from .acquisition_config import AcquisitionConfig, SupervisorConfig
from .config import Config, load_config
from .discovery_config import DiscoveryConfig
from .installer_config import InstallerConfig
from .logging_config import FileLoggingConfig, LoggingConfig
from .protocol_config import ProtocolConfig

__all__ = [
    "AcquisitionConfig",
    "Config",
    "DiscoveryConfig",
    "FileLoggingConfig",
    "InstallerConfig",
    "LoggingConfig",
    "ProtocolConfig",
    "SupervisorConfig",
    "load_config",
]
