"""Common CLI argument patterns shared across parsers."""

import argparse
from pathlib import Path


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments common to all commands.

    Args:
        parser: Argument parser to add common arguments to
    """
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Configuration file path (default: .varietymcp.json if present)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Enable file logging to specified path",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set file logging level (default: INFO)",
    )


def add_config_arguments(parser: argparse.ArgumentParser, configs: list[str]) -> None:
    """Add CLI arguments for specified config sections.

    Args:
        parser: Argument parser to add config arguments to
        configs: List of config section names to include
    """
    if "acquisition" in configs:
        from varietymcp.core.config.acquisition_config import AcquisitionConfig

        AcquisitionConfig.add_cli_arguments(parser)

    if "discovery" in configs:
        from varietymcp.core.config.discovery_config import DiscoveryConfig

        DiscoveryConfig.add_cli_arguments(parser)

    if "installer" in configs:
        from varietymcp.core.config.installer_config import InstallerConfig

        InstallerConfig.add_cli_arguments(parser)
