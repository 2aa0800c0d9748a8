"""Top-level configuration for varietymcp.

Configuration sources (in order of precedence):
1. CLI arguments
2. Environment variables (VARIETYMCP_<SECTION>__<FIELD>)
3. Config file (.varietymcp.json in the working directory, or --config)
4. Default values
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .acquisition_config import AcquisitionConfig, SupervisorConfig
from .discovery_config import DiscoveryConfig
from .installer_config import InstallerConfig
from .logging_config import LoggingConfig
from .protocol_config import ProtocolConfig

DEFAULT_CONFIG_FILENAME = ".varietymcp.json"


class Config(BaseSettings):
    """Aggregated configuration for every component."""

    model_config = SettingsConfigDict(
        env_prefix="VARIETYMCP_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    installer: InstallerConfig = Field(default_factory=InstallerConfig)
    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return self.model_dump(mode="json")


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file.

    Raises:
        ValueError: If the file is not a JSON object
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def _env_overrides() -> dict[str, Any]:
    sections: dict[str, Any] = {
        "acquisition": AcquisitionConfig.load_from_env(),
        "supervisor": SupervisorConfig.load_from_env(),
        "discovery": DiscoveryConfig.load_from_env(),
        "installer": InstallerConfig.load_from_env(),
        "protocol": ProtocolConfig.load_from_env(),
    }
    return {name: values for name, values in sections.items() if values}


def _cli_overrides(args: Any) -> dict[str, Any]:
    sections: dict[str, Any] = {
        "acquisition": AcquisitionConfig.extract_cli_overrides(args),
        "discovery": DiscoveryConfig.extract_cli_overrides(args),
        "installer": InstallerConfig.extract_cli_overrides(args),
        "logging": LoggingConfig.extract_cli_overrides(args) or {},
    }
    return {name: values for name, values in sections.items() if values}


def load_config(config_path: Path | None = None, args: Any = None) -> Config:
    """Load configuration from file, environment and CLI arguments.

    Args:
        config_path: Explicit config file; falls back to .varietymcp.json in CWD
        args: Parsed argparse namespace with optional overrides

    Returns:
        Validated Config
    """
    data: dict[str, Any] = {}

    if config_path is None and args is not None:
        config_path = getattr(args, "config", None)
    if config_path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_FILENAME
        if candidate.is_file():
            config_path = candidate

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        data = _read_config_file(config_path)
        logger.debug(f"Loaded config file {config_path}")

    data = _deep_merge(data, _env_overrides())
    if args is not None:
        data = _deep_merge(data, _cli_overrides(args))

    return Config(**data)
