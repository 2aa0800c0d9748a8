"""Installer configuration for varietymcp."""

import argparse
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _default_install_root() -> Path:
    return Path(tempfile.gettempdir()) / "varietymcp_servers"


class InstallerConfig(BaseModel):
    """Where and how packages are installed."""

    base_dir: Path = Field(
        default_factory=_default_install_root,
        description="Parent directory for per-install working directories",
    )
    npm_executable: str = Field(default="npm", description="npm binary to invoke")
    timeout_seconds: float = Field(
        default=300.0, gt=0.0, description="Timeout for the whole install command"
    )

    @field_validator("base_dir", mode="before")
    @classmethod
    def validate_base_dir(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if v is None or v == "":
            return _default_install_root()
        return Path(v).expanduser()

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add installer-related CLI arguments."""
        parser.add_argument(
            "--install-dir",
            type=Path,
            help="Directory under which packages are installed",
        )

    @classmethod
    def load_from_env(cls) -> dict[str, Any]:
        """Load installer config from environment variables."""
        config: dict[str, Any] = {}
        if base_dir := os.getenv("VARIETYMCP_INSTALLER__BASE_DIR"):
            config["base_dir"] = Path(base_dir)
        if npm := os.getenv("VARIETYMCP_INSTALLER__NPM_EXECUTABLE"):
            config["npm_executable"] = npm
        if timeout := os.getenv("VARIETYMCP_INSTALLER__TIMEOUT_SECONDS"):
            try:
                config["timeout_seconds"] = float(timeout)
            except ValueError:
                pass
        return config

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        """Extract installer config from CLI arguments."""
        overrides: dict[str, Any] = {}
        if getattr(args, "install_dir", None):
            overrides["base_dir"] = args.install_dir
        return overrides
