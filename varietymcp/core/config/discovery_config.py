"""Discovery configuration for varietymcp.

Controls which candidate sources feed the matcher and how they reach the
outside world.
"""

import argparse
import os
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_NPM_REGISTRY_URL = "https://registry.npmjs.org"


class DiscoveryConfig(BaseModel):
    """Candidate source selection and tuning."""

    curated_enabled: bool = Field(
        default=True, description="Use the built-in capability to package table"
    )
    curated_overrides: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Extra capability -> package names, checked before the built-in table",
    )

    registry_enabled: bool = Field(
        default=True, description="Search the npm registry for MCP servers"
    )
    registry_url: str = Field(
        default=DEFAULT_NPM_REGISTRY_URL, description="Base URL of the npm registry"
    )
    registry_search_size: int = Field(
        default=10, ge=1, le=250, description="Results requested per registry search"
    )
    registry_timeout_seconds: float = Field(
        default=15.0, gt=0.0, description="HTTP timeout for registry searches"
    )

    research_enabled: bool = Field(
        default=False, description="Ask an LLM for package suggestions"
    )
    research_command: list[str] = Field(
        default_factory=list,
        description="argv of the CLI used for research prompts (e.g. ['opencode', 'run'])",
    )
    research_timeout_seconds: float = Field(
        default=60.0, gt=0.0, description="Timeout for one research prompt"
    )
    research_default_score: float = Field(
        default=40.0, ge=0.0, le=100.0, description="Score given to research suggestions"
    )

    cache_ttl_seconds: float = Field(
        default=3600.0, ge=0.0, description="How long discovery results are reused (0 disables)"
    )

    @field_validator("registry_url")
    @classmethod
    def validate_registry_url(cls, v: str) -> str:
        """Require an http(s) registry URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"registry_url must be an http(s) URL, got: {v}")
        return v.rstrip("/")

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add discovery-related CLI arguments."""
        parser.add_argument(
            "--no-registry",
            action="store_true",
            help="Do not search the package registry",
        )
        parser.add_argument(
            "--registry-url",
            help=f"Package registry base URL (default: {DEFAULT_NPM_REGISTRY_URL})",
        )

    @classmethod
    def load_from_env(cls) -> dict[str, Any]:
        """Load discovery config from environment variables."""
        config: dict[str, Any] = {}
        if registry_url := os.getenv("VARIETYMCP_DISCOVERY__REGISTRY_URL"):
            config["registry_url"] = registry_url
        if registry_enabled := os.getenv("VARIETYMCP_DISCOVERY__REGISTRY_ENABLED"):
            config["registry_enabled"] = registry_enabled.lower() in ("true", "1", "yes")
        if research_enabled := os.getenv("VARIETYMCP_DISCOVERY__RESEARCH_ENABLED"):
            config["research_enabled"] = research_enabled.lower() in ("true", "1", "yes")
        return config

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        """Extract discovery config from CLI arguments."""
        overrides: dict[str, Any] = {}
        if getattr(args, "no_registry", False):
            overrides["registry_enabled"] = False
        if getattr(args, "registry_url", None):
            overrides["registry_url"] = args.registry_url
        return overrides
