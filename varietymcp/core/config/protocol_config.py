"""MCP protocol client configuration."""

import os
from typing import Any

from pydantic import BaseModel, Field, field_validator

from varietymcp.mcp_client.common import (
    CURRENT_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
)


class ProtocolConfig(BaseModel):
    """Settings for JSON-RPC sessions with plugin processes."""

    protocol_version: str = Field(
        default=CURRENT_PROTOCOL_VERSION,
        description="MCP protocol version offered in the handshake",
    )
    client_name: str = Field(default="varietymcp", description="clientInfo.name")
    handshake_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout for initialize and tools/list"
    )
    default_call_timeout_seconds: float = Field(
        default=60.0, gt=0.0, description="Timeout used when a caller passes none"
    )
    max_frame_bytes: int = Field(
        default=4 * 1024 * 1024, ge=1024, description="Largest accepted inbound line"
    )

    @field_validator("protocol_version")
    @classmethod
    def validate_protocol_version(cls, v: str) -> str:
        if v not in SUPPORTED_PROTOCOL_VERSIONS:
            raise ValueError(
                f"Unsupported protocol version '{v}'. "
                f"Must be one of: {', '.join(sorted(SUPPORTED_PROTOCOL_VERSIONS))}"
            )
        return v

    @classmethod
    def load_from_env(cls) -> dict[str, Any]:
        """Load protocol config from environment variables."""
        config: dict[str, Any] = {}
        if version := os.getenv("VARIETYMCP_PROTOCOL__PROTOCOL_VERSION"):
            config["protocol_version"] = version
        if timeout := os.getenv("VARIETYMCP_PROTOCOL__DEFAULT_CALL_TIMEOUT_SECONDS"):
            try:
                config["default_call_timeout_seconds"] = float(timeout)
            except ValueError:
                pass
        return config
