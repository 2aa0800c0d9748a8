"""Acquisition loop and process supervision configuration.

Configuration can be provided via:
- Environment variables (VARIETYMCP_ACQUISITION__*, VARIETYMCP_SUPERVISOR__*)
- Configuration files
- CLI arguments
- Default values
"""

import argparse
import os
from typing import Any

from pydantic import BaseModel, Field, model_validator


class AcquisitionConfig(BaseModel):
    """Settings for the variety monitor's control loop."""

    interval_seconds: float = Field(
        default=30.0, gt=0.0, description="Seconds between monitor ticks"
    )
    attempt_deadline_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Overall deadline for one acquisition attempt (discover to register)",
    )

    # Retry policy after failed attempts: bounded exponential backoff
    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures after which a capability is no longer retried automatically",
    )
    backoff_base_seconds: float = Field(
        default=30.0, ge=0.0, description="Delay after the first failure"
    )
    backoff_max_seconds: float = Field(
        default=1800.0, ge=0.0, description="Upper bound for the retry delay"
    )

    history_limit: int = Field(
        default=200, ge=1, description="Finished attempts kept for status queries"
    )

    @model_validator(mode="after")
    def validate_backoff(self) -> "AcquisitionConfig":
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError(
                "backoff_max_seconds must be greater than or equal to backoff_base_seconds"
            )
        return self

    def backoff_delay(self, consecutive_failures: int) -> float:
        """Delay before the next automatic attempt after N consecutive failures."""
        if consecutive_failures <= 0:
            return 0.0
        delay = self.backoff_base_seconds * (2 ** (consecutive_failures - 1))
        return min(delay, self.backoff_max_seconds)

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add acquisition-related CLI arguments."""
        parser.add_argument(
            "--attempt-deadline",
            type=float,
            help="Overall deadline in seconds for each acquisition attempt",
        )

    @classmethod
    def load_from_env(cls) -> dict[str, Any]:
        """Load acquisition config from environment variables."""
        config: dict[str, Any] = {}
        if interval := os.getenv("VARIETYMCP_ACQUISITION__INTERVAL_SECONDS"):
            try:
                config["interval_seconds"] = float(interval)
            except ValueError:
                pass
        if deadline := os.getenv("VARIETYMCP_ACQUISITION__ATTEMPT_DEADLINE_SECONDS"):
            try:
                config["attempt_deadline_seconds"] = float(deadline)
            except ValueError:
                pass
        if max_attempts := os.getenv("VARIETYMCP_ACQUISITION__MAX_ATTEMPTS"):
            try:
                config["max_attempts"] = int(max_attempts)
            except ValueError:
                pass
        return config

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        """Extract acquisition config from CLI arguments."""
        overrides: dict[str, Any] = {}
        if getattr(args, "attempt_deadline", None) is not None:
            overrides["attempt_deadline_seconds"] = args.attempt_deadline
        return overrides


class SupervisorConfig(BaseModel):
    """Settings for spawned plugin processes."""

    startup_grace_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Window in which an exiting process counts as a failed spawn",
    )
    stop_timeout_seconds: float = Field(
        default=5.0, gt=0.0, description="Wait after terminate before killing"
    )
    stderr_tail_lines: int = Field(
        default=200, ge=0, description="Stderr lines kept per process for diagnostics"
    )
    history_limit: int = Field(
        default=100, ge=0, description="Ended processes kept for status queries"
    )
    inherit_env: bool = Field(
        default=True, description="Pass the parent environment to plugin processes"
    )
    node_executable: str = Field(
        default="node", description="Interpreter used for JavaScript entrypoints"
    )

    # Liveness pings over each registered process's protocol session
    health_check_interval_seconds: float = Field(
        default=30.0, ge=0.0, description="Seconds between health pings (0 disables)"
    )
    health_check_timeout_seconds: float = Field(
        default=5.0, gt=0.0, description="Timeout for one ping"
    )
    health_max_failures: int = Field(
        default=3,
        ge=1,
        description="Consecutive missed pings after which a process is stopped",
    )

    @classmethod
    def load_from_env(cls) -> dict[str, Any]:
        """Load supervisor config from environment variables."""
        config: dict[str, Any] = {}
        if grace := os.getenv("VARIETYMCP_SUPERVISOR__STARTUP_GRACE_SECONDS"):
            try:
                config["startup_grace_seconds"] = float(grace)
            except ValueError:
                pass
        if node := os.getenv("VARIETYMCP_SUPERVISOR__NODE_EXECUTABLE"):
            config["node_executable"] = node
        if interval := os.getenv("VARIETYMCP_SUPERVISOR__HEALTH_CHECK_INTERVAL_SECONDS"):
            try:
                config["health_check_interval_seconds"] = float(interval)
            except ValueError:
                pass
        return config
