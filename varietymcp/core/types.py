"""Shared data model for capability acquisition.

These types cross component boundaries: the monitor creates gaps, discovery
produces candidates, the installer produces installed packages and the
supervisor publishes process snapshots. Internal bookkeeping (OS process
handles, pending request futures) stays inside the owning component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


def utc_now() -> datetime:
    """Timezone-aware current time used for all timestamps."""
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    """How urgently a gap should be closed."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class SourceOrigin(str, Enum):
    """Which kind of discovery source proposed a candidate."""

    REGISTRY_SEARCH = "registry_search"
    CURATED_MAPPING = "curated_mapping"
    EXTERNAL_RESEARCH = "external_research"


class InstallStatus(str, Enum):
    """Lifecycle of an installed package."""

    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"


class ProcessStatus(str, Enum):
    """Lifecycle of a supervised subprocess."""

    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessStatus.CRASHED, ProcessStatus.STOPPED)


@dataclass(frozen=True)
class VarietyGap:
    """A shortfall between required and available capabilities.

    Attributes:
        required_capabilities: Capability names that must become available
        severity: Urgency of the gap
        source: Who reported the gap (e.g. "monitor", "api", "cli")
        observed_at: When the gap was observed
    """

    required_capabilities: frozenset[str]
    severity: Severity = Severity.NORMAL
    source: str = "unknown"
    observed_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "required_capabilities": sorted(self.required_capabilities),
            "severity": self.severity.value,
            "source": self.source,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class CandidateServer:
    """A package believed to implement a capability.

    Attributes:
        package_name: Registry name of the package
        version: Version specifier to install ("latest" when unknown)
        capabilities: Lowercased capability keywords the package claims
        score: Source-provided popularity/quality score, 0-100
        source_origin: Kind of source that proposed it
        description: Free-form description from the source
    """

    package_name: str
    version: str = "latest"
    capabilities: frozenset[str] = frozenset()
    score: float = 0.0
    source_origin: SourceOrigin = SourceOrigin.REGISTRY_SEARCH
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "package_name": self.package_name,
            "version": self.version,
            "capabilities": sorted(self.capabilities),
            "score": self.score,
            "source_origin": self.source_origin.value,
            "description": self.description,
        }


@dataclass
class InstalledPackage:
    """Result of materializing a candidate on disk.

    The install directory is owned by whoever holds this record and is only
    removed through an explicit cleanup call.
    """

    package_name: str
    install_dir: Path
    status: InstallStatus = InstallStatus.INSTALLING
    version: str = "latest"
    package_dir: Path | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "package_name": self.package_name,
            "version": self.version,
            "install_dir": str(self.install_dir),
            "package_dir": str(self.package_dir) if self.package_dir else None,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True)
class ProcessInfo:
    """Read-only snapshot of a supervised process.

    This is what the supervisor hands to other components; it never carries
    the OS process object itself.
    """

    id: str
    package_name: str
    status: ProcessStatus
    started_at: datetime
    pid: int | None = None
    executable: str = ""
    ended_at: datetime | None = None
    exit_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "package_name": self.package_name,
            "status": self.status.value,
            "pid": self.pid,
            "executable": self.executable,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "exit_code": self.exit_code,
        }


class AcquisitionStage(str, Enum):
    """Stages of the per-capability acquisition state machine."""

    DETECTED = "detected"
    DISCOVERING = "discovering"
    INSTALLING = "installing"
    SPAWNING = "spawning"
    HANDSHAKING = "handshaking"
    REGISTERED = "registered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AcquisitionStage.REGISTERED, AcquisitionStage.FAILED)


class FailureKind(str, Enum):
    """Why an acquisition attempt ended in the failed state."""

    DISCOVERY_EMPTY = "discovery_empty"
    INSTALL_FAILED = "install_failed"
    SPAWN_FAILED = "spawn_failed"
    HANDSHAKE_FAILED = "handshake_failed"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"
