"""Acquisition and routing exceptions.

Acquisition failures carry the failure kind so the variety monitor can turn
any of them into a terminal failed record without inspecting messages.
Routing failures are what callers of the capability router see.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from varietymcp.core.types import FailureKind

if TYPE_CHECKING:
    from varietymcp.core.types import InstalledPackage


class VarietyMCPError(Exception):
    """Base exception for varietymcp operations."""

    pass


class UnsafeNameError(VarietyMCPError, ValueError):
    """Raised when a capability, package or version fails the allow-list."""

    pass


class AcquisitionError(VarietyMCPError):
    """Base for failures that end an acquisition attempt."""

    kind: FailureKind = FailureKind.INTERNAL_ERROR


class DiscoveryEmptyError(AcquisitionError):
    """Raised when no source proposed a candidate for a capability."""

    kind = FailureKind.DISCOVERY_EMPTY

    def __init__(self, capability: str):
        super().__init__(f"No candidate found for capability '{capability}'")
        self.capability = capability


class InstallFailedError(AcquisitionError):
    """Raised when the install command fails or leaves no package behind.

    The failed InstalledPackage record (if one was created) is attached so
    the owner can decide whether to clean up its directory.
    """

    kind = FailureKind.INSTALL_FAILED

    def __init__(self, detail: str, installed: InstalledPackage | None = None):
        super().__init__(detail)
        self.detail = detail
        self.installed = installed


class SpawnFailedError(AcquisitionError):
    """Raised when the OS refuses to start a process or it dies at startup."""

    kind = FailureKind.SPAWN_FAILED

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ExecutableNotFoundError(SpawnFailedError):
    """Raised when the executable to spawn does not exist."""

    pass


class HandshakeFailedError(AcquisitionError):
    """Raised when a spawned server does not complete the MCP handshake."""

    kind = FailureKind.HANDSHAKE_FAILED


class AcquisitionTimeoutError(AcquisitionError):
    """Raised when an attempt exceeds its overall deadline."""

    kind = FailureKind.TIMEOUT


class ProcessNotRunningError(VarietyMCPError):
    """Raised when sending to a process that is not running."""

    pass


class ProcessCrashedError(ProcessNotRunningError):
    """Raised when a process ended without a stop being requested."""

    pass


class UnknownCapabilityError(VarietyMCPError, LookupError):
    """Raised when no running process is mapped to a capability."""

    def __init__(self, capability: str):
        super().__init__(f"Capability '{capability}' is not available")
        self.capability = capability


class ProcessUnavailableError(VarietyMCPError):
    """Raised when the process behind a capability is gone."""

    def __init__(self, process_id: str, reason: str = "process is not running"):
        super().__init__(f"Process {process_id} unavailable: {reason}")
        self.process_id = process_id
        self.reason = reason
