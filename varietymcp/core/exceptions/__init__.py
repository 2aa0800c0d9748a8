"""Core exception hierarchy for varietymcp."""

from .acquisition import (
    AcquisitionError,
    AcquisitionTimeoutError,
    DiscoveryEmptyError,
    ExecutableNotFoundError,
    HandshakeFailedError,
    InstallFailedError,
    ProcessCrashedError,
    ProcessNotRunningError,
    ProcessUnavailableError,
    SpawnFailedError,
    UnknownCapabilityError,
    UnsafeNameError,
    VarietyMCPError,
)

__all__ = [
    "AcquisitionError",
    "AcquisitionTimeoutError",
    "DiscoveryEmptyError",
    "ExecutableNotFoundError",
    "HandshakeFailedError",
    "InstallFailedError",
    "ProcessCrashedError",
    "ProcessNotRunningError",
    "ProcessUnavailableError",
    "SpawnFailedError",
    "UnknownCapabilityError",
    "UnsafeNameError",
    "VarietyMCPError",
]
