"""Capability router - maps capability names to tools on running processes.

A mapping is only valid while its process is running. When a process goes
away every mapping that points at it is removed in one locked operation:
eagerly through the supervisor's exit notification, and lazily when invoke()
finds the process or its session gone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Any

from loguru import logger

from varietymcp.core.exceptions import (
    ProcessUnavailableError,
    UnknownCapabilityError,
    UnsafeNameError,
)
from varietymcp.core.types import ProcessInfo, utc_now
from varietymcp.core.validation import capability_key, normalize_capability
from varietymcp.mcp_client.exceptions import SessionNotFoundError, TransportClosedError

if TYPE_CHECKING:
    from varietymcp.mcp_client.client import ProtocolClient
    from varietymcp.services.process_supervisor import ProcessSupervisor


@dataclass(frozen=True)
class CapabilityMapping:
    """Route from a capability to a tool on a process.

    Attributes:
        capability: Normalized capability name
        process_id: Supervisor id of the serving process
        tool_name: MCP tool invoked for the capability
        package_name: Package the process was started from
        registered_at: When the mapping was created
    """

    capability: str
    process_id: str
    tool_name: str
    package_name: str = ""
    registered_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability": self.capability,
            "process_id": self.process_id,
            "tool_name": self.tool_name,
            "package_name": self.package_name,
            "registered_at": self.registered_at.isoformat(),
        }


class CapabilityRouter:
    """Routes capability invocations to running plugin processes.

    Thread-safe: the mapping table is protected by an RLock.

    Usage:
        router = CapabilityRouter(supervisor, protocol_client)
        router.register("memory", "proc-1", "create_entities")
        result = await router.invoke("memory", {"entities": []}, timeout=10)
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        protocol: ProtocolClient,
        default_timeout: float | None = None,
    ):
        """Initialize router.

        Args:
            supervisor: Source of truth for process liveness
            protocol: Protocol client holding one session per process
            default_timeout: Call timeout when invoke() gets none
        """
        self._supervisor = supervisor
        self._protocol = protocol
        self._default_timeout = default_timeout
        self._lock = RLock()
        self._mappings: dict[str, CapabilityMapping] = {}

        supervisor.add_exit_listener(self._on_process_exit)

    def register(
        self,
        capability: str,
        process_id: str,
        tool_name: str,
        package_name: str = "",
    ) -> CapabilityMapping:
        """Map a capability to a tool on a running process.

        Re-registering a capability replaces its previous mapping.

        Raises:
            UnsafeNameError: If the capability name is invalid
            ProcessUnavailableError: If the process is not running
        """
        capability = normalize_capability(capability)
        mapping = CapabilityMapping(
            capability=capability,
            process_id=process_id,
            tool_name=tool_name,
            package_name=package_name,
        )
        with self._lock:
            if not self._supervisor.is_running(process_id):
                raise ProcessUnavailableError(process_id)
            previous = self._mappings.get(capability)
            self._mappings[capability] = mapping

        if previous is not None and previous.process_id != process_id:
            logger.info(
                f"Capability '{capability}' moved from {previous.process_id} to {process_id}"
            )
        logger.info(f"Registered capability '{capability}' -> {process_id}:{tool_name}")
        return mapping

    def unregister(self, capability: str) -> bool:
        """Remove one mapping. Returns whether it existed."""
        name = capability_key(capability)
        if name is None:
            return False
        with self._lock:
            return self._mappings.pop(name, None) is not None

    def invalidate_process(self, process_id: str) -> list[str]:
        """Remove every mapping that points at a process.

        Returns:
            Capabilities that were removed
        """
        with self._lock:
            removed = [
                name for name, m in self._mappings.items() if m.process_id == process_id
            ]
            for name in removed:
                del self._mappings[name]

        if removed:
            logger.warning(
                f"Invalidated {len(removed)} capabilities of {process_id}: "
                f"{', '.join(sorted(removed))}"
            )
        return removed

    def _on_process_exit(self, info: ProcessInfo) -> None:
        self.invalidate_process(info.id)

    def lookup(self, capability: str) -> CapabilityMapping | None:
        name = capability_key(capability)
        if name is None:
            return None
        with self._lock:
            return self._mappings.get(name)

    def has_capability(self, capability: str) -> bool:
        return self.lookup(capability) is not None

    def list_capabilities(self) -> list[str]:
        with self._lock:
            return sorted(self._mappings)

    def list_mappings(self) -> list[CapabilityMapping]:
        with self._lock:
            return [self._mappings[name] for name in sorted(self._mappings)]

    async def invoke(
        self,
        capability: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Invoke the tool mapped to a capability.

        Returns:
            The tools/call result exactly as the process returned it

        Raises:
            UnknownCapabilityError: If nothing is mapped to the capability
            ProcessUnavailableError: If the mapped process is gone; its
                mappings are removed before raising
            RemoteError: Error reported by the process, passed through verbatim
            RequestTimeoutError: If the process did not answer in time
        """
        try:
            name = normalize_capability(capability)
        except UnsafeNameError as e:
            raise UnknownCapabilityError(capability) from e

        mapping = self.lookup(name)
        if mapping is None:
            raise UnknownCapabilityError(name)

        process_id = mapping.process_id
        if not self._supervisor.is_running(process_id):
            self.invalidate_process(process_id)
            raise ProcessUnavailableError(process_id)
        if not self._protocol.has_session(process_id):
            self.invalidate_process(process_id)
            raise ProcessUnavailableError(process_id, "no protocol session")

        try:
            return await self._protocol.call_tool(
                process_id,
                mapping.tool_name,
                arguments or {},
                timeout if timeout is not None else self._default_timeout,
            )
        except (TransportClosedError, SessionNotFoundError) as e:
            self.invalidate_process(process_id)
            raise ProcessUnavailableError(process_id, str(e)) from e
