"""Protocol client managing one JSON-RPC session per plugin process.

Components outside the protocol layer address sessions by process id only;
they never hold transports or pending request tables themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from varietymcp.version import __version__

from .common import CURRENT_PROTOCOL_VERSION
from .exceptions import ProtocolUsageError, SessionNotFoundError
from .session import ClientSession
from .transport import Transport

if TYPE_CHECKING:
    from varietymcp.core.config.protocol_config import ProtocolConfig


class ProtocolClient:
    """Registry of ClientSessions keyed by process id.

    Usage:
        client = ProtocolClient()
        client.attach("p1", transport)
        await client.initialize("p1")
        result = await client.call_tool("p1", "store", {"key": "k"}, timeout=10)
        await client.detach("p1")
    """

    def __init__(
        self,
        protocol_version: str = CURRENT_PROTOCOL_VERSION,
        client_name: str = "varietymcp",
        handshake_timeout: float = 30.0,
        default_timeout: float = 60.0,
        max_frame_bytes: int = 4 * 1024 * 1024,
    ):
        self._protocol_version = protocol_version
        self._client_info = {"name": client_name, "version": __version__}
        self.handshake_timeout = handshake_timeout
        self.default_timeout = default_timeout
        self._max_frame_bytes = max_frame_bytes
        self._sessions: dict[str, ClientSession] = {}

    @classmethod
    def from_config(cls, config: ProtocolConfig) -> ProtocolClient:
        """Create a client from ProtocolConfig."""
        return cls(
            protocol_version=config.protocol_version,
            client_name=config.client_name,
            handshake_timeout=config.handshake_timeout_seconds,
            default_timeout=config.default_call_timeout_seconds,
            max_frame_bytes=config.max_frame_bytes,
        )

    def attach(self, process_id: str, transport: Transport) -> ClientSession:
        """Create and start a session for a process.

        Raises:
            ProtocolUsageError: If an open session is already attached
        """
        existing = self._sessions.get(process_id)
        if existing is not None and not existing.is_closed:
            raise ProtocolUsageError(f"Session already attached for {process_id}")

        session = ClientSession(
            transport,
            name=process_id,
            protocol_version=self._protocol_version,
            client_info=self._client_info,
            default_timeout=self.default_timeout,
            max_frame_bytes=self._max_frame_bytes,
        )
        self._sessions[process_id] = session
        session.start()
        logger.debug(f"Attached protocol session for {process_id}")
        return session

    def get_session(self, process_id: str) -> ClientSession:
        """Return the session for a process.

        Raises:
            SessionNotFoundError: If no session is attached
        """
        session = self._sessions.get(process_id)
        if session is None:
            raise SessionNotFoundError(f"No protocol session for {process_id}")
        return session

    def has_session(self, process_id: str) -> bool:
        session = self._sessions.get(process_id)
        return session is not None and not session.is_closed

    async def initialize(self, process_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Perform the handshake on a process's session."""
        session = self.get_session(process_id)
        return await session.initialize(
            timeout if timeout is not None else self.handshake_timeout
        )

    async def call(
        self,
        process_id: str,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue a request on a process's session."""
        return await self.get_session(process_id).call(method, params, timeout)

    async def notify(
        self, process_id: str, method: str, params: dict[str, Any] | None = None
    ) -> None:
        """Send a notification on a process's session."""
        await self.get_session(process_id).notify(method, params)

    async def list_tools(
        self, process_id: str, timeout: float | None = None
    ) -> list[dict[str, Any]]:
        """List tools exposed by a process."""
        return await self.get_session(process_id).list_tools(
            timeout if timeout is not None else self.handshake_timeout
        )

    async def call_tool(
        self,
        process_id: str,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Invoke a tool on a process."""
        return await self.get_session(process_id).call_tool(name, arguments, timeout)

    async def detach(self, process_id: str, reason: str = "session detached") -> None:
        """Close and forget a process's session. No-op if none is attached."""
        session = self._sessions.pop(process_id, None)
        if session is not None:
            await session.close(reason)
            logger.debug(f"Detached protocol session for {process_id}: {reason}")

    async def close_all(self) -> None:
        """Close every session."""
        for process_id in list(self._sessions):
            await self.detach(process_id, "client shutting down")
