"""Exception classes for the MCP protocol client.

This module is kept free of other varietymcp imports so every layer can
depend on it without circular imports.
"""

from __future__ import annotations

from typing import Any


class ProtocolError(Exception):
    """Base exception for protocol client operations."""

    pass


class ProtocolUsageError(ProtocolError):
    """Raised when the client API is used out of order.

    Calling before the handshake, handshaking twice or using a closed
    session are caller bugs and are reported instead of ignored.
    """

    pass


class SessionNotFoundError(ProtocolUsageError):
    """Raised when no session is attached for a process id."""

    pass


class TransportClosedError(ProtocolError):
    """Raised for requests pending or issued on a closed transport."""

    pass


class RequestTimeoutError(ProtocolError, TimeoutError):
    """Raised when no response arrived before the request deadline."""

    def __init__(self, method: str, request_id: int, timeout: float):
        super().__init__(
            f"Request {request_id} ({method}) timed out after {timeout:.1f}s"
        )
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class RemoteError(ProtocolError):
    """Application-level error reported by the remote process.

    Passed to callers verbatim: code, message and data are exactly what the
    server sent.
    """

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"Remote error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_frame(cls, error: Any) -> "RemoteError":
        """Build from the "error" member of a response frame."""
        if not isinstance(error, dict):
            return cls(-32603, str(error))
        code = error.get("code", -32603)
        if not isinstance(code, int):
            code = -32603
        return cls(code, str(error.get("message", "")), error.get("data"))


class HandshakeError(ProtocolError):
    """Raised when the initialize exchange fails or returns garbage."""

    pass
