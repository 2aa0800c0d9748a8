"""MCP protocol client: newline-delimited JSON-RPC over byte streams."""

from .client import ProtocolClient
from .exceptions import (
    HandshakeError,
    ProtocolError,
    ProtocolUsageError,
    RemoteError,
    RequestTimeoutError,
    SessionNotFoundError,
    TransportClosedError,
)
from .session import ClientSession
from .transport import Transport

__all__ = [
    "ClientSession",
    "HandshakeError",
    "ProtocolClient",
    "ProtocolError",
    "ProtocolUsageError",
    "RemoteError",
    "RequestTimeoutError",
    "SessionNotFoundError",
    "Transport",
    "TransportClosedError",
]
