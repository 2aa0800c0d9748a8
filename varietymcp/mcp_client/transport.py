"""Byte-stream transport interface used by protocol sessions."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Transport(ABC):
    """A bidirectional byte stream to one peer.

    read() returns b"" once the peer has closed its side; after that the
    transport is considered closed for reading.
    """

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write bytes to the peer.

        Raises:
            TransportClosedError: If the peer can no longer receive
        """
        ...

    @abstractmethod
    async def read(self, max_bytes: int = 65536) -> bytes:
        """Read up to max_bytes, returning b"" at end of stream."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the transport. Must be safe to call more than once."""
        ...

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Whether the transport has been closed."""
        ...
