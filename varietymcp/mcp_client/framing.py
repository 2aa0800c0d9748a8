"""Line buffering for newline-delimited frames."""

from __future__ import annotations

from loguru import logger


class LineBuffer:
    """Accumulates byte chunks and yields complete lines.

    Partial data is held until its newline arrives. A line that grows beyond
    max_line_bytes is discarded up to the next newline instead of growing
    the buffer without bound.
    """

    def __init__(self, max_line_bytes: int = 4 * 1024 * 1024):
        self._buffer = bytearray()
        self._max_line_bytes = max_line_bytes
        self._discarding = False
        self.dropped_lines = 0

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add a chunk and return every line it completed (without newline)."""
        lines: list[bytes] = []
        self._buffer.extend(chunk)

        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            if self._discarding:
                self._discarding = False
                continue
            line = line.rstrip(b"\r")
            if line.strip():
                lines.append(line)

        if len(self._buffer) > self._max_line_bytes:
            logger.warning(
                f"Dropping oversized frame (> {self._max_line_bytes} bytes)"
            )
            self._buffer.clear()
            self._discarding = True
            self.dropped_lines += 1

        return lines

    @property
    def pending_bytes(self) -> int:
        """Bytes of an incomplete line currently buffered."""
        return len(self._buffer)
