"""JSON-RPC session over a single byte-stream transport.

A ClientSession owns everything about one transport: the request id counter,
the pending request table, the reader task and the handshake state.

Request lifecycle:
    call() -> allocate id -> register PendingRequest -> write frame
           -> wait for matching response OR deadline
    reader -> decode line -> match id -> resolve future (or drop if unknown)

Guarantees:
- ids are monotonic per session and never reused
- at most one PendingRequest per id
- a response is delivered only to the request with the same id
- a late response for a timed-out id is read and dropped
- closing the transport fails every pending request with TransportClosedError
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from .common import (
    CURRENT_PROTOCOL_VERSION,
    INITIALIZE_METHOD,
    INITIALIZED_NOTIFICATION,
    METHOD_NOT_FOUND,
    PING_METHOD,
    SUPPORTED_PROTOCOL_VERSIONS,
    build_error,
    build_notification,
    build_request,
    build_result,
    decode_frame,
    encode_frame,
    is_notification,
    is_request,
    is_response,
)
from .exceptions import (
    HandshakeError,
    ProtocolError,
    ProtocolUsageError,
    RemoteError,
    RequestTimeoutError,
    TransportClosedError,
)
from .framing import LineBuffer
from .transport import Transport

NotificationHandler = Callable[[str, dict[str, Any]], Awaitable[None] | None]

READ_CHUNK_SIZE = 65536


@dataclass
class PendingRequest:
    """An issued request waiting for its response."""

    id: int
    method: str
    deadline: float
    future: asyncio.Future[Any]
    created_at: float = field(default_factory=time.monotonic)


class ClientSession:
    """MCP client side of one JSON-RPC transport.

    Usage:
        session = ClientSession(transport, name="p1")
        session.start()
        await session.initialize()
        tools = await session.list_tools()
        result = await session.call_tool("store", {"key": "a"}, timeout=10)
        await session.close()
    """

    def __init__(
        self,
        transport: Transport,
        name: str = "session",
        protocol_version: str = CURRENT_PROTOCOL_VERSION,
        client_info: dict[str, Any] | None = None,
        default_timeout: float = 60.0,
        max_frame_bytes: int = 4 * 1024 * 1024,
    ):
        """Initialize session.

        Args:
            transport: Byte stream to the server
            name: Label used in logs (usually the process id)
            protocol_version: Version offered in the handshake
            client_info: clientInfo sent in the handshake
            default_timeout: Timeout used when call() gets none
            max_frame_bytes: Largest accepted inbound line
        """
        self.name = name
        self._transport = transport
        self._protocol_version = protocol_version
        self._client_info = client_info or {"name": "varietymcp", "version": "0.1.0"}
        self._default_timeout = default_timeout
        self._buffer = LineBuffer(max_line_bytes=max_frame_bytes)

        self._request_id = 0
        self._pending: dict[int, PendingRequest] = {}
        self._write_lock = asyncio.Lock()

        self._reader_task: asyncio.Task | None = None
        self._closed = False
        self._close_reason = "transport closed"

        self._handshake_started = False
        self._initialized = False
        self.server_info: dict[str, Any] | None = None

        self._notification_handlers: list[NotificationHandler] = []

        # Diagnostics
        self.dropped_frames = 0
        self.late_responses = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background reader. Must be called inside a running loop."""
        if self._closed:
            raise ProtocolUsageError(f"Session {self.name} is closed")
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(
                self._read_loop(), name=f"mcp-reader-{self.name}"
            )

    async def close(self, reason: str = "session closed") -> None:
        """Close the transport and fail every pending request."""
        if self._closed:
            return
        self._mark_closed(reason)
        try:
            await self._transport.close()
        except Exception as e:
            logger.debug(f"[{self.name}] Error closing transport: {e}")

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        """Register a callback for server notifications (method, params)."""
        self._notification_handlers.append(handler)

    # ------------------------------------------------------------------
    # Public protocol operations
    # ------------------------------------------------------------------

    async def initialize(self, timeout: float | None = None) -> dict[str, Any]:
        """Perform the MCP handshake.

        Must be the first call on the session and may only happen once.

        Returns:
            The server's initialize result (protocolVersion, capabilities,
            serverInfo)

        Raises:
            ProtocolUsageError: If the handshake was already started
            HandshakeError: If the server rejects or garbles the handshake
        """
        if self._handshake_started:
            raise ProtocolUsageError(
                f"Session {self.name} handshake already performed"
            )
        self._handshake_started = True

        params = {
            "protocolVersion": self._protocol_version,
            "capabilities": {},
            "clientInfo": self._client_info,
        }
        try:
            result = await self._request(INITIALIZE_METHOD, params, timeout)
        except RemoteError as e:
            raise HandshakeError(f"Server rejected initialize: {e.message}") from e
        except (RequestTimeoutError, TransportClosedError) as e:
            raise HandshakeError(f"Handshake failed: {e}") from e

        if not isinstance(result, dict):
            raise HandshakeError(f"Invalid initialize result: {result!r}")

        server_version = result.get("protocolVersion")
        if server_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise HandshakeError(
                f"Server negotiated unsupported protocol version: {server_version!r}"
            )

        self.server_info = result
        self._initialized = True
        await self.notify(INITIALIZED_NOTIFICATION, None)
        logger.debug(
            f"[{self.name}] Handshake complete "
            f"(protocol {server_version}, server {result.get('serverInfo')})"
        )
        return result

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue a request and wait for its response.

        Raises:
            ProtocolUsageError: If called before initialize()
            RequestTimeoutError: If no response arrives within timeout
            TransportClosedError: If the transport closes first
            RemoteError: If the server answers with an error
        """
        if method == INITIALIZE_METHOD:
            raise ProtocolUsageError("Use initialize() for the handshake")
        if not self._initialized:
            raise ProtocolUsageError(
                f"Session {self.name}: call({method}) before handshake"
            )
        return await self._request(method, params, timeout)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification. No id is allocated and no response is awaited."""
        if self._closed:
            raise TransportClosedError(f"Session {self.name}: {self._close_reason}")
        await self._write(build_notification(method, params))

    async def list_tools(self, timeout: float | None = None) -> list[dict[str, Any]]:
        """List tools exposed by the server, following pagination cursors."""
        tools: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            result = await self.call("tools/list", params, timeout)
            if not isinstance(result, dict):
                raise ProtocolError(f"Invalid tools/list result: {result!r}")
            tools.extend(t for t in result.get("tools", []) if isinstance(t, dict))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Invoke a tool via tools/call and return the raw result payload."""
        return await self.call(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout
        )

    # ------------------------------------------------------------------
    # Request machinery
    # ------------------------------------------------------------------

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _request(
        self, method: str, params: dict[str, Any] | None, timeout: float | None
    ) -> Any:
        if self._closed:
            raise TransportClosedError(f"Session {self.name}: {self._close_reason}")

        timeout = self._default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        request_id = self._next_request_id()
        pending = PendingRequest(
            id=request_id,
            method=method,
            deadline=time.monotonic() + timeout,
            future=loop.create_future(),
        )
        self._pending[request_id] = pending

        try:
            try:
                await self._write(build_request(request_id, method, params))
            except BaseException:
                # _mark_closed may already have failed this future
                if pending.future.done() and not pending.future.cancelled():
                    pending.future.exception()
                raise
            return await asyncio.wait_for(pending.future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"[{self.name}] Request {request_id} ({method}) timed out")
            raise RequestTimeoutError(method, request_id, timeout) from None
        finally:
            self._pending.pop(request_id, None)

    async def _write(self, frame: dict[str, Any]) -> None:
        data = encode_frame(frame)
        async with self._write_lock:
            if self._closed:
                raise TransportClosedError(f"Session {self.name}: {self._close_reason}")
            try:
                await self._transport.write(data)
            except TransportClosedError:
                self._mark_closed("transport closed during write")
                raise
            except (ConnectionError, OSError) as e:
                self._mark_closed(f"write failed: {e}")
                raise TransportClosedError(f"Session {self.name}: write failed: {e}") from e

    def _mark_closed(self, reason: str) -> None:
        """Close the session state and fail all pending requests."""
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(
                    TransportClosedError(
                        f"Session {self.name}: {reason} "
                        f"(request {request.id} {request.method})"
                    )
                )
        if pending:
            logger.debug(
                f"[{self.name}] Failed {len(pending)} pending requests: {reason}"
            )

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self._transport.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for line in self._buffer.feed(chunk):
                    await self._handle_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[{self.name}] Reader stopped: {e}")
            self._mark_closed(f"read failed: {e}")
            return
        self._mark_closed("transport closed by peer")

    async def _handle_line(self, line: bytes) -> None:
        try:
            frame = decode_frame(line)
        except (ValueError, UnicodeDecodeError) as e:
            self.dropped_frames += 1
            preview = line[:200].decode("utf-8", errors="replace")
            logger.debug(f"[{self.name}] Discarding malformed frame ({e}): {preview}")
            return

        if is_response(frame):
            self._dispatch_response(frame)
        elif is_request(frame):
            await self._answer_server_request(frame)
        elif is_notification(frame):
            await self._dispatch_notification(frame)
        else:
            self.dropped_frames += 1
            logger.debug(f"[{self.name}] Discarding unrecognized frame: {frame}")

    def _dispatch_response(self, frame: dict[str, Any]) -> None:
        request_id = frame.get("id")
        # bool is an int subclass and True == 1
        pending = self._pending.get(request_id) if type(request_id) is int else None
        if pending is None or pending.future.done():
            self.late_responses += 1
            logger.debug(
                f"[{self.name}] Dropping response for unknown or expired id {request_id!r}"
            )
            return

        if "error" in frame:
            pending.future.set_exception(RemoteError.from_frame(frame["error"]))
        else:
            pending.future.set_result(frame.get("result"))

    async def _answer_server_request(self, frame: dict[str, Any]) -> None:
        method = frame.get("method")
        if method == PING_METHOD:
            reply = build_result(frame["id"], {})
        else:
            reply = build_error(frame["id"], METHOD_NOT_FOUND, f"Method not found: {method}")
        try:
            await self._write(reply)
        except TransportClosedError:
            pass

    async def _dispatch_notification(self, frame: dict[str, Any]) -> None:
        method = str(frame.get("method"))
        params = frame.get("params") or {}
        for handler in list(self._notification_handlers):
            try:
                outcome = handler(method, params)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"[{self.name}] Notification handler failed: {e}")
