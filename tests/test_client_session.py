"""Unit tests for ClientSession request/response correlation."""

import asyncio

import pytest
import pytest_asyncio

from tests.helpers.memory_transport import MemoryTransport, memory_server_responder
from varietymcp.mcp_client.exceptions import (
    HandshakeError,
    ProtocolUsageError,
    RemoteError,
    RequestTimeoutError,
    TransportClosedError,
)
from varietymcp.mcp_client.session import ClientSession


def handshake_only(frame):
    """Answer initialize, leave every other request to the test."""
    if frame.get("method") == "initialize":
        return {
            "jsonrpc": "2.0",
            "id": frame["id"],
            "result": {
                "protocolVersion": "2025-06-18",
                "capabilities": {},
                "serverInfo": {"name": "manual"},
            },
        }
    return None


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def manual_session():
    transport = MemoryTransport(responder=handshake_only)
    session = ClientSession(transport, name="test", default_timeout=2.0)
    session.start()
    await session.initialize(timeout=2.0)
    yield session, transport
    await session.close()


class TestHandshake:
    @pytest.mark.asyncio
    async def test_initialize_then_initialized_notification(self):
        transport = MemoryTransport(responder=memory_server_responder())
        session = ClientSession(transport, name="p1")
        session.start()

        result = await session.initialize(timeout=2.0)

        assert result["serverInfo"]["name"] == "memory"
        assert session.is_initialized
        assert [f["method"] for f in transport.sent] == [
            "initialize",
            "notifications/initialized",
        ]
        assert "id" not in transport.sent[1]
        params = transport.sent[0]["params"]
        assert params["protocolVersion"] == "2025-11-25"
        assert params["clientInfo"]["name"] == "varietymcp"
        await session.close()

    @pytest.mark.asyncio
    async def test_call_before_handshake_is_usage_error(self):
        session = ClientSession(MemoryTransport(), name="p1")
        session.start()

        with pytest.raises(ProtocolUsageError):
            await session.call("tools/list")
        await session.close()

    @pytest.mark.asyncio
    async def test_second_initialize_is_usage_error(self, manual_session):
        session, _ = manual_session
        with pytest.raises(ProtocolUsageError):
            await session.initialize()

    @pytest.mark.asyncio
    async def test_initialize_via_call_is_usage_error(self, manual_session):
        session, _ = manual_session
        with pytest.raises(ProtocolUsageError):
            await session.call("initialize", {})

    @pytest.mark.asyncio
    async def test_unsupported_protocol_version_fails_handshake(self):
        transport = MemoryTransport(
            responder=memory_server_responder(protocol_version="1999-01-01")
        )
        session = ClientSession(transport, name="p1")
        session.start()

        with pytest.raises(HandshakeError, match="unsupported protocol version"):
            await session.initialize(timeout=2.0)
        assert not session.is_initialized
        await session.close()

    @pytest.mark.asyncio
    async def test_handshake_timeout_is_handshake_error(self):
        session = ClientSession(MemoryTransport(), name="silent")
        session.start()

        with pytest.raises(HandshakeError):
            await session.initialize(timeout=0.05)
        await session.close()


class TestCorrelation:
    @pytest.mark.asyncio
    async def test_responses_in_reverse_order_reach_their_callers(self, manual_session):
        session, transport = manual_session

        first = asyncio.create_task(session.call("tools/call", {"name": "a"}))
        second = asyncio.create_task(session.call("tools/call", {"name": "b"}))
        requests = await transport.wait_for_requests(3)
        id_a, id_b = requests[1]["id"], requests[2]["id"]
        assert id_b > id_a

        transport.feed_frame({"jsonrpc": "2.0", "id": id_b, "result": "for-b"})
        transport.feed_frame({"jsonrpc": "2.0", "id": id_a, "result": "for-a"})

        assert await first == "for-a"
        assert await second == "for-b"
        assert session.pending_count == 0

    @pytest.mark.asyncio
    async def test_late_response_after_timeout_is_dropped(self, manual_session):
        session, transport = manual_session

        with pytest.raises(RequestTimeoutError) as exc_info:
            await session.call("slow/method", timeout=0.05)
        expired_id = exc_info.value.request_id
        assert session.pending_count == 0

        transport.feed_frame({"jsonrpc": "2.0", "id": expired_id, "result": "late"})
        await wait_until(lambda: session.late_responses == 1)

        # The next request gets a fresh id and its own response
        task = asyncio.create_task(session.call("fast/method"))
        requests = await transport.wait_for_requests(3)
        new_id = requests[-1]["id"]
        assert new_id > expired_id
        transport.feed_frame({"jsonrpc": "2.0", "id": new_id, "result": "fresh"})
        assert await task == "fresh"

    @pytest.mark.asyncio
    async def test_request_timeout_is_also_a_timeout_error(self, manual_session):
        session, _ = manual_session
        with pytest.raises(TimeoutError):
            await session.call("never/answered", timeout=0.01)

    @pytest.mark.asyncio
    async def test_remote_error_is_passed_through_verbatim(self, manual_session):
        session, transport = manual_session

        task = asyncio.create_task(session.call("tools/call", {"name": "x"}))
        requests = await transport.wait_for_requests(2)
        transport.feed_frame(
            {
                "jsonrpc": "2.0",
                "id": requests[-1]["id"],
                "error": {"code": -32001, "message": "Unknown key", "data": {"key": "k"}},
            }
        )

        with pytest.raises(RemoteError) as exc_info:
            await task
        assert exc_info.value.code == -32001
        assert exc_info.value.message == "Unknown key"
        assert exc_info.value.data == {"key": "k"}

    @pytest.mark.asyncio
    async def test_response_for_unknown_id_is_ignored(self, manual_session):
        session, transport = manual_session
        transport.feed_frame({"jsonrpc": "2.0", "id": 999, "result": "nobody"})
        await wait_until(lambda: session.late_responses == 1)
        assert not session.is_closed

    @pytest.mark.asyncio
    async def test_boolean_id_does_not_match_request_one(self):
        transport = MemoryTransport()
        session = ClientSession(transport, name="test")
        session.start()
        try:
            task = asyncio.create_task(session.initialize(timeout=2.0))
            (request,) = await transport.wait_for_requests(1)
            assert request["id"] == 1

            reply = handshake_only(request)
            transport.feed_frame({**reply, "id": True})
            await wait_until(lambda: session.late_responses == 1)
            assert not task.done()

            transport.feed_frame(reply)
            result = await task
            assert result["serverInfo"]["name"] == "manual"
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_malformed_lines_do_not_break_the_session(self, manual_session):
        session, transport = manual_session

        task = asyncio.create_task(session.call("tools/list"))
        requests = await transport.wait_for_requests(2)
        transport.feed(b"this is not json\n")
        transport.feed(b"[1,2]\n")
        transport.feed_frame({"jsonrpc": "2.0", "id": requests[-1]["id"], "result": {}})

        assert await task == {}
        assert session.dropped_frames == 2


class TestClose:
    @pytest.mark.asyncio
    async def test_peer_close_fails_pending_requests(self, manual_session):
        session, transport = manual_session

        tasks = [asyncio.create_task(session.call("m", timeout=5.0)) for _ in range(3)]
        await transport.wait_for_requests(4)
        transport.close_remote()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, TransportClosedError) for r in results)
        assert session.is_closed
        assert session.pending_count == 0

    @pytest.mark.asyncio
    async def test_calls_after_close_fail_fast(self, manual_session):
        session, _ = manual_session
        await session.close()

        with pytest.raises(TransportClosedError):
            await session.call("tools/list")
        with pytest.raises(TransportClosedError):
            await session.notify("notifications/cancelled")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, manual_session):
        session, transport = manual_session
        await session.close()
        await session.close()
        assert transport.is_closed


class TestServerInitiatedFrames:
    @pytest.mark.asyncio
    async def test_ping_from_server_is_answered(self, manual_session):
        session, transport = manual_session

        transport.feed_frame({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
        await wait_until(lambda: any(f.get("id") == "srv-1" for f in transport.sent))

        reply = next(f for f in transport.sent if f.get("id") == "srv-1")
        assert reply["result"] == {}

    @pytest.mark.asyncio
    async def test_unknown_server_request_gets_method_not_found(self, manual_session):
        session, transport = manual_session

        transport.feed_frame(
            {"jsonrpc": "2.0", "id": 7, "method": "sampling/createMessage"}
        )
        await wait_until(lambda: any(f.get("id") == 7 for f in transport.sent))

        reply = next(f for f in transport.sent if f.get("id") == 7)
        assert reply["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_notifications_reach_handlers(self, manual_session):
        session, transport = manual_session
        received = []
        session.add_notification_handler(lambda method, params: received.append((method, params)))

        transport.feed_frame(
            {"jsonrpc": "2.0", "method": "notifications/tools/list_changed", "params": {}}
        )
        await wait_until(lambda: received)

        assert received == [("notifications/tools/list_changed", {})]


class TestToolHelpers:
    @pytest.mark.asyncio
    async def test_list_tools_follows_pagination(self):
        pages = {
            None: {"tools": [{"name": "store"}], "nextCursor": "c2"},
            "c2": {"tools": [{"name": "retrieve"}, "garbage"]},
        }

        def responder(frame):
            if frame.get("method") == "tools/list":
                cursor = (frame.get("params") or {}).get("cursor")
                return {"jsonrpc": "2.0", "id": frame["id"], "result": pages[cursor]}
            return handshake_only(frame)

        transport = MemoryTransport(responder=responder)
        session = ClientSession(transport, name="p1")
        session.start()
        await session.initialize(timeout=2.0)

        tools = await session.list_tools(timeout=2.0)

        assert [t["name"] for t in tools] == ["store", "retrieve"]
        await session.close()

    @pytest.mark.asyncio
    async def test_call_tool_sends_name_and_arguments(self):
        transport = MemoryTransport(responder=memory_server_responder())
        session = ClientSession(transport, name="p1")
        session.start()
        await session.initialize(timeout=2.0)

        await session.call_tool("store", {"key": "k", "value": 1}, timeout=2.0)
        result = await session.call_tool("retrieve", {"key": "k"}, timeout=2.0)

        call = transport.requests("tools/call")[0]
        assert call["params"] == {"name": "store", "arguments": {"key": "k", "value": 1}}
        assert result["content"][0]["text"] == "1"
        await session.close()
