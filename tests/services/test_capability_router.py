"""Unit tests for CapabilityRouter."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from varietymcp.core.exceptions import (
    ProcessUnavailableError,
    UnknownCapabilityError,
    UnsafeNameError,
)
from varietymcp.core.types import ProcessInfo, ProcessStatus
from varietymcp.mcp_client.exceptions import (
    RemoteError,
    RequestTimeoutError,
    TransportClosedError,
)
from varietymcp.services.capability_router import CapabilityRouter


@pytest.fixture
def supervisor():
    supervisor = MagicMock()
    supervisor.running = {"proc-1", "proc-2"}
    supervisor.is_running.side_effect = lambda pid: pid in supervisor.running
    return supervisor


@pytest.fixture
def protocol():
    protocol = MagicMock()
    protocol.has_session.return_value = True
    protocol.call_tool = AsyncMock(return_value={"content": [{"type": "text", "text": "ok"}]})
    return protocol


@pytest.fixture
def router(supervisor, protocol):
    return CapabilityRouter(supervisor, protocol, default_timeout=9.0)


def exit_info(process_id):
    return ProcessInfo(
        id=process_id,
        package_name="pkg",
        status=ProcessStatus.CRASHED,
        started_at=datetime.now(timezone.utc),
        exit_code=1,
    )


class TestRegistration:
    def test_router_subscribes_to_process_exits(self, supervisor, router):
        supervisor.add_exit_listener.assert_called_once()

    def test_register_and_lookup(self, router):
        mapping = router.register("Memory", "proc-1", "store", "server-memory")

        assert mapping.capability == "memory"
        assert router.lookup("memory") == mapping
        assert router.has_capability("MEMORY")
        assert router.list_capabilities() == ["memory"]
        assert mapping.to_dict()["tool_name"] == "store"

    def test_lookups_accept_any_accepted_spelling(self, router):
        router.register("Memory Storage", "proc-1", "store")

        assert router.list_capabilities() == ["memory_storage"]
        assert router.lookup("memory storage").tool_name == "store"
        assert router.has_capability("  MEMORY  STORAGE ")
        assert not router.has_capability("../etc")
        assert router.unregister("Memory Storage") is True
        assert router.unregister("bad;name") is False

    def test_register_requires_running_process(self, router):
        with pytest.raises(ProcessUnavailableError):
            router.register("memory", "proc-dead", "store")
        assert router.list_capabilities() == []

    def test_register_rejects_unsafe_names(self, router):
        with pytest.raises(UnsafeNameError):
            router.register("memory; rm", "proc-1", "store")

    def test_reregister_replaces_mapping(self, router):
        router.register("memory", "proc-1", "store")
        router.register("memory", "proc-2", "remember")

        mapping = router.lookup("memory")
        assert (mapping.process_id, mapping.tool_name) == ("proc-2", "remember")

    def test_unregister(self, router):
        router.register("memory", "proc-1", "store")
        assert router.unregister("memory") is True
        assert router.unregister("memory") is False

    def test_invalidate_process_removes_all_its_mappings(self, router):
        router.register("memory", "proc-1", "store")
        router.register("caching", "proc-1", "store")
        router.register("sqlite", "proc-2", "query")

        removed = router.invalidate_process("proc-1")

        assert sorted(removed) == ["caching", "memory"]
        assert router.list_capabilities() == ["sqlite"]

    def test_exit_listener_invalidates(self, supervisor, router):
        router.register("memory", "proc-1", "store")
        listener = supervisor.add_exit_listener.call_args.args[0]

        listener(exit_info("proc-1"))

        assert not router.has_capability("memory")


class TestInvoke:
    @pytest.mark.asyncio
    async def test_invoke_routes_to_mapped_tool(self, router, protocol):
        router.register("memory", "proc-1", "store")

        result = await router.invoke("memory", {"key": "k", "value": 1})

        protocol.call_tool.assert_awaited_once_with(
            "proc-1", "store", {"key": "k", "value": 1}, 9.0
        )
        assert result["content"][0]["text"] == "ok"

    @pytest.mark.asyncio
    async def test_explicit_timeout_wins(self, router, protocol):
        router.register("memory", "proc-1", "store")
        await router.invoke("memory", timeout=2.5)
        protocol.call_tool.assert_awaited_once_with("proc-1", "store", {}, 2.5)

    @pytest.mark.asyncio
    async def test_unknown_capability(self, router):
        with pytest.raises(UnknownCapabilityError) as exc_info:
            await router.invoke("weather")
        assert exc_info.value.capability == "weather"

    @pytest.mark.asyncio
    async def test_unsafe_capability_is_unknown(self, router):
        with pytest.raises(UnknownCapabilityError):
            await router.invoke("../../etc/passwd")

    @pytest.mark.asyncio
    async def test_dead_process_is_invalidated(self, router, supervisor, protocol):
        router.register("memory", "proc-1", "store")
        supervisor.running.discard("proc-1")

        with pytest.raises(ProcessUnavailableError) as exc_info:
            await router.invoke("memory")

        assert exc_info.value.process_id == "proc-1"
        assert not router.has_capability("memory")
        protocol.call_tool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_session_is_invalidated(self, router, protocol):
        router.register("memory", "proc-1", "store")
        protocol.has_session.return_value = False

        with pytest.raises(ProcessUnavailableError, match="no protocol session"):
            await router.invoke("memory")
        assert not router.has_capability("memory")

    @pytest.mark.asyncio
    async def test_transport_closed_mid_call(self, router, protocol):
        router.register("memory", "proc-1", "store")
        protocol.call_tool.side_effect = TransportClosedError("peer exited")

        with pytest.raises(ProcessUnavailableError):
            await router.invoke("memory")
        assert not router.has_capability("memory")

    @pytest.mark.asyncio
    async def test_remote_error_passes_through_and_keeps_mapping(self, router, protocol):
        router.register("memory", "proc-1", "store")
        protocol.call_tool.side_effect = RemoteError(-32602, "bad args", {"field": "key"})

        with pytest.raises(RemoteError) as exc_info:
            await router.invoke("memory")

        assert exc_info.value.code == -32602
        assert exc_info.value.data == {"field": "key"}
        assert router.has_capability("memory")

    @pytest.mark.asyncio
    async def test_timeout_passes_through_and_keeps_mapping(self, router, protocol):
        router.register("memory", "proc-1", "store")
        protocol.call_tool.side_effect = RequestTimeoutError("tools/call", 4, 9.0)

        with pytest.raises(RequestTimeoutError):
            await router.invoke("memory")
        assert router.has_capability("memory")
