"""Tests for HealthMonitor over in-memory protocol sessions."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from tests.helpers.memory_transport import MemoryTransport, memory_server_responder
from varietymcp.core.config.acquisition_config import SupervisorConfig
from varietymcp.core.types import ProcessInfo, ProcessStatus
from varietymcp.mcp_client.client import ProtocolClient
from varietymcp.services.capability_router import CapabilityRouter
from varietymcp.services.health_monitor import HealthMonitor


class HangingServer:
    """Memory server whose ping answers can be switched off."""

    def __init__(self, ping_error: bool = False):
        self.hung = False
        self.ping_error = ping_error
        self._respond = memory_server_responder()

    def __call__(self, frame):
        if frame.get("method") == "ping":
            if self.hung:
                return None
            if self.ping_error:
                return {
                    "jsonrpc": "2.0",
                    "id": frame["id"],
                    "error": {"code": -32601, "message": "Method not found: ping"},
                }
        return self._respond(frame)


@pytest.fixture
def supervisor():
    supervisor = MagicMock()
    supervisor.running = {"proc-1", "proc-2"}
    supervisor.is_running.side_effect = lambda pid: pid in supervisor.running
    supervisor.stop = AsyncMock()
    return supervisor


@pytest_asyncio.fixture
async def protocol():
    client = ProtocolClient(handshake_timeout=2.0, default_timeout=2.0)
    yield client
    await client.close_all()


@pytest.fixture
def router(supervisor, protocol):
    return CapabilityRouter(supervisor, protocol)


@pytest.fixture
def health(supervisor, protocol, router):
    return HealthMonitor(
        supervisor, protocol, router, interval=0.05, ping_timeout=0.05, max_failures=2
    )


async def serve(protocol, router, process_id, capability, server):
    transport = MemoryTransport(responder=server)
    protocol.attach(process_id, transport)
    await protocol.initialize(process_id)
    router.register(capability, process_id, "store", "server-memory")
    return transport


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestCheckOnce:
    @pytest.mark.asyncio
    async def test_answering_process_is_healthy(self, health, protocol, router, supervisor):
        transport = await serve(protocol, router, "proc-1", "memory", HangingServer())

        assert await health.check_once() == []

        record = health.get_health("proc-1")
        assert record.healthy
        assert record.consecutive_failures == 0
        assert record.checks == 1
        assert record.last_ok_at is not None
        assert len(transport.requests("ping")) == 1
        supervisor.stop.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_each_process_is_pinged_once(self, health, protocol, router):
        first = await serve(protocol, router, "proc-1", "memory", HangingServer())
        router.register("storage", "proc-1", "store")
        second = await serve(protocol, router, "proc-2", "database", HangingServer())

        await health.check_once()

        assert len(first.requests("ping")) == 1
        assert len(second.requests("ping")) == 1

    @pytest.mark.asyncio
    async def test_error_answer_counts_as_alive(self, health, protocol, router):
        await serve(protocol, router, "proc-1", "memory", HangingServer(ping_error=True))

        await health.check_once()

        assert health.get_health("proc-1").healthy

    @pytest.mark.asyncio
    async def test_unregistered_sessions_are_not_pinged(self, health, protocol):
        transport = MemoryTransport(responder=HangingServer())
        protocol.attach("proc-1", transport)
        await protocol.initialize("proc-1")

        assert await health.check_once() == []
        assert transport.requests("ping") == []
        assert health.get_health("proc-1") is None

    @pytest.mark.asyncio
    async def test_missed_pings_stop_process_after_limit(
        self, health, protocol, router, supervisor
    ):
        server = HangingServer()
        await serve(protocol, router, "proc-1", "memory", server)
        server.hung = True

        assert await health.check_once() == []
        record = health.get_health("proc-1")
        assert record.consecutive_failures == 1
        assert record.healthy
        assert router.has_capability("memory")
        supervisor.stop.assert_not_awaited()

        assert await health.check_once() == ["proc-1"]
        assert not record.healthy
        assert record.last_error
        assert not router.has_capability("memory")
        assert not protocol.has_session("proc-1")
        supervisor.stop.assert_awaited_once_with("proc-1")

    @pytest.mark.asyncio
    async def test_answer_resets_failure_count(self, health, protocol, router, supervisor):
        server = HangingServer()
        await serve(protocol, router, "proc-1", "memory", server)

        server.hung = True
        await health.check_once()
        server.hung = False
        await health.check_once()
        server.hung = True
        await health.check_once()

        record = health.get_health("proc-1")
        assert record.consecutive_failures == 1
        assert record.healthy
        supervisor.stop.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_session_is_left_to_exit_path(
        self, health, protocol, router, supervisor
    ):
        transport = await serve(protocol, router, "proc-1", "memory", HangingServer())
        transport.close_remote()
        await wait_until(lambda: not protocol.has_session("proc-1"))

        assert await health.check_once() == []
        supervisor.stop.assert_not_awaited()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_loop_stops_hung_process(self, health, protocol, router, supervisor):
        server = HangingServer()
        await serve(protocol, router, "proc-1", "memory", server)
        server.hung = True

        await health.start()
        try:
            assert health.is_running
            await wait_until(lambda: supervisor.stop.await_count == 1)
        finally:
            await health.stop()

        assert not health.is_running
        assert not router.has_capability("memory")

    @pytest.mark.asyncio
    async def test_zero_interval_disables_checks(self, supervisor, protocol, router):
        health = HealthMonitor(supervisor, protocol, router, interval=0)

        await health.start()

        assert not health.enabled
        assert not health.is_running
        await health.stop()

    @pytest.mark.asyncio
    async def test_exit_forgets_healthy_record_and_keeps_unhealthy(
        self, health, protocol, router, supervisor
    ):
        server = HangingServer()
        await serve(protocol, router, "proc-1", "memory", server)
        await serve(protocol, router, "proc-2", "database", HangingServer())
        await health.check_once()
        server.hung = True
        await health.check_once()
        await health.check_once()

        on_exit = supervisor.add_exit_listener.call_args_list[-1].args[0]
        for process_id in ("proc-1", "proc-2"):
            on_exit(
                ProcessInfo(
                    id=process_id,
                    package_name="server-memory",
                    status=ProcessStatus.STOPPED,
                    started_at=datetime.now(timezone.utc),
                )
            )

        assert health.get_health("proc-2") is None
        assert health.get_health("proc-1").healthy is False
        status = health.get_status()
        assert list(status["processes"]) == ["proc-1"]
        assert status["processes"]["proc-1"]["healthy"] is False

    def test_from_config(self, supervisor, protocol, router):
        config = SupervisorConfig(
            health_check_interval_seconds=12.0,
            health_check_timeout_seconds=1.5,
            health_max_failures=5,
        )

        health = HealthMonitor.from_config(config, supervisor, protocol, router)

        assert health.interval == 12.0
        assert health.ping_timeout == 1.5
        assert health.max_failures == 5
