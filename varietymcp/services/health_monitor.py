"""Health monitor - periodic liveness pings for registered plugin processes.

A process can stay alive while no longer answering requests. Every interval
each process that serves at least one capability gets a JSON-RPC ``ping`` on
its protocol session. After ``max_failures`` consecutive timeouts the process
is marked unhealthy, its capabilities are invalidated and it is stopped, so
the normal exit path runs and the capability can be acquired again.

Any answer counts as alive, including an error response: a server that
rejects ``ping`` still proved it reads its input.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from varietymcp.core.types import ProcessInfo, utc_now
from varietymcp.mcp_client.exceptions import (
    ProtocolUsageError,
    RemoteError,
    RequestTimeoutError,
    TransportClosedError,
)

if TYPE_CHECKING:
    from varietymcp.core.config.acquisition_config import SupervisorConfig
    from varietymcp.mcp_client.client import ProtocolClient
    from varietymcp.services.capability_router import CapabilityRouter
    from varietymcp.services.process_supervisor import ProcessSupervisor

PING_METHOD = "ping"


@dataclass
class HealthRecord:
    """Ping bookkeeping for one process."""

    process_id: str
    healthy: bool = True
    consecutive_failures: int = 0
    checks: int = 0
    last_ok_at: datetime | None = None
    last_checked_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "process_id": self.process_id,
            "healthy": self.healthy,
            "consecutive_failures": self.consecutive_failures,
            "checks": self.checks,
            "last_ok_at": self.last_ok_at.isoformat() if self.last_ok_at else None,
            "last_checked_at": (
                self.last_checked_at.isoformat() if self.last_checked_at else None
            ),
            "last_error": self.last_error,
        }


class HealthMonitor:
    """Pings every process that currently serves a capability.

    Usage:
        health = HealthMonitor(supervisor, protocol, router, interval=30.0)
        await health.start()
        ...
        await health.stop()
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        protocol: ProtocolClient,
        router: CapabilityRouter,
        interval: float = 30.0,
        ping_timeout: float = 5.0,
        max_failures: int = 3,
    ):
        self.supervisor = supervisor
        self.protocol = protocol
        self.router = router
        self.interval = interval
        self.ping_timeout = ping_timeout
        self.max_failures = max_failures

        self._records: dict[str, HealthRecord] = {}
        self._loop_task: asyncio.Task | None = None

        supervisor.add_exit_listener(self._on_process_exit)

    @classmethod
    def from_config(
        cls,
        config: SupervisorConfig,
        supervisor: ProcessSupervisor,
        protocol: ProtocolClient,
        router: CapabilityRouter,
    ) -> HealthMonitor:
        """Create a health monitor from SupervisorConfig."""
        return cls(
            supervisor,
            protocol,
            router,
            interval=config.health_check_interval_seconds,
            ping_timeout=config.health_check_timeout_seconds,
            max_failures=config.health_max_failures,
        )

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """Start periodic checks. Does nothing when the interval is 0."""
        if not self.enabled:
            logger.debug("Health checks disabled")
            return
        if self.is_running:
            return
        self._loop_task = asyncio.create_task(self._run_loop(), name="health-monitor")
        logger.info(f"Health monitor started (interval {self.interval:.1f}s)")

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info("Health monitor stopped")

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check_once()
            except Exception as e:
                logger.error(f"Health check round failed: {e}")

    async def check_once(self) -> list[str]:
        """Ping every process that serves a capability.

        Returns:
            Ids of processes stopped as unhealthy during this round
        """
        process_ids = sorted({m.process_id for m in self.router.list_mappings()})
        targets = [pid for pid in process_ids if self.protocol.has_session(pid)]
        if not targets:
            return []

        outcomes = await asyncio.gather(*(self._check(pid) for pid in targets))
        return [pid for pid, stopped in zip(targets, outcomes) if stopped]

    async def _check(self, process_id: str) -> bool:
        record = self._records.setdefault(process_id, HealthRecord(process_id))
        record.checks += 1
        record.last_checked_at = utc_now()

        try:
            await self.protocol.call(process_id, PING_METHOD, None, self.ping_timeout)
        except RemoteError:
            pass
        except RequestTimeoutError as e:
            return await self._record_failure(record, str(e))
        except (TransportClosedError, ProtocolUsageError) as e:
            # Session went away mid-check; the exit path handles the process
            logger.debug(f"Skipping health check of {process_id}: {e}")
            return False

        record.healthy = True
        record.consecutive_failures = 0
        record.last_error = None
        record.last_ok_at = utc_now()
        return False

    async def _record_failure(self, record: HealthRecord, reason: str) -> bool:
        record.consecutive_failures += 1
        record.last_error = reason
        process_id = record.process_id

        if record.consecutive_failures < self.max_failures:
            logger.warning(
                f"{process_id} missed health ping "
                f"({record.consecutive_failures}/{self.max_failures})"
            )
            return False

        record.healthy = False
        logger.error(
            f"{process_id} missed {record.consecutive_failures} health pings, stopping it"
        )
        self.router.invalidate_process(process_id)
        await self.protocol.detach(process_id, "process unhealthy")
        await self.supervisor.stop(process_id)
        return True

    def _on_process_exit(self, info: ProcessInfo) -> None:
        record = self._records.get(info.id)
        if record is not None and record.healthy:
            del self._records[info.id]

    def get_health(self, process_id: str) -> HealthRecord | None:
        return self._records.get(process_id)

    def get_status(self) -> dict[str, Any]:
        """Health summary keyed by process id."""
        return {
            "enabled": self.enabled,
            "running": self.is_running,
            "interval_seconds": self.interval,
            "processes": {pid: r.to_dict() for pid, r in sorted(self._records.items())},
        }
