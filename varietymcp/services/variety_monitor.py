"""Variety monitor - the gap-driven acquisition loop.

Each tick drains injected gaps, asks the optional required_capabilities
callable what should be available, and starts one background attempt per
missing capability. The tick never waits for attempts to finish.

Attempt state machine:
    detected -> discovering -> installing -> spawning -> handshaking -> registered
    any stage -> failed(stage, kind, reason)

Coalescing: a capability named by several gaps, or already in flight, gets
exactly one attempt.

Retry policy: after the n-th consecutive failure a capability is eligible
again after min(backoff_base * 2**(n-1), backoff_max) seconds; after
max_attempts consecutive failures it is only retried when a gap is injected
with force=True. A successful attempt clears the record.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from varietymcp.core.config.acquisition_config import AcquisitionConfig
from varietymcp.core.exceptions import (
    AcquisitionError,
    AcquisitionTimeoutError,
    HandshakeFailedError,
    InstallFailedError,
    ProcessNotRunningError,
    ProcessUnavailableError,
    UnsafeNameError,
)
from varietymcp.core.types import (
    AcquisitionStage,
    CandidateServer,
    FailureKind,
    InstalledPackage,
    ProcessInfo,
    Severity,
    VarietyGap,
    utc_now,
)
from varietymcp.core.validation import (
    capability_key,
    capability_keywords,
    normalize_capability,
)
from varietymcp.mcp_client.exceptions import ProtocolError

if TYPE_CHECKING:
    from varietymcp.mcp_client.client import ProtocolClient
    from varietymcp.services.capability_router import CapabilityRouter
    from varietymcp.services.discovery_service import DiscoveryService
    from varietymcp.services.package_installer import PackageInstaller
    from varietymcp.services.process_supervisor import ProcessSupervisor

RequiredCapabilities = Callable[[], Iterable[str]]

SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.NORMAL: 2,
    Severity.LOW: 3,
}


@dataclass
class AcquisitionAttempt:
    """One attempt to make a capability available."""

    attempt_id: str
    capability: str
    severity: Severity = Severity.NORMAL
    gap_source: str = "unknown"

    stage: AcquisitionStage = AcquisitionStage.DETECTED
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    stage_history: list[tuple[AcquisitionStage, datetime]] = field(default_factory=list)

    # Progress
    candidates_considered: int = 0
    candidate: CandidateServer | None = None
    installed: InstalledPackage | None = None
    process_id: str | None = None
    tool_name: str | None = None

    # Failure
    failed_stage: AcquisitionStage | None = None
    failure_kind: FailureKind | None = None
    failure_reason: str | None = None

    def __post_init__(self) -> None:
        if not self.stage_history:
            self.stage_history.append((self.stage, self.created_at))

    def advance(self, stage: AcquisitionStage) -> None:
        """Move to the next stage."""
        now = utc_now()
        self.stage = stage
        self.updated_at = now
        self.stage_history.append((stage, now))
        if stage.is_terminal:
            self.completed_at = now

    def fail(self, kind: FailureKind, reason: str) -> None:
        """Record a terminal failure at the current stage."""
        if self.stage.is_terminal:
            return
        self.failed_stage = self.stage
        self.failure_kind = kind
        self.failure_reason = reason
        self.advance(AcquisitionStage.FAILED)

    @property
    def is_active(self) -> bool:
        return not self.stage.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.stage == AcquisitionStage.REGISTERED

    def to_dict(self) -> dict[str, Any]:
        """Convert attempt to dictionary for JSON serialization."""
        return {
            "attempt_id": self.attempt_id,
            "capability": self.capability,
            "severity": self.severity.value,
            "gap_source": self.gap_source,
            "stage": self.stage.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "stages": [s.value for s, _ in self.stage_history],
            "candidates_considered": self.candidates_considered,
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "installed": self.installed.to_dict() if self.installed else None,
            "process_id": self.process_id,
            "tool_name": self.tool_name,
            "failure": (
                {
                    "stage": self.failed_stage.value if self.failed_stage else None,
                    "kind": self.failure_kind.value if self.failure_kind else None,
                    "reason": self.failure_reason,
                }
                if self.stage == AcquisitionStage.FAILED
                else None
            ),
            "elapsed_seconds": self._elapsed_seconds(),
        }

    def _elapsed_seconds(self) -> float:
        end = self.completed_at or utc_now()
        return round((end - self.created_at).total_seconds(), 2)


@dataclass
class RetryRecord:
    """Consecutive failure bookkeeping for one capability."""

    consecutive_failures: int = 0
    next_eligible_at: float = 0.0
    last_failure_kind: FailureKind | None = None


def choose_tool(capability: str, tools: list[dict[str, Any]]) -> str | None:
    """Pick the tool that serves a capability.

    Exact (case-insensitive) name match first, then the tool whose name and
    description share the most keywords with the capability, then the first
    tool listed.
    """
    named = [t for t in tools if isinstance(t.get("name"), str) and t["name"]]
    if not named:
        return None

    for tool in named:
        if tool["name"].lower() == capability:
            return tool["name"]

    requested = capability_keywords(capability)
    best_name, best_overlap = named[0]["name"], 0
    for tool in named:
        keywords = set(capability_keywords(tool["name"]))
        description = tool.get("description")
        if isinstance(description, str):
            keywords |= {w.strip(".,:;()").lower() for w in description.split()}
        overlap = len(requested & keywords)
        if overlap > best_overlap:
            best_name, best_overlap = tool["name"], overlap
    return best_name


class VarietyMonitor:
    """Detects capability gaps and drives acquisition attempts.

    Provides:
    - Periodic ticks plus early wake-up on inject_gap()
    - One background task per in-flight capability
    - Per-attempt deadline and failure cleanup
    - Retry with bounded exponential backoff
    - Status queries for attempts, capabilities and processes

    Usage:
        monitor = VarietyMonitor(discovery, installer, supervisor, protocol, router)
        await monitor.start()
        monitor.inject_gap({"memory"}, Severity.HIGH, source="api")
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        discovery: DiscoveryService,
        installer: PackageInstaller,
        supervisor: ProcessSupervisor,
        protocol: ProtocolClient,
        router: CapabilityRouter,
        config: AcquisitionConfig | None = None,
        required_capabilities: RequiredCapabilities | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize monitor.

        Args:
            discovery: Candidate discovery and matching
            installer: Package installer
            supervisor: Process supervisor
            protocol: Protocol client (one session per process)
            router: Capability router receiving successful mappings
            config: Loop interval, deadline and retry settings
            required_capabilities: Optional callable naming capabilities that
                must be available; polled on every tick
            clock: Monotonic time source for backoff
        """
        self.discovery = discovery
        self.installer = installer
        self.supervisor = supervisor
        self.protocol = protocol
        self.router = router
        self.config = config or AcquisitionConfig()
        self.required_capabilities = required_capabilities
        self._clock = clock

        self._pending_gaps: list[VarietyGap] = []
        self._attempts: OrderedDict[str, AcquisitionAttempt] = OrderedDict()
        self._latest: dict[str, AcquisitionAttempt] = {}
        self._in_flight: dict[str, AcquisitionAttempt] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._retry: dict[str, RetryRecord] = {}

        self._tick_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._shutdown = False
        self._tick_count = 0
        self._last_tick_at: datetime | None = None

        supervisor.add_exit_listener(self._on_process_exit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic loop."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._shutdown = False
        self._loop_task = asyncio.create_task(self._run_loop(), name="variety-monitor")
        logger.info(
            f"Variety monitor started (interval {self.config.interval_seconds:.1f}s)"
        )

    async def stop(self) -> None:
        """Stop the loop and cancel in-flight attempts.

        Processes that already registered keep running; stopping them is the
        supervisor's job.
        """
        self._shutdown = True
        self._wake.set()

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Variety monitor stopped")

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def _run_loop(self) -> None:
        while not self._shutdown:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Variety monitor tick failed: {e}")

            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self.config.interval_seconds
                )
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    # ------------------------------------------------------------------
    # Gap intake
    # ------------------------------------------------------------------

    def inject_gap(
        self,
        required_capabilities: Iterable[str],
        severity: Severity = Severity.NORMAL,
        source: str = "api",
        force: bool = False,
    ) -> bool:
        """Queue a gap for the next tick and wake the loop.

        Args:
            required_capabilities: Capability names that must become available
            severity: Urgency; higher severities start first within a tick
            source: Who reported the gap
            force: Clear the retry record so exhausted capabilities are
                attempted again

        Returns:
            True if the gap was accepted (at least one valid capability)
        """
        names: set[str] = set()
        for raw in required_capabilities:
            try:
                names.add(normalize_capability(raw))
            except UnsafeNameError as e:
                logger.warning(f"Ignoring capability in gap from {source}: {e}")

        if not names:
            return False

        if force:
            for name in names:
                self._retry.pop(name, None)

        self._pending_gaps.append(
            VarietyGap(frozenset(names), severity=Severity(severity), source=source)
        )
        self._wake.set()
        logger.info(
            f"Gap injected by {source} ({Severity(severity).value}): {', '.join(sorted(names))}"
        )
        return True

    def _compute_gap(self) -> VarietyGap | None:
        if self.required_capabilities is None:
            return None
        try:
            required = set()
            for raw in self.required_capabilities():
                try:
                    required.add(normalize_capability(raw))
                except UnsafeNameError as e:
                    logger.warning(f"Ignoring required capability: {e}")
        except Exception as e:
            logger.error(f"required_capabilities callable failed: {e}")
            return None

        missing = required - set(self.router.list_capabilities())
        if not missing:
            return None
        return VarietyGap(frozenset(missing), source="monitor")

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> list[AcquisitionAttempt]:
        """Run one detection cycle.

        Returns:
            Attempts started during this tick
        """
        async with self._tick_lock:
            self._tick_count += 1
            self._last_tick_at = utc_now()

            gaps, self._pending_gaps = self._pending_gaps, []
            computed = self._compute_gap()
            if computed is not None:
                gaps.append(computed)

            wanted: dict[str, VarietyGap] = {}
            for gap in sorted(gaps, key=lambda g: SEVERITY_ORDER[g.severity]):
                for capability in sorted(gap.required_capabilities):
                    wanted.setdefault(capability, gap)

            started = []
            for capability, gap in wanted.items():
                if self.router.has_capability(capability):
                    continue
                if capability in self._in_flight:
                    logger.debug(f"'{capability}' already in flight, coalescing")
                    continue
                if not self._is_eligible(capability):
                    continue
                started.append(self._start_attempt(capability, gap))
            return started

    def _is_eligible(self, capability: str) -> bool:
        record = self._retry.get(capability)
        if record is None:
            return True
        if record.consecutive_failures >= self.config.max_attempts:
            logger.debug(
                f"'{capability}' failed {record.consecutive_failures} times in a row, "
                "waiting for a forced gap"
            )
            return False
        return self._clock() >= record.next_eligible_at

    def _start_attempt(self, capability: str, gap: VarietyGap) -> AcquisitionAttempt:
        attempt = AcquisitionAttempt(
            attempt_id=str(uuid.uuid4())[:8],
            capability=capability,
            severity=gap.severity,
            gap_source=gap.source,
        )
        self._attempts[attempt.attempt_id] = attempt
        self._latest[capability] = attempt
        self._in_flight[capability] = attempt
        self._trim_history()

        task = asyncio.create_task(
            self._run_attempt(attempt), name=f"acquire-{capability}"
        )
        self._tasks[attempt.attempt_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(attempt.attempt_id, None))
        logger.info(f"Acquisition {attempt.attempt_id} started for '{capability}'")
        return attempt

    def _trim_history(self) -> None:
        excess = len(self._attempts) - self.config.history_limit
        if excess <= 0:
            return
        for attempt_id in [a.attempt_id for a in self._attempts.values() if not a.is_active][:excess]:
            del self._attempts[attempt_id]

    # ------------------------------------------------------------------
    # Attempt execution
    # ------------------------------------------------------------------

    async def _run_attempt(self, attempt: AcquisitionAttempt) -> None:
        deadline = self.config.attempt_deadline_seconds
        try:
            await asyncio.wait_for(self._acquire(attempt), timeout=deadline)
        except AcquisitionError as e:
            attempt.fail(e.kind, str(e))
        except asyncio.TimeoutError:
            error = AcquisitionTimeoutError(
                f"Acquisition of '{attempt.capability}' exceeded {deadline:.1f}s "
                f"during {attempt.stage.value}"
            )
            attempt.fail(error.kind, str(error))
        except asyncio.CancelledError:
            attempt.fail(FailureKind.INTERNAL_ERROR, "attempt cancelled")
            await self._cleanup_failed(attempt)
            self._finish(attempt)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error acquiring '{attempt.capability}'")
            attempt.fail(FailureKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}")

        if not attempt.succeeded:
            await self._cleanup_failed(attempt)
        self._finish(attempt)

    async def _acquire(self, attempt: AcquisitionAttempt) -> None:
        capability = attempt.capability

        attempt.advance(AcquisitionStage.DISCOVERING)
        candidates = await self.discovery.discover(capability)
        attempt.candidates_considered = len(candidates)
        candidate = self.discovery.select(capability, candidates)
        attempt.candidate = candidate
        logger.info(
            f"[{attempt.attempt_id}] Selected {candidate.package_name}@{candidate.version} "
            f"for '{capability}' ({candidate.source_origin.value}, score {candidate.score})"
        )

        attempt.advance(AcquisitionStage.INSTALLING)
        try:
            attempt.installed = await self.installer.install(candidate)
        except InstallFailedError as e:
            attempt.installed = e.installed
            raise

        attempt.advance(AcquisitionStage.SPAWNING)
        executable, args = self.installer.resolve_entrypoint(attempt.installed)
        info = await self.supervisor.spawn(
            executable,
            args,
            working_dir=attempt.installed.install_dir,
            package_name=candidate.package_name,
        )
        attempt.process_id = info.id

        attempt.advance(AcquisitionStage.HANDSHAKING)
        attempt.tool_name = await self._handshake(capability, info.id)
        try:
            self.router.register(
                capability, info.id, attempt.tool_name, candidate.package_name
            )
        except ProcessUnavailableError as e:
            raise HandshakeFailedError(f"Process exited before registration: {e}") from e

        attempt.advance(AcquisitionStage.REGISTERED)

    async def _handshake(self, capability: str, process_id: str) -> str:
        """Attach a protocol session, initialize it and pick the tool.

        Raises:
            HandshakeFailedError: If the session cannot be established or
                the server exposes no tools
        """
        try:
            transport = self.supervisor.open_transport(process_id)
            self.protocol.attach(process_id, transport)
            await self.protocol.initialize(process_id)
            tools = await self.protocol.list_tools(process_id)
        except (ProtocolError, ProcessNotRunningError) as e:
            raise HandshakeFailedError(f"Handshake with {process_id} failed: {e}") from e

        tool_name = choose_tool(capability, tools)
        if tool_name is None:
            raise HandshakeFailedError(f"{process_id} exposes no tools")
        logger.debug(
            f"{process_id} exposes {len(tools)} tools, using '{tool_name}' for '{capability}'"
        )
        return tool_name

    async def _cleanup_failed(self, attempt: AcquisitionAttempt) -> None:
        """Stop a process spawned by a failed attempt. Install directories stay."""
        if attempt.process_id is None:
            return
        try:
            await self.protocol.detach(attempt.process_id, "acquisition failed")
            await self.supervisor.stop(attempt.process_id)
        except Exception as e:
            logger.error(f"Failed to stop {attempt.process_id} after failed attempt: {e}")

    def _finish(self, attempt: AcquisitionAttempt) -> None:
        capability = attempt.capability
        if self._in_flight.get(capability) is attempt:
            del self._in_flight[capability]

        if attempt.succeeded:
            self._retry.pop(capability, None)
            logger.info(
                f"Acquisition {attempt.attempt_id} registered '{capability}' on "
                f"{attempt.process_id} (tool '{attempt.tool_name}')"
            )
            return

        record = self._retry.setdefault(capability, RetryRecord())
        record.consecutive_failures += 1
        record.last_failure_kind = attempt.failure_kind
        delay = self.config.backoff_delay(record.consecutive_failures)
        record.next_eligible_at = self._clock() + delay
        logger.warning(
            f"Acquisition {attempt.attempt_id} for '{capability}' failed at "
            f"{attempt.failed_stage.value if attempt.failed_stage else '?'} "
            f"({attempt.failure_kind.value if attempt.failure_kind else '?'}): "
            f"{attempt.failure_reason}; retry in {delay:.0f}s "
            f"({record.consecutive_failures}/{self.config.max_attempts})"
        )

    async def _on_process_exit(self, info: ProcessInfo) -> None:
        if self.protocol.has_session(info.id):
            await self.protocol.detach(info.id, f"process {info.status.value}")

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no attempt is in flight.

        Returns:
            False if the timeout expired first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            tasks = [t for t in self._tasks.values() if not t.done()]
            if not tasks:
                return True
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(tasks, timeout=remaining)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def list_running_processes(self) -> list[ProcessInfo]:
        return self.supervisor.list_running_processes()

    def list_capabilities(self) -> list[str]:
        return self.router.list_capabilities()

    def get_acquisition_status(self, capability: str) -> dict[str, Any] | None:
        """Latest attempt for a capability plus availability and retry state.

        Returns:
            None if the capability was never attempted
        """
        name = capability_key(capability)
        attempt = self._latest.get(name) if name is not None else None
        if attempt is None:
            return None

        status = attempt.to_dict()
        status["available"] = self.router.has_capability(name)
        record = self._retry.get(name)
        if record is not None:
            status["retry"] = {
                "consecutive_failures": record.consecutive_failures,
                "exhausted": record.consecutive_failures >= self.config.max_attempts,
                "next_attempt_in_seconds": round(
                    max(record.next_eligible_at - self._clock(), 0.0), 1
                ),
            }
        return status

    def list_attempts(
        self, include_finished: bool = True, limit: int = 50
    ) -> list[AcquisitionAttempt]:
        """Attempts, newest first."""
        attempts = list(self._attempts.values())
        if not include_finished:
            attempts = [a for a in attempts if a.is_active]
        attempts.reverse()
        return attempts[:limit]

    def get_status(self) -> dict[str, Any]:
        """Summary of the monitor for status output."""
        attempts = list(self._attempts.values())
        return {
            "running": self.is_running,
            "interval_seconds": self.config.interval_seconds,
            "ticks": self._tick_count,
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "pending_gaps": len(self._pending_gaps),
            "in_flight": sorted(self._in_flight),
            "capabilities": self.list_capabilities(),
            "processes": [p.to_dict() for p in self.list_running_processes()],
            "attempts": {
                "total": len(attempts),
                "registered": sum(1 for a in attempts if a.succeeded),
                "failed": sum(1 for a in attempts if a.stage == AcquisitionStage.FAILED),
                "active": sum(1 for a in attempts if a.is_active),
            },
        }
