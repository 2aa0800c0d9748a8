"""Process supervisor - owns the lifecycle of plugin subprocesses.

Each spawned process gets:
- a watcher task that awaits the OS process and records how it ended
- a stderr drain task (stderr is diagnostics only, never protocol)
- at most one StdioTransport handed to the protocol client

Other components only ever see ProcessInfo snapshots keyed by process id;
the asyncio Process object stays inside this module.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import sys
import threading
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from varietymcp.core.exceptions import (
    ExecutableNotFoundError,
    ProcessCrashedError,
    ProcessNotRunningError,
    SpawnFailedError,
)
from varietymcp.core.types import ProcessInfo, ProcessStatus, utc_now
from varietymcp.mcp_client.exceptions import TransportClosedError
from varietymcp.mcp_client.transport import Transport

if TYPE_CHECKING:
    from varietymcp.core.config.acquisition_config import SupervisorConfig

ExitListener = Callable[[ProcessInfo], Awaitable[None] | None]

# Seconds to let the stderr drain finish after the process has exited
STDERR_FLUSH_TIMEOUT = 1.0


@dataclass
class ProcessHandle:
    """Supervisor-internal record of one subprocess."""

    id: str
    package_name: str
    executable: str
    process: asyncio.subprocess.Process
    status: ProcessStatus = ProcessStatus.STARTING
    started_at: datetime = field(default_factory=utc_now)
    ended_at: datetime | None = None
    exit_code: int | None = None
    stop_requested: bool = False
    transport_opened: bool = False
    stderr_tail: deque[str] = field(default_factory=deque)
    exited: asyncio.Event = field(default_factory=asyncio.Event)
    watcher_task: asyncio.Task | None = None
    stderr_task: asyncio.Task | None = None

    def snapshot(self) -> ProcessInfo:
        return ProcessInfo(
            id=self.id,
            package_name=self.package_name,
            status=self.status,
            started_at=self.started_at,
            pid=self.process.pid,
            executable=self.executable,
            ended_at=self.ended_at,
            exit_code=self.exit_code,
        )


class StdioTransport(Transport):
    """Byte-stream view of a supervised process's stdin/stdout.

    Writes go through the supervisor so a dead process is reported as a
    closed transport. Closing the transport does not stop the process.
    """

    def __init__(self, supervisor: ProcessSupervisor, process_id: str, stdout: asyncio.StreamReader):
        self._supervisor = supervisor
        self._process_id = process_id
        self._stdout = stdout
        self._closed = False

    @property
    def process_id(self) -> str:
        return self._process_id

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportClosedError(f"Transport for {self._process_id} is closed")
        try:
            await self._supervisor.send(self._process_id, data)
        except ProcessNotRunningError as e:
            raise TransportClosedError(str(e)) from e

    async def read(self, max_bytes: int = 65536) -> bytes:
        if self._closed:
            return b""
        return await self._stdout.read(max_bytes)

    async def close(self) -> None:
        self._closed = True

    @property
    def is_closed(self) -> bool:
        return self._closed


class ProcessSupervisor:
    """Spawns, watches and stops plugin subprocesses.

    The live registry is guarded by an RLock so status queries from other
    threads (CLI status output, tests) see a consistent view.

    Attributes:
        startup_grace: Seconds in which an exit counts as a failed spawn
        stop_timeout: Seconds to wait after terminate before killing

    Usage:
        supervisor = ProcessSupervisor()
        info = await supervisor.spawn("node", ["server.js"], working_dir=path)
        transport = supervisor.open_transport(info.id)
        ...
        await supervisor.stop(info.id)
    """

    def __init__(
        self,
        startup_grace: float = 0.5,
        stop_timeout: float = 5.0,
        stderr_tail_lines: int = 200,
        history_limit: int = 100,
        inherit_env: bool = True,
    ):
        self.startup_grace = startup_grace
        self.stop_timeout = stop_timeout
        self._stderr_tail_lines = stderr_tail_lines
        self._history_limit = history_limit
        self._inherit_env = inherit_env

        self._lock = threading.RLock()
        self._processes: dict[str, ProcessHandle] = {}
        self._history: OrderedDict[str, ProcessHandle] = OrderedDict()
        self._exit_listeners: list[ExitListener] = []
        self._counter = 0

    @classmethod
    def from_config(cls, config: SupervisorConfig) -> ProcessSupervisor:
        return cls(
            startup_grace=config.startup_grace_seconds,
            stop_timeout=config.stop_timeout_seconds,
            stderr_tail_lines=config.stderr_tail_lines,
            history_limit=config.history_limit,
            inherit_env=config.inherit_env,
        )

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def _next_process_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"proc-{self._counter}"

    @staticmethod
    def _resolve_executable(executable: str) -> str:
        """Resolve an executable to a path.

        Raises:
            ExecutableNotFoundError: If it cannot be found or is not executable
        """
        if not executable:
            raise ExecutableNotFoundError("Empty executable")

        path = Path(executable)
        if path.is_absolute() or os.sep in executable:
            if not path.is_file():
                raise ExecutableNotFoundError(f"Executable not found: {executable}")
            if not os.access(path, os.X_OK):
                raise ExecutableNotFoundError(f"Not executable: {executable}")
            return str(path)

        resolved = shutil.which(executable)
        if resolved is None:
            raise ExecutableNotFoundError(f"Executable not found on PATH: {executable}")
        return resolved

    def _build_env(self, env: dict[str, str] | None) -> dict[str, str]:
        if self._inherit_env:
            merged = dict(os.environ)
        else:
            merged = {"PATH": os.environ.get("PATH", "")}
        if env:
            merged.update(env)
        return merged

    async def spawn(
        self,
        executable: str,
        args: Sequence[str] = (),
        working_dir: Path | str | None = None,
        package_name: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessInfo:
        """Start a subprocess with piped stdin/stdout/stderr.

        Args:
            executable: Program name (looked up on PATH) or path
            args: Arguments, passed as argv (never through a shell)
            working_dir: Working directory for the process
            package_name: Package the process serves, for status output
            env: Extra environment variables

        Returns:
            Snapshot of the running process

        Raises:
            ExecutableNotFoundError: If the executable does not exist
            SpawnFailedError: If the OS refuses to start it or it exits
                within the startup grace period
        """
        resolved = self._resolve_executable(executable)

        cwd = None
        if working_dir is not None:
            cwd = Path(working_dir)
            if not cwd.is_dir():
                raise SpawnFailedError(f"Working directory does not exist: {cwd}")

        argv = [resolved, *[str(a) for a in args]]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=self._build_env(env),
                # Own process group so terminal signals don't reach plugins
                start_new_session=sys.platform != "win32",
            )
        except FileNotFoundError as e:
            raise ExecutableNotFoundError(f"Executable not found: {resolved}") from e
        except OSError as e:
            raise SpawnFailedError(f"Failed to start {resolved}: {e}") from e

        process_id = self._next_process_id()
        handle = ProcessHandle(
            id=process_id,
            package_name=package_name or Path(executable).name,
            executable=resolved,
            process=process,
            stderr_tail=deque(maxlen=self._stderr_tail_lines),
        )
        with self._lock:
            self._processes[process_id] = handle

        handle.stderr_task = asyncio.create_task(
            self._drain_stderr(handle), name=f"stderr-{process_id}"
        )
        handle.watcher_task = asyncio.create_task(
            self._watch(handle), name=f"watch-{process_id}"
        )

        if self.startup_grace > 0:
            try:
                await asyncio.wait_for(
                    asyncio.shield(handle.exited.wait()), timeout=self.startup_grace
                )
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                await self.stop(process_id)
                raise
            else:
                tail = " | ".join(list(handle.stderr_tail)[-5:])
                detail = (
                    f"{handle.package_name} exited during startup "
                    f"with code {handle.exit_code}"
                )
                if tail:
                    detail += f": {tail}"
                raise SpawnFailedError(detail)

        with self._lock:
            if handle.status == ProcessStatus.STARTING:
                handle.status = ProcessStatus.RUNNING
            info = handle.snapshot()

        logger.info(
            f"Started {info.package_name} as {process_id} (PID: {info.pid}): "
            f"{' '.join(argv)}"
        )
        return info

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def _get_live(self, process_id: str) -> ProcessHandle:
        """Return the live handle for a process.

        Raises:
            ProcessCrashedError: If the process ended on its own
            ProcessNotRunningError: If it is unknown or was stopped
        """
        with self._lock:
            handle = self._processes.get(process_id)
            if handle is not None and not handle.status.is_terminal:
                return handle
            ended = self._history.get(process_id)

        if ended is not None and ended.status == ProcessStatus.CRASHED:
            raise ProcessCrashedError(
                f"Process {process_id} crashed (exit code {ended.exit_code})"
            )
        raise ProcessNotRunningError(f"Process {process_id} is not running")

    async def send(self, process_id: str, data: bytes) -> None:
        """Write bytes to a process's stdin.

        Raises:
            ProcessNotRunningError: If the process is gone or its stdin is closed
        """
        handle = self._get_live(process_id)
        stdin = handle.process.stdin
        if handle.stop_requested or stdin is None or stdin.is_closing():
            raise ProcessNotRunningError(f"Process {process_id} is not accepting input")
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProcessNotRunningError(
                f"Process {process_id} closed its input: {e}"
            ) from e

    def open_transport(self, process_id: str) -> StdioTransport:
        """Hand out the byte-stream transport for a process.

        Only one transport per process may exist since both would compete
        for the same stdout.

        Raises:
            ProcessNotRunningError: If the process is not running or its
                transport was already opened
        """
        handle = self._get_live(process_id)
        stdout = handle.process.stdout
        if stdout is None:
            raise ProcessNotRunningError(f"Process {process_id} has no stdout pipe")
        with self._lock:
            if handle.transport_opened:
                raise ProcessNotRunningError(
                    f"Transport for {process_id} was already opened"
                )
            handle.transport_opened = True
        return StdioTransport(self, process_id, stdout)

    # ------------------------------------------------------------------
    # Stopping
    # ------------------------------------------------------------------

    async def stop(self, process_id: str, timeout: float | None = None) -> None:
        """Stop a process: close stdin, terminate, kill after the timeout.

        Idempotent; unknown or already-ended ids are ignored.
        """
        with self._lock:
            handle = self._processes.get(process_id)
            if handle is None:
                return
            handle.stop_requested = True

        timeout = self.stop_timeout if timeout is None else timeout
        process = handle.process

        if process.returncode is None:
            logger.info(f"Stopping {process_id} (PID: {process.pid})...")
            stdin = process.stdin
            if stdin is not None and not stdin.is_closing():
                stdin.close()
            try:
                process.terminate()
            except ProcessLookupError:
                pass

            try:
                await asyncio.wait_for(handle.exited.wait(), timeout=timeout)
                return
            except asyncio.TimeoutError:
                logger.warning(
                    f"{process_id} did not stop within {timeout:.1f}s, sending SIGKILL"
                )
            try:
                process.kill()
            except ProcessLookupError:
                pass

        await handle.exited.wait()

    async def stop_all(self) -> None:
        """Stop every live process."""
        with self._lock:
            process_ids = list(self._processes)
        if process_ids:
            await asyncio.gather(*(self.stop(pid) for pid in process_ids))

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _drain_stderr(self, handle: ProcessHandle) -> None:
        stream = handle.process.stderr
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; the buffer was discarded
                handle.stderr_tail.append("<oversized stderr line dropped>")
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                handle.stderr_tail.append(text)
                logger.debug(f"[{handle.id}] stderr: {text}")

    async def _watch(self, handle: ProcessHandle) -> None:
        returncode = await handle.process.wait()

        if handle.stderr_task is not None and not handle.stderr_task.done():
            try:
                await asyncio.wait_for(handle.stderr_task, timeout=STDERR_FLUSH_TIMEOUT)
            except asyncio.TimeoutError:
                pass

        with self._lock:
            handle.exit_code = returncode
            handle.ended_at = utc_now()
            handle.status = (
                ProcessStatus.STOPPED if handle.stop_requested else ProcessStatus.CRASHED
            )
            self._processes.pop(handle.id, None)
            info = handle.snapshot()
            self._remember(handle)
        handle.exited.set()

        if info.status == ProcessStatus.CRASHED:
            logger.warning(
                f"{handle.id} ({handle.package_name}) exited unexpectedly "
                f"with code {returncode}"
            )
        else:
            logger.info(f"{handle.id} ({handle.package_name}) stopped")

        await self._notify_exit(info)

    def _remember(self, handle: ProcessHandle) -> None:
        if self._history_limit <= 0:
            return
        self._history[handle.id] = handle
        while len(self._history) > self._history_limit:
            self._history.popitem(last=False)

    # ------------------------------------------------------------------
    # Exit listeners
    # ------------------------------------------------------------------

    def add_exit_listener(self, listener: ExitListener) -> None:
        """Register a callback invoked with the final ProcessInfo of every exit."""
        self._exit_listeners.append(listener)

    async def _notify_exit(self, info: ProcessInfo) -> None:
        for listener in list(self._exit_listeners):
            try:
                outcome = listener(info)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Exit listener failed for {info.id}: {e}")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_process(self, process_id: str) -> ProcessInfo | None:
        """Snapshot of a live or recently ended process."""
        with self._lock:
            handle = self._processes.get(process_id) or self._history.get(process_id)
            return handle.snapshot() if handle is not None else None

    def is_running(self, process_id: str) -> bool:
        with self._lock:
            handle = self._processes.get(process_id)
            return handle is not None and handle.status == ProcessStatus.RUNNING

    def list_running_processes(self) -> list[ProcessInfo]:
        with self._lock:
            return [
                h.snapshot()
                for h in self._processes.values()
                if h.status == ProcessStatus.RUNNING
            ]

    def list_processes(self) -> list[ProcessInfo]:
        """Live processes followed by ended ones, oldest first."""
        with self._lock:
            live = [h.snapshot() for h in self._processes.values()]
            return live + [h.snapshot() for h in self._history.values()]

    def stderr_tail(self, process_id: str, lines: int | None = None) -> list[str]:
        """Last stderr lines of a live or recently ended process."""
        with self._lock:
            handle = self._processes.get(process_id) or self._history.get(process_id)
            if handle is None:
                return []
            tail = list(handle.stderr_tail)
        return tail[-lines:] if lines else tail
