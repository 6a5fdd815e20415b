"""Worker lifecycle supervision.

The supervisor owns exactly one worker at a time and reacts to three kinds of
worker termination differently:

* a ``reload`` control message replaces the worker immediately;
* a ``shutdown`` control message stops the worker and then the supervisor;
* an exit nobody asked for is a crash. The supervisor reports the worker
  offline and waits for a watched file to change or for the operator to press
  a key before spawning again, so broken code does not respawn in a loop.

All worker events (control messages and process exits) funnel through a
single queue and are handled strictly one after another.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Union

from ..protocol import ControlMessage
from .launcher import WorkerLaunchError
from .models import WorkerProcess, WorkerState

logger = logging.getLogger(__name__)

Observer = Callable[[str, Union[WorkerProcess, None]], None]
SignalSource = Callable[[], Awaitable[Any]]


class SupervisorState(str, Enum):
    NO_WORKER = "no_worker"
    STARTING = "starting"
    RUNNING = "running"
    RELOADING = "reloading"
    SHUTTING_DOWN = "shutting_down"
    CRASHED = "crashed"
    TERMINATED = "terminated"


class Launcher(Protocol):
    async def launch(self, debug_port: int) -> WorkerProcess:
        ...


class ProxyControl(Protocol):
    def close_all(self) -> int:
        ...


@dataclass(slots=True)
class DebugPortState:
    """Debug port bookkeeping shared with the debug proxy.

    Only :meth:`advance` hands out ports, and it never hands out the same one
    twice, so a debugger connection still draining from a dead worker cannot
    collide with its replacement.
    """

    base: int
    current: int | None = None
    _next: int = field(init=False)

    def __post_init__(self) -> None:
        self._next = self.base

    def advance(self) -> int:
        port = self._next
        self._next += 1
        self.current = port
        return port

    def clear(self) -> None:
        self.current = None


@dataclass(frozen=True, slots=True)
class ControlEvent:
    worker: WorkerProcess | None
    message: ControlMessage


@dataclass(frozen=True, slots=True)
class WorkerExited:
    worker: WorkerProcess
    returncode: int | None


class ProcessSupervisor:
    """State machine that starts, reloads and restarts the console worker."""

    def __init__(
        self,
        launcher: Launcher,
        ports: DebugPortState,
        *,
        proxy: ProxyControl | None = None,
        wait_for_change: SignalSource | None = None,
        wait_for_keypress: SignalSource | None = None,
        terminate_timeout: float = 5.0,
    ) -> None:
        self._launcher = launcher
        self._ports = ports
        self._proxy = proxy
        self._wait_for_change = wait_for_change
        self._wait_for_keypress = wait_for_keypress
        self._terminate_timeout = terminate_timeout
        self._state = SupervisorState.NO_WORKER
        self._worker: WorkerProcess | None = None
        self._events: asyncio.Queue[ControlEvent | WorkerExited] = asyncio.Queue()
        self._monitors: set[asyncio.Task[None]] = set()
        self._observers: list[Observer] = []
        self._exit_code = 0
        self._shutdown_requested = asyncio.Event()

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def worker(self) -> WorkerProcess | None:
        return self._worker

    @property
    def ports(self) -> DebugPortState:
        return self._ports

    def register_observer(self, callback: Observer) -> None:
        self._observers.append(callback)

    def request_shutdown(self) -> None:
        """Ask for a planned shutdown from outside the worker (e.g. SIGTERM)."""

        self._shutdown_requested.set()
        self._events.put_nowait(ControlEvent(worker=None, message=ControlMessage.SHUTDOWN))

    async def run(self) -> int:
        """Supervise workers until a planned shutdown; return the exit code."""

        try:
            await self._spawn()
            while self._state is not SupervisorState.TERMINATED:
                event = await self._events.get()
                if isinstance(event, ControlEvent):
                    await self._on_control(event)
                else:
                    await self._on_exit(event)
        finally:
            worker = self._worker
            if worker is not None and worker.alive:
                await self._terminate(worker)
            for task in list(self._monitors):
                task.cancel()
            await asyncio.gather(*self._monitors, return_exceptions=True)
        return self._exit_code

    #
    # Transitions
    #
    async def _spawn(self) -> WorkerProcess:
        self._set_state(SupervisorState.STARTING)
        port = self._ports.advance()
        worker = await self._launcher.launch(port)
        self._worker = worker
        worker.state = WorkerState.RUNNING
        monitor = asyncio.create_task(self._monitor(worker), name=f"worker-monitor-{worker.pid}")
        self._monitors.add(monitor)
        monitor.add_done_callback(self._monitors.discard)
        self._set_state(SupervisorState.RUNNING)
        logger.info("Worker started", extra={"pid": worker.pid, "debug_port": port})
        self._notify("worker_online", worker)
        return worker

    async def _on_control(self, event: ControlEvent) -> None:
        if event.message is ControlMessage.RELOAD:
            await self._reload()
        elif event.message is ControlMessage.SHUTDOWN:
            await self._shutdown()

    async def _reload(self) -> None:
        worker = self._worker
        if worker is None:
            logger.debug("Reload requested without a running worker; ignoring")
            return
        logger.info("Reloading worker", extra={"pid": worker.pid})
        self._set_state(SupervisorState.RELOADING)
        # Unpublish the port first so retrying debuggers cannot reach the dying worker.
        self._ports.clear()
        self._close_debug_sessions()
        worker.managed_exit = True
        await self._terminate(worker)
        self._worker = None
        try:
            replacement = await self._spawn()
        except WorkerLaunchError as exc:
            logger.error("Failed to start the replacement worker: %s", exc)
            self._enter_crashed(None)
            await self._recover()
            return
        logger.info("Worker reloaded", extra={"pid": replacement.pid, "debug_port": replacement.debug_port})
        self._notify("worker_reloaded", replacement)

    async def _shutdown(self) -> None:
        logger.info("Shutting down")
        self._set_state(SupervisorState.SHUTTING_DOWN)
        self._ports.clear()
        self._close_debug_sessions()
        worker = self._worker
        if worker is not None:
            worker.managed_exit = True
            await self._terminate(worker)
        self._worker = None
        self._exit_code = 0
        self._set_state(SupervisorState.TERMINATED)

    async def _on_exit(self, event: WorkerExited) -> None:
        worker = event.worker
        if worker.managed_exit:
            return
        if worker is not self._worker:
            logger.warning("Exit reported for an unknown worker", extra={"pid": worker.pid})
            return

        logger.warning(
            "Worker exited unexpectedly; waiting for a file change or a keypress to restart",
            extra={"pid": worker.pid, "returncode": event.returncode},
        )
        self._enter_crashed(worker)
        await self._recover()

    def _enter_crashed(self, worker: WorkerProcess | None) -> None:
        self._set_state(SupervisorState.CRASHED)
        self._worker = None
        self._ports.clear()
        self._close_debug_sessions()
        self._notify("worker_offline", worker)

    async def _recover(self) -> None:
        """Respawn after the next retry signal; a failed launch waits for another one."""

        while True:
            trigger = await self._await_retry_signal()
            if trigger == "shutdown":
                return
            logger.info("Restarting worker", extra={"trigger": trigger})
            try:
                await self._spawn()
            except WorkerLaunchError as exc:
                logger.error("Failed to restart worker: %s", exc)
                self._set_state(SupervisorState.CRASHED)
                self._ports.clear()
                continue
            return

    async def _await_retry_signal(self) -> str:
        """Race the watcher against a keypress and cancel whichever loses."""

        sources = {
            name: source
            for name, source in (("watch", self._wait_for_change), ("keypress", self._wait_for_keypress))
            if source is not None
        }
        if not sources:
            raise RuntimeError("crash recovery needs a file watcher or a keypress source")
        # A queued shutdown request must not wait for the operator.
        sources["shutdown"] = self._shutdown_requested.wait

        waiters = {asyncio.ensure_future(source()): name for name, source in sources.items()}
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        winner = done.pop()
        error = winner.exception()
        if error is not None:
            logger.warning("Restart trigger failed: %s", error)
        return waiters[winner]

    #
    # Worker plumbing
    #
    async def _monitor(self, worker: WorkerProcess) -> None:
        try:
            if worker.control is not None:
                while True:
                    line = await worker.control.readline()
                    if not line:
                        break
                    message = ControlMessage.parse(line)
                    if message is None:
                        logger.warning("Ignoring unknown control message", extra={"raw": line[:80]})
                        continue
                    logger.debug("Control message received", extra={"pid": worker.pid, "message": message.value})
                    self._events.put_nowait(ControlEvent(worker=worker, message=message))
            returncode = await worker.handle.wait()
        finally:
            worker.close_control()
        self._events.put_nowait(WorkerExited(worker=worker, returncode=returncode))

    async def _terminate(self, worker: WorkerProcess) -> None:
        worker.state = WorkerState.EXITING
        if not worker.alive:
            return
        with contextlib.suppress(ProcessLookupError):
            worker.handle.terminate()
        try:
            await asyncio.wait_for(worker.handle.wait(), timeout=self._terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning("Worker ignored SIGTERM; killing it", extra={"pid": worker.pid})
            with contextlib.suppress(ProcessLookupError):
                worker.handle.kill()
            await worker.handle.wait()

    def _close_debug_sessions(self) -> None:
        if self._proxy is None:
            return
        closed = self._proxy.close_all()
        if closed:
            logger.debug("Closed debugger sessions", extra={"count": closed})

    def _set_state(self, state: SupervisorState) -> None:
        if state is not self._state:
            logger.debug("Supervisor state %s -> %s", self._state.value, state.value)
            self._state = state

    def _notify(self, event: str, worker: WorkerProcess | None) -> None:
        for callback in list(self._observers):
            try:
                callback(event, worker)
            except Exception:
                logger.exception("Supervisor observer failed", extra={"event": event})


__all__ = [
    "ControlEvent",
    "DebugPortState",
    "ProcessSupervisor",
    "SupervisorState",
    "WorkerExited",
]
