"""Data models for supervised workers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class WorkerState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    EXITING = "exiting"


class WorkerHandle(Protocol):
    """The subset of :class:`asyncio.subprocess.Process` the supervisor relies on."""

    pid: int
    returncode: int | None

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...


@dataclass(eq=False, slots=True)
class WorkerProcess:
    """A worker spawned by the supervisor."""

    handle: WorkerHandle
    debug_port: int
    control: asyncio.StreamReader | None = None
    control_transport: asyncio.BaseTransport | None = None
    managed_exit: bool = False
    state: WorkerState = WorkerState.STARTING

    @property
    def pid(self) -> int:
        return self.handle.pid

    @property
    def alive(self) -> bool:
        return self.handle.returncode is None

    def close_control(self) -> None:
        transport, self.control_transport = self.control_transport, None
        if transport is not None:
            transport.close()


__all__ = ["WorkerHandle", "WorkerProcess", "WorkerState"]
