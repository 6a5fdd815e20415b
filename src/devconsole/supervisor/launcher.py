"""Async launcher for console workers."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Mapping, Sequence

from .models import WorkerProcess
from .utils import worker_environment

WORKER_MODULE = "devconsole.worker"


class WorkerLaunchError(RuntimeError):
    """Raised when a worker process cannot be started."""


class WorkerLauncher:
    """Start worker processes with an inherited control pipe.

    The worker shares the supervisor's stdout and stderr (its diagnostics go
    straight to the operator's terminal) but never its stdin, which belongs
    to the session tunnel.
    """

    def __init__(
        self,
        *,
        executable: Path | None = None,
        module: str = WORKER_MODULE,
        args: Sequence[str] | None = None,
        cwd: Path | None = None,
        environment: Mapping[str, str] | None = None,
    ) -> None:
        self._executable = Path(executable or sys.executable)
        self._module = module
        self._args = list(args or [])
        self._cwd = cwd
        self._environment = dict(environment or {})

    @property
    def executable(self) -> Path:
        return self._executable

    def command(self) -> list[str]:
        return [str(self._executable), "-m", self._module, *self._args]

    async def launch(self, debug_port: int) -> WorkerProcess:
        read_fd, write_fd = os.pipe()
        env = worker_environment(
            {
                **self._environment,
                "DEVCONSOLE_CONTROL_FD": str(write_fd),
                "DEVCONSOLE_WORKER_DEBUG_PORT": str(debug_port),
            }
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdin=asyncio.subprocess.DEVNULL,
                pass_fds=(write_fd,),
                env=env,
                cwd=str(self._cwd) if self._cwd else None,
            )
        except OSError as exc:
            os.close(read_fd)
            raise WorkerLaunchError(f"Failed to start worker {self.command()}: {exc}") from exc
        finally:
            os.close(write_fd)

        reader, transport = await _open_control_reader(read_fd)
        return WorkerProcess(
            handle=process,
            debug_port=debug_port,
            control=reader,
            control_transport=transport,
        )


async def _open_control_reader(fd: int) -> tuple[asyncio.StreamReader, asyncio.BaseTransport]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    pipe = os.fdopen(fd, "rb", buffering=0)
    transport, _ = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), pipe)
    return reader, transport


__all__ = ["WORKER_MODULE", "WorkerLaunchError", "WorkerLauncher"]
