"""Session tunnel between the operator's terminal and the worker's REPL."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from ..protocol import TerminalSize, encode_resize
from .terminal import TerminalModeError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 4096


class TunnelBindError(RuntimeError):
    """Raised when the tunnel endpoint cannot be bound."""


class Terminal(Protocol):
    input_fd: int

    def enter_raw(self) -> None:
        ...

    def restore(self) -> None:
        ...

    def size(self) -> TerminalSize:
        ...

    def read(self, size: int = 1024) -> bytes:
        ...

    def write(self, data: bytes) -> None:
        ...


class SessionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"


@dataclass(eq=False, slots=True)
class Session:
    """One connected worker REPL."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    size: TerminalSize
    state: SessionState = SessionState.OPEN


class SessionTunnel:
    """Relay raw bytes between the terminal and at most one connected worker."""

    def __init__(self, path: Path, terminal: Terminal, *, watch_resize: bool = True) -> None:
        self._path = Path(path)
        self._terminal = terminal
        self._watch_resize = watch_resize
        self._server: asyncio.AbstractServer | None = None
        self._session: Session | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._failure: asyncio.Future[BaseException] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def active(self) -> bool:
        return self._session is not None

    @property
    def failure(self) -> asyncio.Future[BaseException]:
        """Resolves with the fatal error that stopped the tunnel, if any."""

        if self._failure is None:
            self._failure = asyncio.get_running_loop().create_future()
        return self._failure

    async def wait_idle(self) -> None:
        """Wait until no session holds the terminal."""

        await self._idle.wait()

    async def start(self) -> None:
        # Clean up a socket left behind by a previous run.
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
        try:
            self._server = await asyncio.start_unix_server(self._handle_client, path=str(self._path))
        except OSError as exc:
            raise TunnelBindError(f"Failed to listen on {self._path}: {exc}") from exc
        if self._failure is None:
            self._failure = asyncio.get_running_loop().create_future()
        logger.debug("Exposed console endpoint", extra={"path": str(self._path)})

    async def close(self) -> None:
        session = self._session
        if session is not None:
            session.writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()

    def notify_resize(self) -> None:
        session = self._session
        if session is None or session.state is not SessionState.OPEN:
            return
        session.size = self._terminal.size()
        session.writer.write(encode_resize(session.size.rows, session.size.columns))

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._session is not None:
            logger.warning("Refusing a second console connection while one is active")
            writer.close()
            return

        try:
            self._terminal.enter_raw()
        except TerminalModeError as exc:
            logger.error("Cannot put the terminal into raw mode")
            writer.close()
            if not self.failure.done():
                self.failure.set_result(exc)
            return

        session = Session(reader=reader, writer=writer, size=self._terminal.size())
        self._session = session
        self._idle.clear()
        loop = asyncio.get_running_loop()
        logger.info("connected")
        try:
            writer.write(encode_resize(session.size.rows, session.size.columns))
            loop.add_reader(self._terminal.input_fd, self._forward_input, session)
            if self._watch_resize:
                loop.add_signal_handler(signal.SIGWINCH, self.notify_resize)
            while True:
                try:
                    chunk = await reader.read(_CHUNK_SIZE)
                except ConnectionError:
                    break
                if not chunk:
                    break
                self._terminal.write(chunk)
        finally:
            session.state = SessionState.CLOSING
            loop.remove_reader(self._terminal.input_fd)
            if self._watch_resize:
                loop.remove_signal_handler(signal.SIGWINCH)
            self._terminal.restore()
            writer.close()
            self._session = None
            self._idle.set()
            logger.info("disconnected")

    def _forward_input(self, session: Session) -> None:
        try:
            data = self._terminal.read(_CHUNK_SIZE)
        except OSError as exc:
            logger.warning("Terminal read failed: %s", exc)
            data = b""
        if not data:
            # Terminal closed; stop polling it until the next session.
            asyncio.get_running_loop().remove_reader(self._terminal.input_fd)
            return
        if session.state is SessionState.OPEN:
            session.writer.write(data)


__all__ = ["Session", "SessionState", "SessionTunnel", "TunnelBindError"]
