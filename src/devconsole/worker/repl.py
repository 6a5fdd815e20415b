"""Interactive REPL served over the session tunnel."""

from __future__ import annotations

import asyncio
import code
import logging
import os
from contextlib import redirect_stdout
from pathlib import Path
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.data_structures import Size
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.input import PipeInput, create_pipe_input
from prompt_toolkit.output.vt100 import Vt100_Output

from ..protocol import ControlMessage, TerminalSize, TunnelInputDecoder
from .control import ControlChannel
from .coordinator import PromptAwareWriter
from .history import HistoryLog

LOGGER = logging.getLogger(__name__)

CONTINUATION_PROMPT = "... "


def build_prompt(pid: int, app_name: str) -> str:
    return f"({pid}) devconsole/{app_name} >> "


class _SocketStdout:
    """Minimal text stream over the tunnel socket, as Vt100_Output expects."""

    encoding = "utf-8"
    errors = "replace"

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self._writer = writer

    def write(self, data: str) -> int:
        if data and not self._writer.is_closing():
            self._writer.write(data.encode(self.encoding, self.errors))
        return len(data)

    def flush(self) -> None:
        pass

    def isatty(self) -> bool:
        return True


class _TunnelInterpreter(code.InteractiveInterpreter):
    """Evaluates input against the application namespace, printing to the tunnel."""

    def __init__(self, namespace: dict[str, Any], stdout: _SocketStdout) -> None:
        super().__init__(locals=namespace)
        self._stdout = stdout

    def write(self, data: str) -> None:
        self._stdout.write(data)

    def runcode(self, code_obj) -> None:  # type: ignore[override]
        with redirect_stdout(self._stdout):  # type: ignore[type-var]
            super().runcode(code_obj)


class ReplHost:
    """Owns the interactive session for one worker.

    Connects to the supervisor's tunnel endpoint, serves a prompt_toolkit
    session over it and reconnects if the connection drops. When the operator
    ends the session the host saves history and asks the supervisor to shut
    down.
    """

    def __init__(
        self,
        socket_path: Path,
        *,
        namespace: dict[str, Any],
        prompt: str,
        history: HistoryLog,
        control: ControlChannel,
        coordinator: PromptAwareWriter | None = None,
        reconnect_backoff: float = 0.5,
        max_backoff: float = 5.0,
    ) -> None:
        self._socket_path = Path(socket_path)
        self._namespace = namespace
        self._prompt = prompt
        self._history = history
        self._control = control
        self._coordinator = coordinator
        self._reconnect_backoff = reconnect_backoff
        self._max_backoff = max_backoff
        self._size = Size(rows=24, columns=80)
        self._session: PromptSession | None = None
        self._buffer: list[str] = []
        self._disconnected = False
        self._closing = False
        self._served_input = False

    #
    # Prompt state, read by the log/prompt coordinator
    #
    @property
    def prompt_text(self) -> str:
        return CONTINUATION_PROMPT if self._buffer else self._prompt

    def prompt_pending(self) -> bool:
        session = self._session
        return session is not None and not self._closing and session.app.is_running

    def buffer_text(self) -> str:
        session = self._session
        return session.default_buffer.text if session is not None else ""

    @property
    def size(self) -> Size:
        return self._size

    def save_history(self) -> bool:
        return self._history.save()

    async def run(self) -> None:
        """Serve the REPL until the operator exits it."""

        self._history.load()
        backoff = self._reconnect_backoff
        while True:
            reader, writer = await self._connect()
            LOGGER.debug("Connected to the console endpoint")
            finished = await self._serve(reader, writer)
            if finished:
                break
            if self._served_input:
                self._history.save()
                backoff = self._reconnect_backoff
                LOGGER.debug("Console connection lost; reconnecting")
                continue
            # Closed before any input, e.g. refused while another session is attached.
            LOGGER.debug("Console connection closed early; retrying in %.1fs", backoff)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self._max_backoff)

        self._closing = True
        if self._coordinator is not None:
            self._coordinator.close()
        self._history.save()
        self._control.send(ControlMessage.SHUTDOWN)

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        backoff = self._reconnect_backoff
        while True:
            try:
                return await asyncio.open_unix_connection(str(self._socket_path))
            except OSError as exc:
                LOGGER.debug("Console endpoint not ready (%s); retrying in %.1fs", exc, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._max_backoff)

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> bool:
        self._disconnected = False
        self._served_input = False
        stdout = _SocketStdout(writer)
        interpreter = _TunnelInterpreter(self._namespace, stdout)
        with create_pipe_input() as pipe_input:
            output = Vt100_Output(
                stdout,  # type: ignore[arg-type]
                lambda: self._size,
                term=os.environ.get("TERM", "xterm"),
                enable_cpr=False,
            )
            session: PromptSession = PromptSession(
                history=self._prompt_history(),
                input=pipe_input,
                output=output,
            )
            self._session = session
            if self._coordinator is not None:
                self._coordinator.attach(self, asyncio.get_running_loop())
            feeder = asyncio.create_task(self._feed(reader, pipe_input, session))
            try:
                return await self._interact(session, interpreter, stdout)
            finally:
                self._session = None
                if self._coordinator is not None:
                    self._coordinator.detach()
                feeder.cancel()
                await asyncio.gather(feeder, return_exceptions=True)
                writer.close()

    async def _interact(
        self,
        session: PromptSession,
        interpreter: _TunnelInterpreter,
        stdout: _SocketStdout,
    ) -> bool:
        """Run the read-eval-print loop; True when the operator ended it."""

        self._buffer = []
        while True:
            try:
                line = await session.prompt_async(self.prompt_text)
            except KeyboardInterrupt:
                self._buffer.clear()
                stdout.write("KeyboardInterrupt\n")
                continue
            except EOFError:
                return not self._disconnected
            self._history.append(line)
            self._buffer.append(line)
            try:
                more = interpreter.runsource("\n".join(self._buffer), "<console>", "single")
            except SystemExit:
                self._buffer.clear()
                return True
            if not more:
                self._buffer.clear()

    async def _feed(self, reader: asyncio.StreamReader, pipe_input: PipeInput, session: PromptSession) -> None:
        decoder = TunnelInputDecoder()
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                for chunk in decoder.feed(data):
                    if isinstance(chunk, TerminalSize):
                        self._resize(chunk, session)
                    else:
                        self._served_input = True
                        pipe_input.send_bytes(chunk)
        except ConnectionError:
            pass
        self._disconnected = True
        pipe_input.close()

    def _resize(self, size: TerminalSize, session: PromptSession) -> None:
        self._size = Size(rows=size.rows, columns=size.columns)
        if session.app.is_running:
            # Same hook prompt_toolkit's telnet server uses for NAWS updates.
            session.app._on_resize()

    def _prompt_history(self) -> InMemoryHistory:
        history = InMemoryHistory()
        for entry in self._history.snapshot():
            history.append_string(entry)
        return history


__all__ = ["CONTINUATION_PROMPT", "ReplHost", "build_prompt"]
