"""Controlling-terminal access for the supervisor."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import termios
from typing import Iterator

from ..config import ConfigurationError
from ..protocol import TerminalSize

logger = logging.getLogger(__name__)

DEFAULT_SIZE = TerminalSize(rows=24, columns=80)

# termios attribute indices
_IFLAG, _OFLAG, _CFLAG, _LFLAG, _ISPEED, _OSPEED, _CC = range(7)


class TerminalModeError(ConfigurationError):
    """Raised when the controlling terminal cannot be put into raw mode."""


RAW_MODE_GUIDANCE = (
    "devconsole needs an interactive terminal that supports raw mode. "
    "Run it directly from a terminal emulator (not through a pipe, a file "
    "redirect or an IDE output pane) and try again."
)


class TerminalDevice:
    """Wraps the supervisor's terminal file descriptors.

    Raw mode mirrors prompt_toolkit's: input is delivered byte by byte with
    echo, canonical editing and signal keys disabled, while output
    post-processing stays on so ``\\n`` still moves to column zero.
    """

    def __init__(self, input_fd: int, output_fd: int) -> None:
        self.input_fd = input_fd
        self.output_fd = output_fd
        self._saved: list | None = None

    @classmethod
    def from_stdio(cls) -> TerminalDevice:
        return cls(sys.stdin.fileno(), sys.stdout.fileno())

    @property
    def is_raw(self) -> bool:
        return self._saved is not None

    def ensure_raw_capable(self) -> None:
        if not os.isatty(self.input_fd):
            raise TerminalModeError(RAW_MODE_GUIDANCE)
        try:
            termios.tcgetattr(self.input_fd)
        except termios.error as exc:
            raise TerminalModeError(RAW_MODE_GUIDANCE) from exc

    def enter_raw(self) -> None:
        if self._saved is not None:
            return
        try:
            saved = termios.tcgetattr(self.input_fd)
            attrs = termios.tcgetattr(self.input_fd)
            attrs[_LFLAG] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
            attrs[_IFLAG] &= ~(termios.IXON | termios.IXOFF | termios.ICRNL | termios.INLCR | termios.IGNCR)
            attrs[_CC][termios.VMIN] = 1
            attrs[_CC][termios.VTIME] = 0
            termios.tcsetattr(self.input_fd, termios.TCSANOW, attrs)
        except termios.error as exc:
            raise TerminalModeError(RAW_MODE_GUIDANCE) from exc
        self._saved = saved

    def restore(self) -> None:
        saved, self._saved = self._saved, None
        if saved is None:
            return
        try:
            termios.tcsetattr(self.input_fd, termios.TCSADRAIN, saved)
        except termios.error as exc:
            logger.warning("Failed to restore terminal mode: %s", exc)

    @contextlib.contextmanager
    def raw(self) -> Iterator[None]:
        self.enter_raw()
        try:
            yield
        finally:
            self.restore()

    def size(self) -> TerminalSize:
        try:
            columns, rows = os.get_terminal_size(self.output_fd)
        except OSError:
            return DEFAULT_SIZE
        return TerminalSize(rows=rows, columns=columns)

    def read(self, size: int = 1024) -> bytes:
        return os.read(self.input_fd, size)

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self.output_fd, view)
            view = view[written:]

    async def read_key(self) -> bytes:
        """Wait for a single keypress, holding raw mode only while waiting."""

        loop = asyncio.get_running_loop()
        future: asyncio.Future[bytes] = loop.create_future()

        def _on_readable() -> None:
            if future.done():
                return
            try:
                future.set_result(self.read(1))
            except OSError as exc:
                future.set_exception(exc)

        was_raw = self.is_raw
        if not was_raw:
            self.enter_raw()
        loop.add_reader(self.input_fd, _on_readable)
        try:
            return await future
        finally:
            loop.remove_reader(self.input_fd)
            if not was_raw:
                self.restore()


__all__ = ["DEFAULT_SIZE", "RAW_MODE_GUIDANCE", "TerminalDevice", "TerminalModeError"]
