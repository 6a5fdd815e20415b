"""Wire formats shared by the supervisor and its worker.

Two channels exist between the processes:

* the control pipe, carrying newline-terminated :class:`ControlMessage`
  values from the worker to the supervisor;
* the tunnel socket, carrying raw terminal bytes in both directions. The
  supervisor additionally injects terminal-geometry updates into the
  keystroke stream as a private OSC sequence, ``ESC ] 7701 ; rows ; cols BEL``,
  which :class:`TunnelInputDecoder` strips back out on the worker side.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple, Union


class ControlMessage(str, Enum):
    RELOAD = "reload"
    SHUTDOWN = "shutdown"

    def encode(self) -> bytes:
        return self.value.encode("ascii") + b"\n"

    @classmethod
    def parse(cls, raw: bytes | str) -> ControlMessage | None:
        """Return the message for *raw*, or ``None`` when it is not a known message."""

        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            return cls(text.strip())
        except ValueError:
            return None


class TerminalSize(NamedTuple):
    rows: int
    columns: int


RESIZE_PREFIX = b"\x1b]7701;"
RESIZE_TERMINATOR = b"\x07"
_RESIZE_BODY = re.compile(rb"^(\d{1,5});(\d{1,5})$")
# Anything longer than this after the prefix is not one of ours.
_MAX_BODY = 16

TunnelChunk = Union[bytes, TerminalSize]


def encode_resize(rows: int, columns: int) -> bytes:
    return RESIZE_PREFIX + f"{int(rows)};{int(columns)}".encode("ascii") + RESIZE_TERMINATOR


class TunnelInputDecoder:
    """Split the tunnel byte stream into keystroke bytes and geometry updates."""

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, data: bytes) -> list[TunnelChunk]:
        buffer = self._pending + data
        self._pending = b""
        chunks: list[TunnelChunk] = []
        while buffer:
            start = buffer.find(RESIZE_PREFIX)
            if start == -1:
                keep = self._partial_prefix_length(buffer)
                if keep:
                    self._pending = buffer[-keep:]
                    buffer = buffer[:-keep]
                if buffer:
                    chunks.append(buffer)
                break
            if start:
                chunks.append(buffer[:start])
            body_start = start + len(RESIZE_PREFIX)
            end = buffer.find(RESIZE_TERMINATOR, body_start)
            if end == -1:
                if len(buffer) - body_start > _MAX_BODY:
                    # Not a geometry update after all; pass it through.
                    chunks.append(buffer[start:])
                else:
                    self._pending = buffer[start:]
                break
            match = _RESIZE_BODY.match(buffer[body_start:end])
            if match:
                chunks.append(TerminalSize(int(match.group(1)), int(match.group(2))))
            else:
                chunks.append(buffer[start : end + 1])
            buffer = buffer[end + 1 :]
        return _merge_bytes(chunks)

    @staticmethod
    def _partial_prefix_length(buffer: bytes) -> int:
        # A lone trailing ESC is a real Escape keypress; only hold back
        # tails that already look like the start of our OSC sequence.
        for size in range(len(RESIZE_PREFIX) - 1, 1, -1):
            if buffer.endswith(RESIZE_PREFIX[:size]):
                return size
        return 0


def _merge_bytes(chunks: list[TunnelChunk]) -> list[TunnelChunk]:
    merged: list[TunnelChunk] = []
    for chunk in chunks:
        if isinstance(chunk, bytes) and merged and isinstance(merged[-1], bytes):
            merged[-1] = merged[-1] + chunk
        else:
            merged.append(chunk)
    return merged


__all__ = [
    "ControlMessage",
    "RESIZE_PREFIX",
    "TerminalSize",
    "TunnelInputDecoder",
    "encode_resize",
]
