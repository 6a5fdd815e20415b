"""Keep asynchronous diagnostics from trampling the operator's input line.

The worker's log handlers write through :class:`PromptAwareWriter` instead of
straight to stderr. Each chunk first wipes the prompt and whatever the
operator has typed so far, is then written verbatim, and finally a redraw of
the prompt and the typed text is scheduled. Redraws are debounced because log
lines tend to arrive in bursts; a chunk arriving mid-redraw simply wipes and
reschedules again.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Protocol, TextIO


class PromptState(Protocol):
    """What the coordinator needs to know about the interactive prompt."""

    @property
    def prompt_text(self) -> str:
        ...

    def prompt_pending(self) -> bool:
        ...

    def buffer_text(self) -> str:
        ...


class PromptAwareWriter:
    """A text writer wrapping *sink* that erases and redraws the prompt."""

    def __init__(
        self,
        sink: TextIO,
        *,
        redraw_delay: float = 0.075,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._sink = sink
        self._redraw_delay = redraw_delay
        self._loop = loop
        self._prompt: PromptState | None = None
        self._redraw_handle: asyncio.TimerHandle | None = None
        self._lock = threading.RLock()
        self.closing = False

    @property
    def redraw_scheduled(self) -> bool:
        return self._redraw_handle is not None

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def attach(self, prompt: PromptState, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._prompt = prompt
        self.closing = False
        if loop is not None:
            self._loop = loop

    def detach(self) -> None:
        self._prompt = None
        self.cancel_redraw()

    def close(self) -> None:
        """Enter terminating mode: pass text through, never redraw."""

        self.closing = True
        self.cancel_redraw()

    def write(self, text: str) -> int:
        if not text:
            return 0
        with self._lock:
            prompt = self._prompt
            if self.closing or prompt is None:
                self._sink.write(text)
                self._sink.flush()
                return len(text)
            if prompt.prompt_pending():
                width = len(prompt.prompt_text) + len(prompt.buffer_text())
                self._sink.write("\r" + " " * width + "\r")
            self._sink.write(text)
            self._sink.flush()
        self._schedule_redraw()
        return len(text)

    def flush(self) -> None:
        self._sink.flush()

    def isatty(self) -> bool:
        isatty = getattr(self._sink, "isatty", None)
        return bool(isatty and isatty())

    def cancel_redraw(self) -> None:
        handle, self._redraw_handle = self._redraw_handle, None
        if handle is not None:
            handle.cancel()

    def _schedule_redraw(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._reschedule()
        else:
            loop.call_soon_threadsafe(self._reschedule)

    def _reschedule(self) -> None:
        self.cancel_redraw()
        if self.closing:
            return
        self._redraw_handle = self._loop.call_later(self._redraw_delay, self._redraw)

    def _redraw(self) -> None:
        self._redraw_handle = None
        prompt = self._prompt
        if self.closing or prompt is None or not prompt.prompt_pending():
            return
        with self._lock:
            self._sink.write(prompt.prompt_text + prompt.buffer_text())
            self._sink.flush()


__all__ = ["PromptAwareWriter", "PromptState"]
