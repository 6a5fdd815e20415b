"""File watching for reload and crash-recovery triggers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterable

from watchfiles import Change, DefaultFilter, awatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """A single change reported by the watcher."""

    kind: str
    path: Path


class HiddenFileFilter(DefaultFilter):
    """watchfiles' default filter that also ignores dotfiles."""

    def __call__(self, change: Change, path: str) -> bool:
        if Path(path).name.startswith("."):
            return False
        return super().__call__(change, path)


class PathWatcher:
    """Emit :class:`WatchEvent` values for a set of watched paths."""

    def __init__(
        self,
        paths: Iterable[Path],
        *,
        debounce_ms: int = 1600,
        force_polling: bool | None = None,
        poll_delay_ms: int = 300,
    ) -> None:
        candidates = [Path(path) for path in paths]
        self._paths: list[Path] = [path for path in candidates if path.exists()]
        skipped = [str(path) for path in candidates if not path.exists()]
        if skipped:
            logger.debug("Skipping missing watch paths", extra={"paths": skipped})
        self._debounce_ms = debounce_ms
        self._force_polling = force_polling
        self._poll_delay_ms = poll_delay_ms

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    async def changes(self, stop_event: asyncio.Event | None = None) -> AsyncIterator[list[WatchEvent]]:
        """Yield batches of events until *stop_event* is set or the task is cancelled."""

        if not self._paths:
            # Nothing to watch; park until cancelled or stopped.
            if stop_event is None:
                await asyncio.Event().wait()
            else:
                await stop_event.wait()
            return
        async for changes in awatch(
            *self._paths,
            watch_filter=HiddenFileFilter(),
            debounce=self._debounce_ms,
            stop_event=stop_event,
            force_polling=self._force_polling,
            poll_delay_ms=self._poll_delay_ms,
        ):
            events = sorted(
                (WatchEvent(kind=change.name, path=Path(path)) for change, path in changes),
                key=lambda event: str(event.path),
            )
            if events:
                yield events

    async def wait_for_change(self) -> WatchEvent:
        """Return the first event observed on the watched paths."""

        stream = self.changes()
        try:
            async for events in stream:
                return events[0]
        finally:
            await stream.aclose()
        raise RuntimeError("watcher stopped before reporting a change")


__all__ = ["HiddenFileFilter", "PathWatcher", "WatchEvent"]
