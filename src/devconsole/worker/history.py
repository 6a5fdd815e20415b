"""Persistent REPL history."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class HistoryLog:
    """Chronological input history stored as a JSON array of strings."""

    def __init__(self, path: Optional[Path], *, limit: int = 500) -> None:
        self.limit = max(1, int(limit or 1))
        self.path = Path(path).expanduser() if path else None
        self.entries: List[str] = []

    def load(self) -> List[str]:
        """Read the history file; a missing or malformed file yields no entries."""

        self.entries = []
        if not self.path:
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No history file at %s", self.path)
            return []
        except (OSError, ValueError) as exc:
            logger.debug("Failed to load history file %s: %s", self.path, exc)
            return []
        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            logger.debug("Ignoring history file %s: not a list of strings", self.path)
            return []
        self.entries = list(data)
        return self.snapshot()

    def append(self, line: str) -> None:
        if not line.strip():
            return
        if self.entries and self.entries[-1] == line:
            return
        self.entries.append(line)
        if len(self.entries) > self.limit:
            self.entries = self.entries[-self.limit :]

    def extend(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.append(line)

    def save(self) -> bool:
        if not self.path:
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.entries), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write history file %s: %s", self.path, exc)
            return False
        return True

    def snapshot(self) -> List[str]:
        return list(self.entries)


__all__ = ["HistoryLog"]
