"""Worker end of the control channel."""

from __future__ import annotations

import logging
import os

from ..protocol import ControlMessage

logger = logging.getLogger(__name__)


class ControlChannel:
    """Send control messages to the supervisor over the inherited pipe."""

    def __init__(self, fd: int | None) -> None:
        self._fd = fd

    @property
    def connected(self) -> bool:
        return self._fd is not None

    def send(self, message: ControlMessage) -> bool:
        if self._fd is None:
            logger.warning("No supervisor control channel; dropping %s", message.value)
            return False
        try:
            os.write(self._fd, message.encode())
        except OSError as exc:
            logger.warning("Failed to send %s to the supervisor: %s", message.value, exc)
            return False
        return True

    def close(self) -> None:
        fd, self._fd = self._fd, None
        if fd is not None:
            os.close(fd)


__all__ = ["ControlChannel"]
