"""Debugger listener for the worker process."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class DebuggerUnavailableError(RuntimeError):
    """Raised when the debug adapter cannot be started."""


def start_debugger(port: int, *, host: str = "127.0.0.1") -> None:
    """Listen for debugger clients on *port*.

    The supervisor's debug proxy forwards its stable port here.
    """

    try:
        import debugpy
    except ImportError as exc:
        raise DebuggerUnavailableError(
            "debugpy package is not installed; install devconsole with the debug extra"
        ) from exc

    try:
        debugpy.listen((host, port))
    except (OSError, RuntimeError) as exc:
        raise DebuggerUnavailableError(f"Failed to listen for debuggers on {host}:{port}: {exc}") from exc
    logger.debug("Debugger listening", extra={"host": host, "port": port})


__all__ = ["DebuggerUnavailableError", "start_debugger"]
