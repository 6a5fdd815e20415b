"""Worker process entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

from ..config import ConfigurationError, WorkerSettings
from ..profiles import ProfileLoader, ProjectProfile
from ..protocol import ControlMessage
from ..watch import PathWatcher
from .application import load_application
from .control import ControlChannel
from .coordinator import PromptAwareWriter
from .debugger import DebuggerUnavailableError, start_debugger
from .history import HistoryLog
from .repl import ReplHost, build_prompt

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str, stream: PromptAwareWriter) -> None:
    """Route worker logging through the log/prompt coordinator."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        stream=stream,  # type: ignore[arg-type]
        force=True,
    )


async def watch_for_changes(
    watcher: PathWatcher,
    control: ControlChannel,
    *,
    repl: ReplHost | None = None,
    save_history: bool = False,
) -> None:
    """Ask the supervisor for a reload on the first batch of changes."""

    async for events in watcher.changes():
        for event in events:
            logger.debug("File %s was %s, reloading", event.path, event.kind)
        if save_history and repl is not None:
            repl.save_history()
        control.send(ControlMessage.RELOAD)
        # This worker is about to be replaced; one request is enough.
        return


async def run_worker(settings: WorkerSettings, profile: ProjectProfile, coordinator: PromptAwareWriter) -> int:
    coordinator.attach_loop(asyncio.get_running_loop())
    control = ControlChannel(settings.control_fd)

    application = load_application(profile.app, name=profile.name)

    if settings.debugger_enabled and settings.worker_debug_port is not None:
        try:
            start_debugger(settings.worker_debug_port)
        except DebuggerUnavailableError as exc:
            logger.warning("Running without a debugger: %s", exc)

    history = HistoryLog(settings.history_file, limit=settings.history_size)
    repl = ReplHost(
        settings.socket_path,
        namespace=application.namespace,
        prompt=build_prompt(os.getpid(), application.name),
        history=history,
        control=control,
        coordinator=coordinator,
    )

    watch_task: asyncio.Task[None] | None = None
    if settings.watch_enabled:
        watcher = PathWatcher(profile.resolve_watch_paths(Path.cwd()))
        watch_task = asyncio.create_task(
            watch_for_changes(
                watcher,
                control,
                repl=repl,
                save_history=settings.history_save_on_reload,
            )
        )

    try:
        await asyncio.sleep(settings.connect_delay)
        await repl.run()
    finally:
        if watch_task is not None:
            watch_task.cancel()
            await asyncio.gather(watch_task, return_exceptions=True)
        control.close()
    return 0


def main() -> int:
    settings = WorkerSettings()
    settings.normalize_paths()
    coordinator = PromptAwareWriter(sys.stderr, redraw_delay=settings.redraw_delay)
    configure_logging(settings.log_level, coordinator)

    try:
        profile = ProfileLoader([settings.config_path]).load()
        return asyncio.run(run_worker(settings, profile, coordinator))
    except ConfigurationError as exc:
        coordinator.close()
        print(f"\n{exc}\n", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 0


__all__ = ["configure_logging", "main", "run_worker", "watch_for_changes"]
