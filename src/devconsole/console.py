"""Supervisor bootstrap for devconsole."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Sequence

from . import __version__
from .config import ConfigurationError, ConsoleSettings, get_settings
from .profiles import ProfileLoader, ProjectProfile, require_single_worker
from .supervisor import (
    DebugPortProxy,
    DebugPortState,
    ProcessSupervisor,
    ProxyBindError,
    SessionTunnel,
    TerminalDevice,
    TunnelBindError,
    WorkerLaunchError,
    WorkerLauncher,
    WorkerProcess,
)
from .watch import PathWatcher

logger = logging.getLogger(__name__)

EXIT_BIND_FAILURE = 1
EXIT_CONFIGURATION = 2


def configure_logging(level: str) -> None:
    """Configure root logging for the supervisor."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


@dataclass(slots=True)
class Console:
    """All supervisor-side components, wired together."""

    settings: ConsoleSettings
    profile: ProjectProfile
    terminal: TerminalDevice
    ports: DebugPortState
    tunnel: SessionTunnel
    proxy: DebugPortProxy
    supervisor: ProcessSupervisor

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        await self.tunnel.start()
        try:
            await self.proxy.start()
            with _signal_handler(loop, signal.SIGTERM, self.supervisor.request_shutdown):
                supervisor_task = asyncio.create_task(self.supervisor.run(), name="supervisor")
                failure = self.tunnel.failure
                await asyncio.wait({supervisor_task, failure}, return_when=asyncio.FIRST_COMPLETED)
                if failure.done() and not supervisor_task.done():
                    supervisor_task.cancel()
                    await asyncio.gather(supervisor_task, return_exceptions=True)
                    raise failure.result()
                return supervisor_task.result()
        finally:
            await self.proxy.close()
            await self.tunnel.close()


@contextlib.contextmanager
def _signal_handler(loop: asyncio.AbstractEventLoop, signum: int, callback: Callable[[], None]) -> Iterator[None]:
    loop.add_signal_handler(signum, callback)
    try:
        yield
    finally:
        loop.remove_signal_handler(signum)


def _log_worker_event(event: str, worker: WorkerProcess | None) -> None:
    if event == "worker_offline":
        logger.warning(
            "Worker is offline. Save a watched file or press any key to restart it.",
            extra={"pid": worker.pid if worker else None},
        )


def create_console(
    settings: ConsoleSettings | None = None,
    *,
    profile: ProjectProfile | None = None,
    terminal: TerminalDevice | None = None,
    launcher: WorkerLauncher | None = None,
) -> Console:
    """Validate configuration and build the supervisor components."""

    settings = settings or get_settings()
    profile = profile or ProfileLoader([settings.config_path]).load()
    require_single_worker(profile)

    terminal = terminal or TerminalDevice.from_stdio()
    terminal.ensure_raw_capable()

    ports = DebugPortState(base=settings.worker_debug_base_port)
    tunnel = SessionTunnel(settings.socket_path, terminal)
    proxy = DebugPortProxy(ports, host=settings.debug_host, port=settings.resolved_debug_proxy_port)

    watcher = PathWatcher(profile.resolve_watch_paths(Path.cwd())) if settings.watch_enabled else None

    async def wait_for_keypress() -> bytes:
        # The tunnel owns the terminal while a worker is attached.
        await tunnel.wait_idle()
        return await terminal.read_key()

    supervisor = ProcessSupervisor(
        launcher
        or WorkerLauncher(
            environment={
                "DEVCONSOLE_SOCKET": str(settings.socket_path),
                "DEVCONSOLE_CONFIG": str(settings.config_path),
                "DEVCONSOLE_LOG_LEVEL": settings.log_level,
                "DEVCONSOLE_WATCH": "1" if settings.watch_enabled else "0",
            }
        ),
        ports,
        proxy=proxy,
        wait_for_change=watcher.wait_for_change if watcher is not None else None,
        wait_for_keypress=wait_for_keypress,
        terminate_timeout=settings.terminate_timeout,
    )
    supervisor.register_observer(_log_worker_event)

    return Console(
        settings=settings,
        profile=profile,
        terminal=terminal,
        ports=ports,
        tunnel=tunnel,
        proxy=proxy,
        supervisor=supervisor,
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devconsole",
        description="Attach an interactive shell to a live, hot-reloading application.",
    )
    parser.add_argument("--socket", type=Path, help="Console endpoint path (DEVCONSOLE_SOCKET)")
    parser.add_argument("--config", type=Path, help="Project file (DEVCONSOLE_CONFIG)")
    parser.add_argument("--log-level", help="Logging level (DEVCONSOLE_LOG_LEVEL)")
    parser.add_argument("--no-watch", action="store_true", help="Disable file watching")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for running the console supervisor via CLI."""

    args = build_arg_parser().parse_args(argv)
    overrides: dict[str, object] = {}
    if args.socket is not None:
        overrides["DEVCONSOLE_SOCKET"] = args.socket
    if args.config is not None:
        overrides["DEVCONSOLE_CONFIG"] = args.config
    if args.log_level is not None:
        overrides["DEVCONSOLE_LOG_LEVEL"] = args.log_level
    if args.no_watch:
        overrides["DEVCONSOLE_WATCH"] = False

    try:
        settings = ConsoleSettings(**overrides) if overrides else ConsoleSettings()
        settings.normalize_paths()
    except ValueError as exc:
        print(f"\nInvalid devconsole settings: {exc}\n", file=sys.stderr)
        return EXIT_CONFIGURATION

    configure_logging(settings.log_level)

    try:
        console = create_console(settings)
        logger.info(
            "Launching devconsole",
            extra={
                "version": __version__,
                "socket": str(settings.socket_path),
                "debug_port": settings.resolved_debug_proxy_port,
            },
        )
        return asyncio.run(console.run())
    except ConfigurationError as exc:
        print(f"\n{exc}\n", file=sys.stderr)
        return EXIT_CONFIGURATION
    except (TunnelBindError, ProxyBindError) as exc:
        logger.critical("%s", exc)
        return EXIT_BIND_FAILURE
    except WorkerLaunchError as exc:
        logger.critical("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
