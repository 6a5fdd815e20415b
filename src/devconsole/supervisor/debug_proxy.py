"""Stable debugger endpoint forwarding to the current worker."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from .process import DebugPortState

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 65536


class ProxyBindError(RuntimeError):
    """Raised when the stable debugger port cannot be bound."""


class ProxyPairState(str, Enum):
    CONNECTING = "connecting"
    FORWARDING = "forwarding"
    CLOSED = "closed"


@dataclass(eq=False, slots=True)
class ProxyPair:
    """A debugger client linked to the worker's debug port."""

    client: asyncio.StreamWriter
    target_port: int
    worker: asyncio.StreamWriter | None = None
    state: ProxyPairState = ProxyPairState.CONNECTING
    peer: str = field(default="")

    def close(self) -> None:
        if self.state is ProxyPairState.CLOSED:
            return
        self.state = ProxyPairState.CLOSED
        for writer in (self.client, self.worker):
            if writer is not None:
                writer.close()


class DebugPortProxy:
    """Listen on a fixed port and splice each client to the worker's debug port.

    The worker's port changes on every respawn; the proxy looks it up in the
    shared :class:`DebugPortState` for every new client.
    """

    def __init__(
        self,
        ports: DebugPortState,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        worker_host: str = "127.0.0.1",
    ) -> None:
        self._ports = ports
        self._host = host
        self._port = port
        self._worker_host = worker_host
        self._server: asyncio.AbstractServer | None = None
        self._pairs: set[ProxyPair] = set()

    @property
    def port(self) -> int:
        """The bound port (resolved when constructed with port 0)."""

        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def pairs(self) -> frozenset[ProxyPair]:
        return frozenset(self._pairs)

    async def start(self) -> None:
        try:
            self._server = await asyncio.start_server(self._handle_client, self._host, self._port)
        except OSError as exc:
            raise ProxyBindError(f"Failed to listen for debuggers on {self._host}:{self._port}: {exc}") from exc
        logger.info("Debug proxy listening", extra={"host": self._host, "port": self.port})

    async def close(self) -> None:
        self.close_all()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    def close_all(self) -> int:
        """Force-close every tracked pair; return how many were open."""

        pairs = list(self._pairs)
        self._pairs.clear()
        for pair in pairs:
            pair.close()
        return len(pairs)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = str(writer.get_extra_info("peername"))
        target = self._ports.current
        if target is None:
            logger.debug("No worker debug port yet; dropping debugger connection", extra={"peer": peer})
            writer.close()
            return

        pair = ProxyPair(client=writer, target_port=target, peer=peer)
        self._pairs.add(pair)
        try:
            try:
                worker_reader, worker_writer = await asyncio.open_connection(self._worker_host, target)
            except ConnectionRefusedError:
                logger.debug("Worker debug port refused connection", extra={"port": target})
                return
            except OSError as exc:
                logger.warning("Failed to reach worker debug port %s: %s", target, exc)
                return

            if pair.state is ProxyPairState.CLOSED:
                # Torn down by close_all() while we were connecting.
                worker_writer.close()
                return
            pair.worker = worker_writer
            pair.state = ProxyPairState.FORWARDING
            logger.debug("Forwarding debugger session", extra={"peer": peer, "port": target})
            await asyncio.gather(
                self._pump(reader, worker_writer, pair),
                self._pump(worker_reader, writer, pair),
            )
        finally:
            pair.close()
            self._pairs.discard(pair)

    async def _pump(
        self,
        source: asyncio.StreamReader,
        destination: asyncio.StreamWriter,
        pair: ProxyPair,
    ) -> None:
        try:
            while pair.state is ProxyPairState.FORWARDING:
                chunk = await source.read(_CHUNK_SIZE)
                if not chunk:
                    break
                destination.write(chunk)
                await destination.drain()
        except ConnectionRefusedError:
            pass
        except OSError as exc:
            if pair.state is not ProxyPairState.CLOSED:
                logger.warning("Debugger session transport error: %s", exc, extra={"peer": pair.peer})
        finally:
            pair.close()
            self._pairs.discard(pair)


__all__ = ["DebugPortProxy", "ProxyBindError", "ProxyPair", "ProxyPairState"]
