from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable

from devconsole.protocol import TerminalSize, encode_resize
from devconsole.supervisor import SessionTunnel, TerminalModeError


class FakeTerminal:
    """A terminal whose keyboard is the read end of a pipe."""

    def __init__(self, *, fail_raw: bool = False) -> None:
        self.input_fd, self.keys = os.pipe()
        self.output = bytearray()
        self.raw_entered = 0
        self.restored = 0
        self.fail_raw = fail_raw

    def enter_raw(self) -> None:
        if self.fail_raw:
            raise TerminalModeError("raw mode unsupported")
        self.raw_entered += 1

    def restore(self) -> None:
        self.restored += 1

    def size(self) -> TerminalSize:
        return TerminalSize(rows=30, columns=100)

    def read(self, size: int = 1024) -> bytes:
        return os.read(self.input_fd, size)

    def write(self, data: bytes) -> None:
        self.output.extend(data)

    def type(self, data: bytes) -> None:
        os.write(self.keys, data)

    def close(self) -> None:
        os.close(self.input_fd)
        os.close(self.keys)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)


def test_tunnel_relays_bytes_both_ways(tmp_path: Path) -> None:
    path = tmp_path / "console.sock"
    path.write_text("left over from a previous run", encoding="utf-8")
    terminal = FakeTerminal()

    async def scenario() -> None:
        tunnel = SessionTunnel(path, terminal, watch_resize=False)
        await tunnel.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(path))
            geometry = encode_resize(30, 100)
            assert await asyncio.wait_for(reader.readexactly(len(geometry)), timeout=2) == geometry

            await wait_until(lambda: tunnel.active)
            assert terminal.raw_entered == 1

            terminal.type(b"1 + 1\r")
            assert await asyncio.wait_for(reader.readexactly(6), timeout=2) == b"1 + 1\r"

            writer.write(b"2\r\n")
            await writer.drain()
            await wait_until(lambda: bytes(terminal.output) == b"2\r\n")

            writer.close()
            await wait_until(lambda: not tunnel.active)
            assert terminal.restored == 1
        finally:
            await tunnel.close()

    try:
        asyncio.run(scenario())
    finally:
        terminal.close()

    assert not path.exists()


def test_tunnel_refuses_second_connection(tmp_path: Path) -> None:
    path = tmp_path / "console.sock"
    terminal = FakeTerminal()

    async def scenario() -> None:
        tunnel = SessionTunnel(path, terminal, watch_resize=False)
        await tunnel.start()
        try:
            _, first = await asyncio.open_unix_connection(str(path))
            await wait_until(lambda: tunnel.active)
            session = tunnel.session

            second_reader, second = await asyncio.open_unix_connection(str(path))
            assert await asyncio.wait_for(second_reader.read(), timeout=2) == b""
            second.close()

            assert tunnel.session is session
            first.close()
            await wait_until(lambda: not tunnel.active)
            await asyncio.wait_for(tunnel.wait_idle(), timeout=1)
        finally:
            await tunnel.close()

    try:
        asyncio.run(scenario())
    finally:
        terminal.close()


def test_raw_mode_failure_is_reported(tmp_path: Path) -> None:
    path = tmp_path / "console.sock"
    terminal = FakeTerminal(fail_raw=True)

    async def scenario() -> BaseException:
        tunnel = SessionTunnel(path, terminal, watch_resize=False)
        await tunnel.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(path))
            error = await asyncio.wait_for(tunnel.failure, timeout=2)
            assert await asyncio.wait_for(reader.read(), timeout=2) == b""
            writer.close()
            assert not tunnel.active
            return error
        finally:
            await tunnel.close()

    try:
        error = asyncio.run(scenario())
    finally:
        terminal.close()

    assert isinstance(error, TerminalModeError)
