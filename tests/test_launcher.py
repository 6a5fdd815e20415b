from __future__ import annotations

import asyncio
import sys
import textwrap
from pathlib import Path

import pytest

from devconsole.supervisor import WorkerLaunchError, WorkerLauncher
from devconsole.supervisor.utils import worker_environment


def test_worker_environment_strips_stale_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVCONSOLE_CONTROL_FD", "99")
    monkeypatch.setenv("DEVCONSOLE_WORKER_DEBUG_PORT", "2999")
    monkeypatch.setenv("DEVCONSOLE_SOCKET", "/tmp/console.sock")

    env = worker_environment({"EXTRA": "1"})

    assert "DEVCONSOLE_CONTROL_FD" not in env
    assert "DEVCONSOLE_WORKER_DEBUG_PORT" not in env
    assert env["DEVCONSOLE_SOCKET"] == "/tmp/console.sock"
    assert env["EXTRA"] == "1"


def test_launcher_builds_module_command(tmp_path: Path) -> None:
    launcher = WorkerLauncher(executable=tmp_path / "python", args=["-X", "dev"])

    assert launcher.command() == [str(tmp_path / "python"), "-m", "devconsole.worker", "-X", "dev"]


def test_launcher_passes_control_pipe_and_port(tmp_path: Path) -> None:
    (tmp_path / "fake_worker.py").write_text(
        textwrap.dedent(
            """
            import os

            fd = int(os.environ["DEVCONSOLE_CONTROL_FD"])
            port = os.environ["DEVCONSOLE_WORKER_DEBUG_PORT"]
            os.write(fd, f"{port}\\n".encode())
            os.write(fd, b"reload\\n")
            """
        ),
        encoding="utf-8",
    )

    async def scenario() -> tuple[list[bytes], int]:
        launcher = WorkerLauncher(module="fake_worker", cwd=tmp_path)
        worker = await launcher.launch(2507)
        assert worker.control is not None
        lines = [await worker.control.readline(), await worker.control.readline()]
        returncode = await worker.handle.wait()
        assert await worker.control.readline() == b""
        worker.close_control()
        return lines, returncode

    lines, returncode = asyncio.run(scenario())

    assert lines == [b"2507\n", b"reload\n"]
    assert returncode == 0


def test_launcher_reports_missing_executable(tmp_path: Path) -> None:
    launcher = WorkerLauncher(executable=tmp_path / "missing-python")

    with pytest.raises(WorkerLaunchError):
        asyncio.run(launcher.launch(2501))


def test_default_executable_is_current_interpreter() -> None:
    assert WorkerLauncher().executable == Path(sys.executable)
