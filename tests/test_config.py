from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from devconsole.config import (
    DEBUG_PROXY_PORT,
    LEGACY_DEBUG_PROXY_PORT,
    ConsoleSettings,
    WorkerSettings,
    default_debug_proxy_port,
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for key in ("DEVCONSOLE_LOG_LEVEL", "DEVCONSOLE_DEBUG_PORT", "DEBUG_HOST", "DEVCONSOLE_SOCKET"):
        monkeypatch.delenv(key, raising=False)


def test_default_debug_proxy_port_follows_interpreter() -> None:
    assert default_debug_proxy_port((3, 7, 9)) == LEGACY_DEBUG_PROXY_PORT
    assert default_debug_proxy_port((3, 8, 0)) == DEBUG_PROXY_PORT
    assert default_debug_proxy_port((3, 12, 1)) == DEBUG_PROXY_PORT


def test_explicit_debug_port_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVCONSOLE_DEBUG_PORT", "9229")
    monkeypatch.setenv("DEBUG_HOST", "0.0.0.0")

    settings = ConsoleSettings()

    assert settings.resolved_debug_proxy_port == 9229
    assert settings.debug_host == "0.0.0.0"


def test_log_level_is_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVCONSOLE_LOG_LEVEL", " debug ")
    assert ConsoleSettings().log_level == "DEBUG"


def test_invalid_log_level_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVCONSOLE_LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        ConsoleSettings()


def test_normalize_paths_makes_absolute(tmp_path: Path) -> None:
    settings = ConsoleSettings(DEVCONSOLE_SOCKET="console.sock")
    settings.normalize_paths()

    assert settings.socket_path.is_absolute()
    assert settings.socket_path.name == "console.sock"
    assert settings.history_file.is_absolute()


def test_worker_settings_read_per_spawn_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVCONSOLE_CONTROL_FD", "7")
    monkeypatch.setenv("DEVCONSOLE_WORKER_DEBUG_PORT", "2503")

    settings = WorkerSettings()

    assert settings.control_fd == 7
    assert settings.worker_debug_port == 2503
