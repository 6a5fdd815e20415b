"""Configuration management for devconsole."""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LEGACY_DEBUG_PROXY_PORT = 5858
DEBUG_PROXY_PORT = 5678
WORKER_DEBUG_BASE_PORT = 2501


class ConfigurationError(RuntimeError):
    """Raised for fatal startup misconfiguration; the console exits non-zero."""


def default_debug_proxy_port(version_info: tuple[int, ...] = tuple(sys.version_info)) -> int:
    """Return the stable debugger port for the running interpreter.

    Interpreters older than 3.8 can only be debugged with legacy tooling, which
    listens on the historical port; everything newer follows the debugpy
    convention.
    """

    if tuple(version_info[:2]) < (3, 8):
        return LEGACY_DEBUG_PROXY_PORT
    return DEBUG_PROXY_PORT


class ConsoleSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    socket_path: Path = Field(default=Path(".devconsole.sock"), validation_alias="DEVCONSOLE_SOCKET")
    config_path: Path = Field(default=Path("devconsole.yml"), validation_alias="DEVCONSOLE_CONFIG")
    debug_host: str = Field(default="127.0.0.1", validation_alias="DEBUG_HOST")
    debug_proxy_port: int | None = Field(default=None, validation_alias="DEVCONSOLE_DEBUG_PORT")
    worker_debug_base_port: int = Field(
        default=WORKER_DEBUG_BASE_PORT, validation_alias="DEVCONSOLE_WORKER_DEBUG_BASE_PORT"
    )
    debugger_enabled: bool = Field(default=True, validation_alias="DEVCONSOLE_DEBUGGER")
    history_file: Path = Field(
        default=Path("~/.devconsole-history.json"), validation_alias="DEVCONSOLE_HISTORY_FILE"
    )
    history_size: int = Field(default=500, validation_alias="DEVCONSOLE_HISTORY_SIZE")
    history_save_on_reload: bool = Field(
        default=False, validation_alias="DEVCONSOLE_HISTORY_SAVE_ON_RELOAD"
    )
    log_level: str = Field(default="INFO", validation_alias="DEVCONSOLE_LOG_LEVEL")
    redraw_delay: float = Field(default=0.075, validation_alias="DEVCONSOLE_REDRAW_DELAY")
    connect_delay: float = Field(default=1.0, validation_alias="DEVCONSOLE_CONNECT_DELAY")
    terminate_timeout: float = Field(default=5.0, validation_alias="DEVCONSOLE_TERMINATE_TIMEOUT")
    watch_enabled: bool = Field(default=True, validation_alias="DEVCONSOLE_WATCH")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "DEVCONSOLE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("debug_proxy_port", "worker_debug_base_port")
    @classmethod
    def _validate_port(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 65535:
            raise ValueError("ports must be between 0 and 65535")
        return value

    @field_validator("history_size")
    @classmethod
    def _validate_history_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("DEVCONSOLE_HISTORY_SIZE must be >= 1")
        return value

    @field_validator("redraw_delay", "connect_delay", "terminate_timeout")
    @classmethod
    def _validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays and timeouts must not be negative")
        return value

    @property
    def resolved_debug_proxy_port(self) -> int:
        if self.debug_proxy_port is not None:
            return self.debug_proxy_port
        return default_debug_proxy_port()

    def normalize_paths(self) -> None:
        self.socket_path = self.socket_path.expanduser().absolute()
        self.config_path = self.config_path.expanduser().absolute()
        self.history_file = self.history_file.expanduser().absolute()


class WorkerSettings(ConsoleSettings):
    """Settings seen by a worker; the supervisor adds the per-spawn values."""

    worker_debug_port: int | None = Field(default=None, validation_alias="DEVCONSOLE_WORKER_DEBUG_PORT")
    control_fd: int | None = Field(default=None, validation_alias="DEVCONSOLE_CONTROL_FD")


@lru_cache(maxsize=1)
def get_settings() -> ConsoleSettings:
    """Return cached settings instance."""

    settings = ConsoleSettings()
    settings.normalize_paths()
    return settings


__all__ = [
    "ConfigurationError",
    "ConsoleSettings",
    "WorkerSettings",
    "default_debug_proxy_port",
    "get_settings",
]
