"""Project file model for the console."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_WATCH_PATHS = (Path("src"), Path("config"))


class ProjectProfile(BaseModel):
    """Describes the application the console hosts."""

    name: str | None = Field(
        default=None,
        description="Application identity shown in the prompt; defaults to the app's root package.",
    )
    app: str | None = Field(
        default=None,
        description="Import target 'package.module' or 'package.module:boot' loaded by the worker.",
    )
    cluster: int = Field(
        default=1,
        description="Number of application workers. The console only supports exactly one.",
    )
    watch: list[Path] = Field(
        default_factory=lambda: list(DEFAULT_WATCH_PATHS),
        description="Paths whose changes trigger a reload or a crash-recovery restart.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata, ignored by the console.",
    )

    @field_validator("name", "app")
    @classmethod
    def _normalize_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator("watch", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return list(DEFAULT_WATCH_PATHS)
        if isinstance(value, (str, Path)):
            return [value]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("watch must be a path or a sequence of paths")

    def resolve_watch_paths(self, base: Path) -> list[Path]:
        """Return watch paths made absolute against *base*."""

        return [path if path.is_absolute() else (base / path) for path in self.watch]


__all__ = ["DEFAULT_WATCH_PATHS", "ProjectProfile"]
