"""Project file loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from ..config import ConfigurationError
from .models import ProjectProfile

PROFILE_FILENAMES = ("devconsole.yml", "devconsole.yaml")


class ProfileLoadError(ConfigurationError):
    """Raised when the project file cannot be parsed or validated."""


class ProfileLoader:
    """Loads the project file from one or more locations on disk.

    Each search path may be a file or a directory holding ``devconsole.yml``.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def _candidate_files(self) -> list[Path]:
        files: list[Path] = []
        for base in self._search_paths:
            if base.is_file():
                files.append(base)
                continue
            for name in PROFILE_FILENAMES:
                candidate = base / name
                if candidate.is_file():
                    files.append(candidate)
        return files

    def load(self) -> ProjectProfile:
        """Load the project profile.

        Keys from later search paths override earlier ones. Without any file
        the defaults apply.
        """

        document: dict = {}
        errors: list[str] = []

        for path in self._candidate_files():
            try:
                loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:  # pragma: no cover - library type
                errors.append(f"Failed to parse YAML in {path}: {exc}")
                continue

            if loaded is None:
                continue
            if not isinstance(loaded, dict):
                errors.append(f"Project file {path} must contain a mapping")
                continue
            document.update(loaded)

        if errors:
            raise ProfileLoadError("; ".join(errors))

        try:
            return ProjectProfile.model_validate(document)
        except ValidationError as exc:
            raise ProfileLoadError(f"Project file validation error: {exc}") from exc


def load_profile(search_paths: Iterable[Path] | None = None) -> ProjectProfile:
    """Convenience wrapper for loading the profile from the provided paths."""

    loader = ProfileLoader(search_paths)
    return loader.load()


def require_single_worker(profile: ProjectProfile) -> None:
    """Refuse any worker count other than one."""

    if profile.cluster != 1:
        raise ConfigurationError(
            "devconsole requires your application to be configured with "
            f'"cluster" set to 1 (found {profile.cluster}). '
            "Please change your configuration and try again."
        )


__all__ = [
    "PROFILE_FILENAMES",
    "ProfileLoadError",
    "ProfileLoader",
    "ProjectProfile",
    "load_profile",
    "require_single_worker",
]
