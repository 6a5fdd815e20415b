"""Project file model and loader exports."""

from .loader import ProfileLoadError, ProfileLoader, load_profile, require_single_worker
from .models import DEFAULT_WATCH_PATHS, ProjectProfile

__all__ = [
    "DEFAULT_WATCH_PATHS",
    "ProfileLoadError",
    "ProfileLoader",
    "ProjectProfile",
    "load_profile",
    "require_single_worker",
]
