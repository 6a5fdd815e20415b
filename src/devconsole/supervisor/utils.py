"""Utility helpers for worker launching."""

from __future__ import annotations

import os
from typing import Mapping

# Per-spawn values; a stale copy inherited from an enclosing console must not leak through.
_WORKER_VARS = {
    "DEVCONSOLE_CONTROL_FD",
    "DEVCONSOLE_WORKER_DEBUG_PORT",
}


def worker_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment for a freshly spawned worker."""

    env = dict(os.environ)
    for key in _WORKER_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env
