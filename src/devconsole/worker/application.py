"""Loading the hosted application into the worker."""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from ..config import ConfigurationError


class ApplicationLoadError(ConfigurationError):
    """Raised when the configured application cannot be imported or booted."""


@dataclass(slots=True)
class ApplicationHandle:
    """The booted application as the REPL sees it."""

    name: str
    namespace: dict[str, Any] = field(default_factory=dict)


def load_application(target: str | None, *, name: str | None = None) -> ApplicationHandle:
    """Import *target* (``package.module`` or ``package.module:attr``) and boot it.

    A callable ``attr`` is treated as a boot hook: a mapping it returns is
    merged into the REPL namespace, any other non-``None`` result is exposed
    as ``app``. A non-callable ``attr`` is exposed as ``app`` directly.
    """

    namespace: dict[str, Any] = {"__name__": "__console__", "__doc__": None}
    if not target:
        return ApplicationHandle(name=name or Path.cwd().name, namespace=namespace)

    module_name, _, attribute = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ApplicationLoadError(f"Cannot import application module '{module_name}': {exc}") from exc

    namespace["app"] = module
    if attribute:
        try:
            value = getattr(module, attribute)
        except AttributeError as exc:
            raise ApplicationLoadError(f"'{module_name}' has no attribute '{attribute}'") from exc
        if callable(value):
            result = value()
            if isinstance(result, Mapping):
                namespace.update(result)
            elif result is not None:
                namespace["app"] = result
        else:
            namespace["app"] = value

    identity = name or module_name.split(".", 1)[0]
    return ApplicationHandle(name=identity, namespace=namespace)


__all__ = ["ApplicationHandle", "ApplicationLoadError", "load_application"]
