"""Development console: a supervised, hot-reloadable REPL tunnelled to the terminal."""

__version__ = "0.1.0"

__all__ = ["__version__"]
