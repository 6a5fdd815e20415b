"""Worker-side components: REPL host, log/prompt coordination, history."""

from .coordinator import PromptAwareWriter, PromptState
from .history import HistoryLog
from .repl import ReplHost, build_prompt

__all__ = ["HistoryLog", "PromptAwareWriter", "PromptState", "ReplHost", "build_prompt"]
