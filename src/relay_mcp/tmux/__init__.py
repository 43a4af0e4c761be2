"""tmux session control."""

from .controller import AgentStartError, PollTimeoutError, SessionController
from .driver import FakeTmuxDriver, TmuxDriver, TmuxDriverError, TmuxKey, TmuxNotFoundError, TmuxResult
from .output import CaptureSummary, PromptKind, clean_output, detect_blocking_prompt, summarize_capture

__all__ = [
    "AgentStartError",
    "CaptureSummary",
    "FakeTmuxDriver",
    "PollTimeoutError",
    "PromptKind",
    "SessionController",
    "TmuxDriver",
    "TmuxDriverError",
    "TmuxKey",
    "TmuxNotFoundError",
    "TmuxResult",
    "clean_output",
    "detect_blocking_prompt",
    "summarize_capture",
]
