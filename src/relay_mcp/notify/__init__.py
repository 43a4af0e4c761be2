"""Notification delivery and message formatting."""

from .channel import (
    DEFAULT_CHUNK_SIZE,
    NotificationChannel,
    NotificationError,
    OutboxChannel,
    OutboxMessage,
    add_split_indicators,
    neutralize_fences,
    post_safely,
    send_large_message,
    split_message,
    wrap_in_code_blocks,
)
from .formatting import (
    format_dsl_completed,
    format_dsl_guide,
    format_elapsed,
    format_job_completed,
    format_job_failed,
    format_job_started,
    format_mixed_char_error,
    format_prompt_help,
    format_queue_summary,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "NotificationChannel",
    "NotificationError",
    "OutboxChannel",
    "OutboxMessage",
    "add_split_indicators",
    "format_dsl_completed",
    "format_dsl_guide",
    "format_elapsed",
    "format_job_completed",
    "format_job_failed",
    "format_job_started",
    "format_mixed_char_error",
    "format_prompt_help",
    "format_queue_summary",
    "neutralize_fences",
    "post_safely",
    "send_large_message",
    "split_message",
    "wrap_in_code_blocks",
]
