"""Data models for the job journal."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


JOB_ADDED = "job_added"
JOB_STARTED = "job_started"
JOB_COMPLETED = "job_completed"
JOB_FAILED = "job_failed"
JOB_CANCELLED = "job_cancelled"
PROMPT_DETECTED = "prompt_detected"
RESPONSE_SENT = "response_sent"
SESSION_RECOVERED = "session_recovered"
SESSION_TIMED_OUT = "session_timed_out"
SESSION_DROPPED = "session_dropped"

EVENT_TYPES = frozenset(
    {
        JOB_ADDED,
        JOB_STARTED,
        JOB_COMPLETED,
        JOB_FAILED,
        JOB_CANCELLED,
        PROMPT_DETECTED,
        RESPONSE_SENT,
        SESSION_RECOVERED,
        SESSION_TIMED_OUT,
        SESSION_DROPPED,
    }
)


@dataclass(slots=True)
class JournalEvent:
    """Represents a stored journal event."""

    id: str
    context_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime

    @property
    def job_id(self) -> str | None:
        value = self.metadata.get("job_id")
        return str(value) if value else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "context_id": self.context_id,
            "event_type": self.event_type,
            "document": self.document,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


__all__ = [
    "EVENT_TYPES",
    "JOB_ADDED",
    "JOB_CANCELLED",
    "JOB_COMPLETED",
    "JOB_FAILED",
    "JOB_STARTED",
    "JournalEvent",
    "PROMPT_DETECTED",
    "RESPONSE_SENT",
    "SESSION_DROPPED",
    "SESSION_RECOVERED",
    "SESSION_TIMED_OUT",
]
