"""Storage abstractions for Relay MCP."""

from .journal import JOURNAL_COLLECTION, JobJournal, JournalUnavailableError, record_safely
from .models import EVENT_TYPES, JournalEvent

__all__ = [
    "EVENT_TYPES",
    "JOURNAL_COLLECTION",
    "JobJournal",
    "JournalEvent",
    "JournalUnavailableError",
    "record_safely",
]
