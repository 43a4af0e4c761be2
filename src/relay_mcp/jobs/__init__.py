"""Job queue primitives."""

from .models import Job, JobKind, JobStatus, TERMINAL_STATUSES
from .queue import JobQueue

__all__ = ["Job", "JobKind", "JobQueue", "JobStatus", "TERMINAL_STATUSES"]
