"""In-memory FIFO job queue, one queue per context."""

from __future__ import annotations

import logging
import secrets
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable

from .models import Job, JobKind, JobStatus


logger = logging.getLogger(__name__)

_STATUS_ORDER = {
    JobStatus.PENDING: 0,
    JobStatus.RUNNING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
    JobStatus.CANCELLED: 2,
}


def _default_job_id(now: datetime) -> str:
    return f"job-{int(now.timestamp() * 1000)}-{secrets.token_hex(5)[:9]}"


class JobQueue:
    """Track jobs per context and enforce monotonic status transitions."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[datetime], str] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or _default_job_id
        self._queues: defaultdict[str, list[Job]] = defaultdict(list)

    def add_job(self, context_id: str, kind: JobKind, payload: str) -> Job:
        now = self._clock()
        job = Job(
            id=self._id_factory(now),
            context_id=context_id,
            kind=JobKind(kind),
            payload=payload,
            status=JobStatus.PENDING,
            created_at=now,
        )
        self._queues[context_id].append(job)
        logger.info(
            "Job queued",
            extra={"job_id": job.id, "context_id": context_id, "kind": job.kind.value},
        )
        return job

    def get_next_job(self, context_id: str) -> Job | None:
        for job in self._queues.get(context_id, ()):
            if job.status is JobStatus.PENDING:
                return job
        return None

    def get_job(self, job_id: str) -> Job | None:
        for queue in self._queues.values():
            for job in queue:
                if job.id == job_id:
                    return job
        return None

    def get_context_jobs(self, context_id: str) -> list[Job]:
        return list(self._queues.get(context_id, ()))

    def get_running_job(self, context_id: str) -> Job | None:
        for job in self._queues.get(context_id, ()):
            if job.status is JobStatus.RUNNING:
                return job
        return None

    def pending_count(self, context_id: str) -> int:
        return sum(1 for job in self._queues.get(context_id, ()) if job.status is JobStatus.PENDING)

    def contexts(self) -> list[str]:
        return [context_id for context_id, queue in self._queues.items() if queue]

    def update_status(self, job_id: str, status: JobStatus, error: str | None = None) -> bool:
        """Move a job forward; returns False when the job is unknown or the move would regress."""

        job = self.get_job(job_id)
        if job is None:
            logger.warning("Job not found for status update", extra={"job_id": job_id})
            return False

        status = JobStatus(status)
        if job.status.is_terminal:
            logger.warning(
                "Ignoring update of terminal job",
                extra={"job_id": job_id, "status": job.status.value, "requested": status.value},
            )
            return False
        if _STATUS_ORDER[status] < _STATUS_ORDER[job.status]:
            logger.warning(
                "Ignoring status regression",
                extra={"job_id": job_id, "status": job.status.value, "requested": status.value},
            )
            return False

        job.status = status
        if status is JobStatus.RUNNING:
            job.started_at = self._clock()
        elif status.is_terminal:
            job.completed_at = self._clock()
        if error:
            job.error = error
        logger.info("Job status updated", extra={"job_id": job_id, "status": status.value})
        return True

    def cancel(self, job_id: str) -> bool:
        job = self.get_job(job_id)
        if job is None:
            logger.warning("Job not found for cancellation", extra={"job_id": job_id})
            return False
        if job.status.is_terminal:
            logger.warning(
                "Cannot cancel terminal job",
                extra={"job_id": job_id, "status": job.status.value},
            )
            return False
        return self.update_status(job_id, JobStatus.CANCELLED)

    def cleanup(self, retention_hours: float = 24.0) -> int:
        """Drop terminal jobs that finished before the retention cutoff."""

        cutoff = self._clock() - timedelta(hours=retention_hours)
        removed = 0
        for context_id, queue in list(self._queues.items()):
            kept = [
                job
                for job in queue
                if not (
                    job.status.is_terminal
                    and job.completed_at is not None
                    and job.completed_at < cutoff
                )
            ]
            removed += len(queue) - len(kept)
            self._queues[context_id] = kept
        if removed:
            logger.info("Cleaned up finished jobs", extra={"removed": removed})
        return removed

    def summary(self, context_id: str) -> dict[str, int]:
        jobs = self._queues.get(context_id, [])
        counts = {"total": len(jobs)}
        for status in JobStatus:
            counts[status.value] = sum(1 for job in jobs if job.status is status)
        return counts

    def clear(self) -> None:
        self._queues.clear()


__all__ = ["JobQueue"]
