"""Per-session job queue used for auto-continuation."""

from __future__ import annotations

import heapq
import itertools
from datetime import datetime
from enum import Enum

from loguru import logger
from pydantic import BaseModel, Field

from ..models import _utcnow, _uuid


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Job(BaseModel):
    id: str = Field(default_factory=_uuid)
    session_id: str
    title: str
    description: str = ""
    priority: int = 0
    status: JobStatus = JobStatus.PENDING
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def as_prompt(self) -> str:
        if not self.description:
            return self.title
        return f"{self.title}\n\n{self.description}"


class JobQueue:
    """Priority queue of jobs for one session.

    Higher priority first, then insertion order. Entries whose job is no
    longer pending are skipped lazily when popped.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._jobs: dict[str, Job] = {}
        self._heap: list[tuple[int, int, str]] = []
        self._counter = itertools.count()

    def add(self, title: str, description: str = "", priority: int = 0) -> Job:
        job = Job(
            session_id=self.session_id,
            title=title,
            description=description,
            priority=priority,
        )
        self._jobs[job.id] = job
        # heapq is a min-heap, so priority is stored negated
        heapq.heappush(self._heap, (-priority, next(self._counter), job.id))
        logger.debug(f"Queued job {job.id} ({title!r}, priority {priority})")
        return job

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def pending(self) -> list[Job]:
        return [
            self._jobs[job_id]
            for _, _, job_id in sorted(self._heap)
            if self._jobs[job_id].status == JobStatus.PENDING
        ]

    def has_pending(self) -> bool:
        return any(job.status == JobStatus.PENDING for job in self._jobs.values())

    def dequeue(self) -> Job | None:
        """Take the next pending job and mark it in progress."""
        while self._heap:
            _, _, job_id = heapq.heappop(self._heap)
            job = self._jobs[job_id]
            if job.status == JobStatus.PENDING:
                self._set_status(job, JobStatus.IN_PROGRESS)
                return job
        return None

    def complete(self, job_id: str) -> Job:
        return self._set_status(self._require(job_id), JobStatus.COMPLETED)

    def fail(self, job_id: str, error: str) -> Job:
        job = self._require(job_id)
        job.error = error
        return self._set_status(job, JobStatus.FAILED)

    def cancel(self, job_id: str) -> Job:
        return self._set_status(self._require(job_id), JobStatus.CANCELLED)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Job not found: {job_id}")
        return job

    @staticmethod
    def _set_status(job: Job, status: JobStatus) -> Job:
        job.status = status
        job.updated_at = _utcnow()
        return job
