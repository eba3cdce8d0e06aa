import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Any, Optional
from uuid import UUID

from catalog_workflow.domain.models import BackgroundJob, utcnow
from catalog_workflow.domain.states import JobType, JobStatus, TERMINAL_STATUSES
from catalog_workflow.api.v1.metrics import QUEUE_DEPTH, JOBS_ENQUEUED

logger = logging.getLogger(__name__)

class InMemoryJobQueue:
    """
    In-process FIFO of background jobs plus the id-indexed job history.

    Every enqueue releases exactly one permit on a counting semaphore and every
    dequeue consumes exactly one, so each signal corresponds to one queue entry.
    The deque and the history map are only touched while holding `_lock`.
    """

    def __init__(self, default_max_retries: int = 3):
        self.default_max_retries = default_max_retries
        self._pending: deque[BackgroundJob] = deque()
        self._jobs: dict[UUID, BackgroundJob] = {}
        self._lock = asyncio.Lock()
        self._signal = asyncio.Semaphore(0)

    async def enqueue(
        self,
        job_type: JobType,
        entity_id: str,
        entity_type: str,
        parameters: Optional[dict[str, Any]] = None,
        created_by: str = "system",
        workflow_job_id: Optional[UUID] = None,
        catalog_product_id: Optional[UUID] = None,
        retry_count: int = 0,
        max_retries: Optional[int] = None,
        retry_of: Optional[UUID] = None
    ) -> UUID:
        job = BackgroundJob(
            type=JobType(job_type),
            entity_id=str(entity_id),
            entity_type=entity_type,
            parameters=dict(parameters or {}),
            created_by=created_by,
            workflow_job_id=workflow_job_id,
            catalog_product_id=catalog_product_id,
            retry_count=retry_count,
            max_retries=max_retries if max_retries is not None else self.default_max_retries,
            retry_of=retry_of,
        )

        async with self._lock:
            self._pending.append(job)
            self._jobs[job.id] = job
            QUEUE_DEPTH.set(len(self._pending))

        JOBS_ENQUEUED.labels(job_type=job.type).inc()
        logger.info(
            "Enqueued job %s of type %s for %s %s",
            job.id, job.type, entity_type, entity_id
        )

        self._signal.release()
        return job.id

    async def dequeue(self, timeout: Optional[float] = None) -> Optional[BackgroundJob]:
        """
        Blocks until a job is available and marks it PROCESSING.

        Returns None when `timeout` elapses first, or when the entry taken was
        cancelled while still pending (its permit is consumed with it).
        """
        if timeout is None:
            await self._signal.acquire()
        else:
            try:
                await asyncio.wait_for(self._signal.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                return None

        async with self._lock:
            if not self._pending:
                return None
            job = self._pending.popleft()
            QUEUE_DEPTH.set(len(self._pending))

            if job.status != JobStatus.PENDING:
                logger.info("Skipping job %s dequeued in status %s", job.id, job.status)
                return None

            job.status = JobStatus.PROCESSING
            job.started_at = utcnow()
            return job

    async def update_status(
        self,
        job_id: UUID,
        status: JobStatus,
        result: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> None:
        status = JobStatus(status)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return

            if job.status in TERMINAL_STATUSES:
                logger.warning(
                    "Ignoring status change of job %s from terminal %s to %s",
                    job_id, job.status, status
                )
                return

            job.status = status
            job.result = result
            job.error_message = error_message

            if status in TERMINAL_STATUSES:
                job.completed_at = utcnow()

            logger.info("Updated job %s status to %s", job_id, status)

    async def cancel(self, job_id: UUID) -> Optional[BackgroundJob]:
        """Cancels a job that has not been picked up yet. Returns a snapshot."""
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None

            if job.status == JobStatus.PENDING:
                job.status = JobStatus.CANCELLED
                job.completed_at = utcnow()
                logger.info("Cancelled job %s", job_id)

            return replace(job)

    async def get_job(self, job_id: UUID) -> Optional[BackgroundJob]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    async def jobs_by_entity(self, entity_id: str, entity_type: str) -> list[BackgroundJob]:
        async with self._lock:
            jobs = [
                replace(j) for j in reversed(self._jobs.values())
                if j.entity_id == str(entity_id) and j.entity_type == entity_type
            ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    async def history(self, limit: int = 50) -> list[BackgroundJob]:
        async with self._lock:
            jobs = [replace(j) for j in reversed(self._jobs.values())]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        logger.debug("Job history requested: %d jobs in storage", len(jobs))
        return jobs[:limit]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def __len__(self) -> int:
        return len(self._jobs)
