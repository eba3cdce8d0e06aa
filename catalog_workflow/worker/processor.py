import asyncio
import logging
from typing import Optional

from catalog_workflow.api.v1.metrics import JOB_FAILURES, JOB_COMPLETE_TOTAL, JOB_DURATION
from catalog_workflow.domain.errors import UnsupportedJobTypeError
from catalog_workflow.domain.models import BackgroundJob
from catalog_workflow.domain.retry import should_retry, calculate_retry_delay
from catalog_workflow.domain.states import JobType, JobStatus
from catalog_workflow.services.job_queue import InMemoryJobQueue
from catalog_workflow.services.tracker import WorkflowTracker
from catalog_workflow.worker.handlers import Handler

logger = logging.getLogger(__name__)

class BackgroundJobProcessor:
    """
    Single consumer of the in-process queue.

    Runs one job at a time. `stop()` is cooperative: the job in flight runs to
    completion and the loop exits before taking the next one.
    """

    def __init__(
        self,
        queue: InMemoryJobQueue,
        tracker: WorkflowTracker,
        handlers: dict[JobType, Handler],
        poll_interval: float = 1.0,
        error_pause_seconds: float = 5.0,
        retry_base_delay: float = 0.0,
        retry_max_delay: float = 300.0
    ):
        self.queue = queue
        self.tracker = tracker
        self.handlers = handlers
        self.poll_interval = poll_interval
        self.error_pause_seconds = error_pause_seconds
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._retry_tasks: set[asyncio.Task] = set()

    async def start(self):
        self.running = True
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("Background job processor started.")

    async def stop(self):
        self.running = False
        self._shutdown_event.set()
        if self._task:
            await self._task
            self._task = None

        # Delayed retries that have not fired yet are dropped with the queue
        for task in list(self._retry_tasks):
            task.cancel()
        self._retry_tasks.clear()
        logger.info("Background job processor stopped.")

    async def run(self):
        self.running = True
        self._shutdown_event.clear()
        await self._loop()

    async def _loop(self):
        try:
            while self.running:
                try:
                    job = await self.queue.dequeue(timeout=self.poll_interval)
                    if job is None:
                        continue

                    await self.process_job(job)

                except Exception as e:
                    logger.exception("Error in background job processor loop: %s", e)
                    try:
                        await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.error_pause_seconds)
                    except asyncio.TimeoutError:
                        pass
        finally:
            logger.info("Background job processor loop exited")

    async def process_job(self, job: BackgroundJob) -> None:
        logger.info("Processing job %s of type %s (attempt %d)", job.id, job.type, job.retry_count + 1)

        try:
            handler = self.handlers.get(job.type)
            if handler is None:
                raise UnsupportedJobTypeError(job.type)

            result = await handler(job)

        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            logger.error("Job %s failed: %s", job.id, error_msg, exc_info=True)
            await self._handle_failure(job, error_msg)
            return

        await self.queue.update_status(job.id, JobStatus.COMPLETED, result=result)
        self._observe(job, "completed")
        logger.info("Job %s completed successfully", job.id)

        await self.tracker.record_outcome(job, JobStatus.COMPLETED)

    async def _handle_failure(self, job: BackgroundJob, error_msg: str) -> None:
        retry_count = job.retry_count + 1
        job.retry_count = retry_count

        if should_retry(retry_count, job.max_retries):
            JOB_FAILURES.labels(job_type=job.type, type="retryable").inc()

            # This entry is superseded; the workflow hears only about the last attempt
            await self.queue.update_status(
                job.id, JobStatus.FAILED, error_message=f"{error_msg} (retrying as attempt {retry_count + 1})"
            )
            self._observe(job, "retried")

            delay = calculate_retry_delay(retry_count, self.retry_base_delay, self.retry_max_delay)
            logger.warning(
                "Retrying job %s (%d/%d) in %.2fs", job.id, retry_count, job.max_retries, delay
            )

            if delay > 0:
                task = asyncio.create_task(self._enqueue_retry_later(job, retry_count, delay))
                self._retry_tasks.add(task)
                task.add_done_callback(self._retry_tasks.discard)
            else:
                await self._enqueue_retry(job, retry_count)
            return

        JOB_FAILURES.labels(job_type=job.type, type="final").inc()
        await self.queue.update_status(job.id, JobStatus.FAILED, error_message=error_msg)
        self._observe(job, "failed")
        logger.error("Job %s failed permanently after %d attempts", job.id, retry_count)

        await self.tracker.record_outcome(job, JobStatus.FAILED, error=error_msg)

    async def _enqueue_retry(self, job: BackgroundJob, retry_count: int):
        return await self.queue.enqueue(
            job.type,
            job.entity_id,
            job.entity_type,
            job.parameters,
            job.created_by,
            workflow_job_id=job.workflow_job_id,
            catalog_product_id=job.catalog_product_id,
            retry_count=retry_count,
            max_retries=job.max_retries,
            retry_of=job.id,
        )

    async def _enqueue_retry_later(self, job: BackgroundJob, retry_count: int, delay: float):
        await asyncio.sleep(delay)
        await self._enqueue_retry(job, retry_count)

    def _observe(self, job: BackgroundJob, result: str):
        JOB_COMPLETE_TOTAL.labels(job_type=job.type, result=result).inc()
        if job.started_at:
            # The dequeued object is the stored entry, so completed_at is set by now
            finished = job.completed_at or job.started_at
            JOB_DURATION.labels(job_type=job.type).observe((finished - job.started_at).total_seconds())
