import asyncio

import pytest

from catalog_workflow.domain.states import JobType, JobStatus
from catalog_workflow.services.job_queue import InMemoryJobQueue
from catalog_workflow.worker.processor import BackgroundJobProcessor

from helpers import RecordingTracker


class CountingHandler:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0

    async def __call__(self, job):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"attempt {self.calls} failed")
        return {"attempts": self.calls}


async def run_until_empty(queue, processor, max_jobs=20):
    processed = 0
    while queue.pending_count and processed < max_jobs:
        job = await queue.dequeue(timeout=0.1)
        if job is not None:
            await processor.process_job(job)
            processed += 1
    return processed


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def tracker():
    return RecordingTracker()


async def test_success_completes_job_and_reports_once(queue, tracker):
    handler = CountingHandler()
    processor = BackgroundJobProcessor(queue, tracker, {JobType.COMPLIANCE_UPDATE: handler})
    job_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product")

    await run_until_empty(queue, processor)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"attempts": 1}
    assert job.completed_at is not None
    assert tracker.outcomes == [(job_id, JobStatus.COMPLETED, None)]


async def test_failing_job_runs_at_most_max_retries_times(queue, tracker):
    handler = CountingHandler(failures=100)
    processor = BackgroundJobProcessor(queue, tracker, {JobType.COMPLIANCE_UPDATE: handler})
    first_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product", {"k": "v"}, "bob")

    await run_until_empty(queue, processor)

    assert handler.calls == 3
    history = await queue.history()
    assert len(history) == 3
    assert all(j.status == JobStatus.FAILED for j in history)

    # Each re-enqueued entry points at the one it replaces
    by_id = {j.id: j for j in history}
    last = history[0]
    chain = [last.id]
    while by_id[chain[-1]].retry_of is not None:
        chain.append(by_id[chain[-1]].retry_of)
    assert chain[-1] == first_id
    assert len(chain) == 3

    assert last.parameters == {"k": "v"}
    assert last.created_by == "bob"
    assert last.retry_count == 3
    assert "RuntimeError" in last.error_message

    # Only the final attempt is reported
    assert tracker.outcomes == [(last.id, JobStatus.FAILED, last.error_message)]


async def test_retry_that_succeeds_reports_completion_only(queue, tracker):
    handler = CountingHandler(failures=1)
    processor = BackgroundJobProcessor(queue, tracker, {JobType.COMPLIANCE_UPDATE: handler})
    first_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product")

    await run_until_empty(queue, processor)

    first = await queue.get_job(first_id)
    assert first.status == JobStatus.FAILED
    assert "retrying" in first.error_message

    history = await queue.history()
    assert history[0].status == JobStatus.COMPLETED
    assert history[0].retry_of == first_id
    assert [status for _, status, _ in tracker.outcomes] == [JobStatus.COMPLETED]


async def test_retries_keep_workflow_links(queue, tracker):
    from uuid import uuid4

    workflow_job_id, catalog_product_id = uuid4(), uuid4()
    processor = BackgroundJobProcessor(queue, tracker, {JobType.LOCALE_FINANCIALS: CountingHandler(failures=1)})
    await queue.enqueue(
        JobType.LOCALE_FINANCIALS, "p1", "Product",
        workflow_job_id=workflow_job_id, catalog_product_id=catalog_product_id
    )

    await run_until_empty(queue, processor)

    retried = (await queue.history())[0]
    assert retried.workflow_job_id == workflow_job_id
    assert retried.catalog_product_id == catalog_product_id


async def test_unsupported_job_type_consumes_retries(queue, tracker):
    processor = BackgroundJobProcessor(queue, tracker, {})
    await queue.enqueue(JobType.CATALOG_RECALCULATION, "c1", "Catalog", max_retries=2)

    await run_until_empty(queue, processor)

    history = await queue.history()
    assert len(history) == 2
    assert "UnsupportedJobTypeError" in history[0].error_message
    assert tracker.outcomes[0][1] == JobStatus.FAILED


async def test_backoff_delays_the_retry(queue, tracker):
    processor = BackgroundJobProcessor(
        queue, tracker, {JobType.COMPLIANCE_UPDATE: CountingHandler(failures=1)}, retry_base_delay=0.05
    )
    await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product")

    job = await queue.dequeue(timeout=1)
    await processor.process_job(job)
    assert queue.pending_count == 0

    async def retry_queued():
        return queue.pending_count == 1

    await wait_for(retry_queued)
    await processor.stop()


async def test_worker_loop_keeps_going_after_failures(queue, tracker):
    handlers = {
        JobType.COMPLIANCE_UPDATE: CountingHandler(failures=100),
        JobType.CATALOG_RECALCULATION: CountingHandler(),
    }
    processor = BackgroundJobProcessor(queue, tracker, handlers, poll_interval=0.02)
    await processor.start()

    await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product", max_retries=1)
    good_id = await queue.enqueue(JobType.CATALOG_RECALCULATION, "c1", "Catalog")

    async def good_done():
        return (await queue.get_job(good_id)).status == JobStatus.COMPLETED

    await wait_for(good_done)
    await processor.stop()

    assert not processor.running
    statuses = sorted(status for _, status, _ in tracker.outcomes)
    assert statuses == sorted([JobStatus.FAILED, JobStatus.COMPLETED])


class FlakyQueue(InMemoryJobQueue):
    def __init__(self):
        super().__init__()
        self.broken = True

    async def dequeue(self, timeout=None):
        if self.broken:
            self.broken = False
            raise ConnectionError("queue backend unavailable")
        return await super().dequeue(timeout)


async def test_loop_pauses_and_resumes_after_loop_error(tracker):
    queue = FlakyQueue()
    processor = BackgroundJobProcessor(
        queue, tracker, {JobType.COMPLIANCE_UPDATE: CountingHandler()}, poll_interval=0.02, error_pause_seconds=0.02
    )
    job_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product")
    await processor.start()

    async def done():
        return (await queue.get_job(job_id)).status == JobStatus.COMPLETED

    await wait_for(done)
    await processor.stop()
    assert not queue.broken


async def test_stop_lets_in_flight_job_finish(queue, tracker):
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(job):
        started.set()
        await release.wait()
        return {"done": True}

    processor = BackgroundJobProcessor(queue, tracker, {JobType.COMPLIANCE_UPDATE: slow}, poll_interval=0.02)
    job_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product")
    await processor.start()
    await asyncio.wait_for(started.wait(), timeout=1)

    stopping = asyncio.create_task(processor.stop())
    await asyncio.sleep(0.05)
    assert not stopping.done()

    release.set()
    await asyncio.wait_for(stopping, timeout=1)
    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED
