import asyncio
from uuid import uuid4

from catalog_workflow.domain.states import JobType, JobStatus
from catalog_workflow.services.job_queue import InMemoryJobQueue


async def test_enqueue_creates_pending_job():
    queue = InMemoryJobQueue()
    job_id = await queue.enqueue(JobType.CURRENCY_REFRESH, "rates", "Currency", {"base": "USD"}, "alice")

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.parameters == {"base": "USD"}
    assert job.created_by == "alice"
    assert job.retry_count == 0
    assert job.max_retries == 3
    assert job.started_at is None
    assert queue.pending_count == 1


async def test_default_max_retries_comes_from_queue():
    queue = InMemoryJobQueue(default_max_retries=5)
    job_id = await queue.enqueue(JobType.CURRENCY_REFRESH, "rates", "Currency")
    other_id = await queue.enqueue(JobType.CURRENCY_REFRESH, "rates", "Currency", max_retries=1)

    assert (await queue.get_job(job_id)).max_retries == 5
    assert (await queue.get_job(other_id)).max_retries == 1


async def test_dequeue_is_fifo_and_marks_processing():
    queue = InMemoryJobQueue()
    first = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "a", "Product")
    second = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "b", "Product")

    job = await queue.dequeue(timeout=1)
    assert job.id == first
    assert job.status == JobStatus.PROCESSING
    assert job.started_at is not None

    job = await queue.dequeue(timeout=1)
    assert job.id == second
    assert queue.pending_count == 0


async def test_no_deduplication():
    queue = InMemoryJobQueue()
    a = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "same", "Product", {"x": 1})
    b = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "same", "Product", {"x": 1})

    assert a != b
    assert queue.pending_count == 2


async def test_dequeue_times_out_on_empty_queue():
    queue = InMemoryJobQueue()
    assert await queue.dequeue(timeout=0.05) is None


async def test_blocked_dequeue_wakes_on_enqueue():
    queue = InMemoryJobQueue()
    waiter = asyncio.create_task(queue.dequeue())
    await asyncio.sleep(0.01)
    assert not waiter.done()

    job_id = await queue.enqueue(JobType.CATALOG_RECALCULATION, "cat", "Catalog")
    job = await asyncio.wait_for(waiter, timeout=1)
    assert job.id == job_id


async def test_terminal_status_stamps_completion_and_never_regresses():
    queue = InMemoryJobQueue()
    job_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "a", "Product")
    await queue.dequeue(timeout=1)

    await queue.update_status(job_id, JobStatus.COMPLETED, result={"ok": True})
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"ok": True}
    assert job.completed_at is not None
    assert job.duration is not None and job.duration.total_seconds() >= 0

    await queue.update_status(job_id, JobStatus.PROCESSING)
    await queue.update_status(job_id, JobStatus.FAILED, error_message="late")
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.error_message is None


async def test_update_status_of_unknown_job_is_noop():
    queue = InMemoryJobQueue()
    await queue.update_status(uuid4(), JobStatus.COMPLETED)
    assert len(queue) == 0


async def test_cancelled_pending_job_is_never_handed_out():
    queue = InMemoryJobQueue()
    cancelled = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "a", "Product")
    kept = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "b", "Product")

    snapshot = await queue.cancel(cancelled)
    assert snapshot.status == JobStatus.CANCELLED

    assert await queue.dequeue(timeout=0.1) is None
    job = await queue.dequeue(timeout=0.1)
    assert job.id == kept
    assert (await queue.get_job(cancelled)).status == JobStatus.CANCELLED


async def test_cancel_leaves_processing_job_alone():
    queue = InMemoryJobQueue()
    job_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "a", "Product")
    await queue.dequeue(timeout=1)

    snapshot = await queue.cancel(job_id)
    assert snapshot.status == JobStatus.PROCESSING
    assert await queue.cancel(uuid4()) is None


async def test_history_and_entity_lookup_are_newest_first():
    queue = InMemoryJobQueue()
    ids = [await queue.enqueue(JobType.COMPLIANCE_UPDATE, "p1", "Product") for _ in range(3)]
    other = await queue.enqueue(JobType.CATALOG_RECALCULATION, "c1", "Catalog")

    history = await queue.history()
    assert [j.id for j in history] == [other] + ids[::-1]
    assert [j.id for j in await queue.history(limit=2)] == [other, ids[2]]

    by_entity = await queue.jobs_by_entity("p1", "Product")
    assert [j.id for j in by_entity] == ids[::-1]
    assert await queue.jobs_by_entity("p1", "Catalog") == []


async def test_returned_jobs_are_snapshots():
    queue = InMemoryJobQueue()
    job_id = await queue.enqueue(JobType.COMPLIANCE_UPDATE, "a", "Product")

    snapshot = await queue.get_job(job_id)
    snapshot.status = JobStatus.COMPLETED

    assert (await queue.get_job(job_id)).status == JobStatus.PENDING


async def test_concurrent_enqueues_are_all_kept():
    queue = InMemoryJobQueue()
    await queue.enqueue(JobType.COMPLIANCE_UPDATE, "existing", "Product")

    ids = await asyncio.gather(*(
        queue.enqueue(JobType.COMPLIANCE_UPDATE, f"p{i}", "Product") for i in range(100)
    ))

    assert len(set(ids)) == 100
    assert len(queue) == 101
    assert queue.pending_count == 101

    dequeued = [await queue.dequeue(timeout=0.1) for _ in range(101)]
    assert len({job.id for job in dequeued}) == 101
    assert await queue.dequeue(timeout=0.01) is None
