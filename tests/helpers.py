from typing import Optional
from uuid import UUID

from catalog_workflow.domain.models import BackgroundJob
from catalog_workflow.domain.states import JobStatus
from catalog_workflow.engine import WorkflowEngine
from catalog_workflow.services.products import ProductSummary


class FakeProductLookup:
    def __init__(self):
        self.products: dict[UUID, ProductSummary] = {}
        self.calls = 0

    def add(self, product: ProductSummary) -> ProductSummary:
        self.products[product.id] = product
        return product

    async def get_product(self, product_id: UUID) -> Optional[ProductSummary]:
        self.calls += 1
        return self.products.get(product_id)


class RecordingTracker:
    """Stands in for WorkflowTracker when only the outcomes matter."""

    def __init__(self):
        self.outcomes: list[tuple[UUID, JobStatus, Optional[str]]] = []

    async def record_outcome(self, job: BackgroundJob, status: JobStatus, error: Optional[str] = None) -> None:
        self.outcomes.append((job.id, status, error))


async def drain(engine: WorkflowEngine, max_jobs: int = 100) -> int:
    """Runs queued jobs on the caller's task until the queue is empty."""
    processed = 0
    while engine.queue.pending_count and processed < max_jobs:
        job = await engine.queue.dequeue(timeout=0.1)
        if job is None:
            continue
        await engine.processor.process_job(job)
        processed += 1
    return processed
