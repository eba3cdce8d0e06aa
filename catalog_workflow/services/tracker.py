import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update, case, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_workflow.db.models import CatalogProduct, WorkflowJob
from catalog_workflow.domain.errors import WorkflowJobNotFoundError
from catalog_workflow.domain.models import BackgroundJob, utcnow
from catalog_workflow.domain.states import JobType, JobStatus, WorkflowStatus, WorkflowType
from catalog_workflow.api.v1.metrics import WORKFLOW_UPDATE_ERRORS, WORKFLOWS_FORCE_COMPLETED

logger = logging.getLogger(__name__)

# Catalog product status column per job kind
JOB_TYPE_AXIS = {
    JobType.LOCALE_FINANCIALS: "locale_workflow_status",
    JobType.MULTI_LANGUAGE_CONTENT: "content_workflow_status",
}

# Keyed by value; job_type is read back from the row as a plain string
WORKFLOW_TYPE_AXIS = {
    WorkflowType.LOCALE_FINANCIALS.value: "locale_workflow_status",
    WorkflowType.CONTENT_GENERATION.value: "content_workflow_status",
}

FORCE_COMPLETED_MESSAGE = "Force-completed: no terminal update received"

class WorkflowTracker:
    """
    Projects terminal job outcomes onto the persisted workflow row and the
    catalog product. The in-memory job history stays the source of truth;
    failures here are logged and left to the staleness sweep.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_outcome(self, job: BackgroundJob, status: JobStatus, error: Optional[str] = None) -> None:
        outcome = WorkflowStatus.COMPLETED if status == JobStatus.COMPLETED else WorkflowStatus.FAILED

        if job.workflow_job_id:
            try:
                await self._record_workflow_item(job.workflow_job_id, outcome, error)
            except Exception as e:
                WORKFLOW_UPDATE_ERRORS.labels(target="workflow_job").inc()
                logger.error(
                    "Error updating workflow job %s for job %s: %s", job.workflow_job_id, job.id, e, exc_info=True
                )

        if job.catalog_product_id:
            try:
                await self._record_catalog_product(job, outcome)
            except Exception as e:
                WORKFLOW_UPDATE_ERRORS.labels(target="catalog_product").inc()
                logger.error(
                    "Error updating catalog product %s for job %s: %s", job.catalog_product_id, job.id, e, exc_info=True
                )

    async def _record_workflow_item(self, workflow_job_id: UUID, outcome: WorkflowStatus, error: Optional[str]) -> None:
        completed_inc = 1 if outcome == WorkflowStatus.COMPLETED else 0
        failed_inc = 1 - completed_inc

        values = {
            "completed_items": WorkflowJob.completed_items + completed_inc,
            "failed_items": WorkflowJob.failed_items + failed_inc,
            # SET expressions see the pre-update row
            "progress_percentage": case(
                (WorkflowJob.total_items > 0, (WorkflowJob.completed_items + completed_inc) * 100 // WorkflowJob.total_items),
                else_=100,
            ),
        }
        if failed_inc and error:
            values["error_message"] = func.coalesce(WorkflowJob.error_message, error)

        async with self.session_factory() as session:
            async with session.begin():
                # Atomic increment; the guard keeps completed + failed <= total
                res = await session.execute(
                    update(WorkflowJob)
                    .where(
                        WorkflowJob.id == workflow_job_id,
                        WorkflowJob.completed_items + WorkflowJob.failed_items < WorkflowJob.total_items
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )

                if res.rowcount == 0:
                    logger.warning("Workflow job %s missing or already full, outcome %s dropped", workflow_job_id, outcome)
                    return

                # Close the row once every item is accounted for
                res = await session.execute(
                    update(WorkflowJob)
                    .where(
                        WorkflowJob.id == workflow_job_id,
                        WorkflowJob.completed_at.is_(None),
                        WorkflowJob.completed_items + WorkflowJob.failed_items >= WorkflowJob.total_items
                    )
                    .values(
                        status=case((WorkflowJob.failed_items > 0, WorkflowStatus.FAILED.value), else_=WorkflowStatus.COMPLETED.value),
                        completed_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )

        logger.info("Recorded %s item on workflow job %s", outcome, workflow_job_id)
        if res.rowcount:
            logger.info("Workflow job %s finished", workflow_job_id)

    async def _record_catalog_product(self, job: BackgroundJob, outcome: WorkflowStatus) -> None:
        axis = JOB_TYPE_AXIS.get(job.type)

        async with self.session_factory() as session:
            catalog_product = await session.get(CatalogProduct, job.catalog_product_id)
            if catalog_product is None:
                logger.warning("Catalog product %s not found for job %s", job.catalog_product_id, job.id)
                return

            now = utcnow()
            if axis:
                setattr(catalog_product, axis, outcome.value)
            catalog_product.workflow_completed_at = now
            catalog_product.updated_at = now
            await session.commit()

        logger.info("Updated catalog product %s workflow status to %s", job.catalog_product_id, outcome)

    async def force_complete_stale_workflows(self, threshold_minutes: int = 5, limit: int = 100) -> int:
        """
        Closes workflow rows still running after `threshold_minutes`.
        Returns the number of rows closed.
        """
        now = utcnow()
        cutoff = now - timedelta(minutes=threshold_minutes)

        async with self.session_factory() as session:
            stmt = (
                select(WorkflowJob)
                .where(
                    WorkflowJob.status == WorkflowStatus.RUNNING.value,
                    WorkflowJob.completed_at.is_(None),
                    func.coalesce(WorkflowJob.started_at, WorkflowJob.created_at) < cutoff
                )
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            stale = (await session.scalars(stmt)).all()

            if not stale:
                return 0

            for workflow_job in stale:
                await self._close_workflow(session, workflow_job, now)

            await session.commit()

        WORKFLOWS_FORCE_COMPLETED.inc(len(stale))
        logger.info("Force-completed %d stale workflow jobs (threshold %d min)", len(stale), threshold_minutes)
        return len(stale)

    async def force_complete_workflow(self, workflow_job_id: UUID) -> WorkflowJob:
        async with self.session_factory() as session:
            stmt = (
                select(WorkflowJob)
                .where(WorkflowJob.id == workflow_job_id, WorkflowJob.status == WorkflowStatus.RUNNING.value)
                .with_for_update()
            )
            workflow_job = await session.scalar(stmt)
            if workflow_job is None:
                raise WorkflowJobNotFoundError(workflow_job_id)

            await self._close_workflow(session, workflow_job, utcnow())
            await session.commit()

        WORKFLOWS_FORCE_COMPLETED.inc()
        logger.info("Force-completed workflow job %s", workflow_job_id)
        return workflow_job

    async def _close_workflow(self, session: AsyncSession, workflow_job: WorkflowJob, now: datetime) -> None:
        # Outstanding items are assumed done; recorded failures are kept
        failed = workflow_job.failed_items or 0
        total = workflow_job.total_items or 0
        completed = max(total - failed, workflow_job.completed_items or 0)

        terminal = WorkflowStatus.FAILED if failed else WorkflowStatus.COMPLETED

        workflow_job.completed_items = completed
        workflow_job.progress_percentage = 100
        workflow_job.status = terminal.value
        workflow_job.completed_at = now
        workflow_job.error_message = workflow_job.error_message or FORCE_COMPLETED_MESSAGE

        if not workflow_job.catalog_product_id:
            return

        axis = WORKFLOW_TYPE_AXIS.get(str(workflow_job.job_type))
        catalog_product = await session.get(CatalogProduct, workflow_job.catalog_product_id)
        if catalog_product is None or axis is None:
            return

        if getattr(catalog_product, axis) == WorkflowStatus.IN_PROGRESS:
            setattr(catalog_product, axis, terminal.value)
            catalog_product.workflow_completed_at = now
            catalog_product.updated_at = now
