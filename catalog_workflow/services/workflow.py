import logging
from datetime import timedelta
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_workflow.db.models import CatalogProduct, Locale, WorkflowJob
from catalog_workflow.domain.errors import (
    CatalogProductNotFoundError, CatalogNotFoundError, LocaleNotFoundError, InvalidWorkflowRequestError,
)
from catalog_workflow.domain.models import (
    WorkflowHandle, WorkflowProgress, LocaleFinancialJobParameters, MultiLanguageContentJobParameters, utcnow,
)
from catalog_workflow.domain.states import JobType, WorkflowStatus, WorkflowType
from catalog_workflow.services.job_queue import InMemoryJobQueue
from catalog_workflow.services.products import ProductLookup

logger = logging.getLogger(__name__)

ENTITY_TYPE_PRODUCT = "Product"

# Axis status -> contribution to overall progress. Keyed by value: rows carry plain strings
STATUS_PROGRESS = {
    WorkflowStatus.COMPLETED.value: 100.0,
    WorkflowStatus.IN_PROGRESS.value: 50.0,
}

class WorkflowOrchestrator:
    """
    Entry point for request handlers. Turns one user action into a persisted
    workflow row plus one queued job per unit of work, then returns without
    waiting for the worker.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: InMemoryJobQueue,
        products: Optional[ProductLookup] = None,
        seconds_per_item: int = 30
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.products = products
        self.seconds_per_item = seconds_per_item

    async def start_locale_financials(
        self,
        catalog_product_id: UUID,
        locale_ids: Sequence[UUID],
        initiated_by: Optional[str] = None,
        config: Optional[dict[str, Any]] = None
    ) -> WorkflowHandle:
        locale_ids = list(dict.fromkeys(locale_ids))
        if not locale_ids:
            raise InvalidWorkflowRequestError("At least one locale is required")
        initiated_by = initiated_by or "system"

        logger.info("Starting locale financial calculations for catalog product %s", catalog_product_id)

        async with self.session_factory() as session:
            catalog_product = await self._get_catalog_product(session, catalog_product_id)
            locales = await self._resolve_locales(session, Locale.id.in_(locale_ids), locale_ids, key="id")

            workflow_job = await self._create_workflow_job(
                session,
                name=f"Locale Financials - {catalog_product.catalog.name}",
                workflow_type=WorkflowType.LOCALE_FINANCIALS,
                catalog_product=catalog_product,
                locales=locales,
                total_items=len(locales),
                created_by=initiated_by,
                config=config,
            )

            now = utcnow()
            catalog_product.locale_workflow_status = WorkflowStatus.IN_PROGRESS.value
            catalog_product.workflow_initiated_by = initiated_by
            catalog_product.workflow_initiated_at = now
            catalog_product.selected_locales = [str(locale.id) for locale in locales]
            catalog_product.updated_at = now

            await session.commit()

            product_id = catalog_product.product_id
            catalog_id = catalog_product.catalog_id
            workflow_job_id = workflow_job.id

        # Rows are committed before the worker can see any job
        job_ids = []
        for locale in locales:
            params = LocaleFinancialJobParameters(product_id=product_id, catalog_id=catalog_id, locale_ids=[locale.id])
            job_ids.append(await self.queue.enqueue(
                JobType.LOCALE_FINANCIALS,
                str(product_id),
                ENTITY_TYPE_PRODUCT,
                params.model_dump(mode="json"),
                initiated_by,
                workflow_job_id=workflow_job_id,
                catalog_product_id=catalog_product_id,
            ))

        logger.info(
            "Enqueued %d locale financial jobs for workflow %s", len(job_ids), workflow_job_id
        )

        return WorkflowHandle(
            workflow_job_id=workflow_job_id,
            status=WorkflowStatus.RUNNING.value,
            estimated_completion=self._estimate(len(job_ids)),
            message=f"Started locale financial processing for {len(locales)} locales",
            job_ids=job_ids,
        )

    async def start_content_generation(
        self,
        catalog_product_id: UUID,
        source_locale: str,
        target_locale_codes: Sequence[str],
        initiated_by: Optional[str] = None,
        config: Optional[dict[str, Any]] = None
    ) -> WorkflowHandle:
        target_locale_codes = list(dict.fromkeys(target_locale_codes))
        if not target_locale_codes:
            raise InvalidWorkflowRequestError("At least one target locale is required")
        if not source_locale:
            raise InvalidWorkflowRequestError("A source locale is required")
        initiated_by = initiated_by or "system"

        logger.info(
            "Starting content generation for catalog product %s: %s -> %s",
            catalog_product_id, source_locale, ", ".join(target_locale_codes)
        )

        async with self.session_factory() as session:
            catalog_product = await self._get_catalog_product(session, catalog_product_id)
            locales = await self._resolve_locales(
                session, Locale.code.in_(target_locale_codes), target_locale_codes, key="code"
            )

            # One translation job and one currency conversion job per target locale
            workflow_job = await self._create_workflow_job(
                session,
                name=f"Content Generation ({source_locale} -> {', '.join(l.code for l in locales)})",
                workflow_type=WorkflowType.CONTENT_GENERATION,
                catalog_product=catalog_product,
                locales=locales,
                total_items=2 * len(locales),
                created_by=initiated_by,
                config=config,
            )

            now = utcnow()
            catalog_product.content_workflow_status = WorkflowStatus.IN_PROGRESS.value
            catalog_product.workflow_initiated_by = initiated_by
            catalog_product.workflow_initiated_at = now
            catalog_product.selected_locales = [locale.code for locale in locales]
            catalog_product.updated_at = now

            await session.commit()

            product_id = catalog_product.product_id
            catalog_id = catalog_product.catalog_id
            workflow_job_id = workflow_job.id

        job_ids = []
        for locale in locales:
            content_params = MultiLanguageContentJobParameters(
                product_id=product_id, source_locale=source_locale, target_locales=[locale.code]
            )
            job_ids.append(await self.queue.enqueue(
                JobType.MULTI_LANGUAGE_CONTENT,
                str(product_id),
                ENTITY_TYPE_PRODUCT,
                content_params.model_dump(mode="json"),
                initiated_by,
                workflow_job_id=workflow_job_id,
                catalog_product_id=catalog_product_id,
            ))

            financial_params = LocaleFinancialJobParameters(
                product_id=product_id, catalog_id=catalog_id, locale_ids=[locale.id]
            )
            job_ids.append(await self.queue.enqueue(
                JobType.LOCALE_FINANCIALS,
                str(product_id),
                ENTITY_TYPE_PRODUCT,
                financial_params.model_dump(mode="json"),
                initiated_by,
                workflow_job_id=workflow_job_id,
                catalog_product_id=catalog_product_id,
            ))

        logger.info(
            "Enqueued %d jobs for workflow %s: %d translations and %d currency conversions",
            len(job_ids), workflow_job_id, len(locales), len(locales)
        )

        return WorkflowHandle(
            workflow_job_id=workflow_job_id,
            status=WorkflowStatus.RUNNING.value,
            estimated_completion=self._estimate(len(job_ids)),
            message=f"Started {len(job_ids)} jobs: {len(locales)} translations and {len(locales)} currency conversions",
            job_ids=job_ids,
        )

    async def workflow_progress(self, catalog_product_id: UUID, limit: int = 10) -> WorkflowProgress:
        async with self.session_factory() as session:
            catalog_product = await session.get(CatalogProduct, catalog_product_id)
            if catalog_product is None:
                raise CatalogProductNotFoundError(catalog_product_id)

            stmt = (
                select(WorkflowJob)
                .where(WorkflowJob.catalog_product_id == catalog_product_id)
                .order_by(WorkflowJob.created_at.desc())
                .limit(limit)
            )
            workflows = list((await session.scalars(stmt)).all())

        locale_status = catalog_product.locale_workflow_status or WorkflowStatus.PENDING.value
        content_status = catalog_product.content_workflow_status or WorkflowStatus.PENDING.value

        overall = (STATUS_PROGRESS.get(str(locale_status), 0.0) + STATUS_PROGRESS.get(str(content_status), 0.0)) / 2.0

        return WorkflowProgress(
            catalog_product_id=catalog_product_id,
            locale_status=locale_status,
            content_status=content_status,
            overall_progress_percent=overall,
            workflows=workflows,
        )

    async def list_workflows(self, limit: int = 50) -> list[WorkflowJob]:
        async with self.session_factory() as session:
            stmt = select(WorkflowJob).order_by(WorkflowJob.created_at.desc()).limit(limit)
            return list((await session.scalars(stmt)).all())

    async def get_workflow(self, workflow_job_id: UUID) -> Optional[WorkflowJob]:
        async with self.session_factory() as session:
            return await session.get(WorkflowJob, workflow_job_id)

    def _estimate(self, units: int):
        return utcnow() + timedelta(seconds=self.seconds_per_item * units)

    async def _get_catalog_product(self, session: AsyncSession, catalog_product_id: UUID) -> CatalogProduct:
        catalog_product = await session.get(CatalogProduct, catalog_product_id)
        if catalog_product is None:
            raise CatalogProductNotFoundError(catalog_product_id)
        if catalog_product.catalog is None:
            raise CatalogNotFoundError(catalog_product.catalog_id)
        return catalog_product

    async def _resolve_locales(self, session: AsyncSession, clause, requested: list, key: str) -> list[Locale]:
        found = {getattr(l, key): l for l in (await session.scalars(select(Locale).where(clause))).all()}
        missing = [value for value in requested if value not in found]
        if missing:
            raise LocaleNotFoundError(", ".join(str(m) for m in missing))
        return [found[value] for value in requested]

    async def _product_sku(self, catalog_product: CatalogProduct) -> str:
        if catalog_product.sku:
            return catalog_product.sku

        fallback = str(catalog_product.product_id)[:8] + "..."
        if self.products is None:
            return fallback
        try:
            product = await self.products.get_product(catalog_product.product_id)
        except Exception as e:
            logger.warning("SKU lookup failed for product %s: %s", catalog_product.product_id, e)
            return fallback
        return product.sku if product and product.sku else fallback

    async def _create_workflow_job(
        self,
        session: AsyncSession,
        name: str,
        workflow_type: WorkflowType,
        catalog_product: CatalogProduct,
        locales: list[Locale],
        total_items: int,
        created_by: str,
        config: Optional[dict[str, Any]]
    ) -> WorkflowJob:
        now = utcnow()
        workflow_job = WorkflowJob(
            job_name=name,
            job_type=workflow_type.value,
            status=WorkflowStatus.RUNNING.value,
            catalog_id=catalog_product.catalog_id,
            catalog_product_id=catalog_product.id,
            product_ids=[str(catalog_product.product_id)],
            locale_ids=[str(locale.id) for locale in locales],
            job_config=config or {},
            total_items=total_items,
            completed_items=0,
            failed_items=0,
            progress_percentage=0 if total_items > 0 else 100,
            catalog_code=catalog_product.catalog.code,
            product_skus=await self._product_sku(catalog_product),
            locale_codes=", ".join(locale.code for locale in locales),
            created_by=created_by,
            created_at=now,
            started_at=now,
        )
        session.add(workflow_job)
        await session.flush()
        return workflow_job
