import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_workflow.scheduler.service import StaleWorkflowSweeper
from catalog_workflow.services.content import MultiLanguageContentService
from catalog_workflow.services.currency import CurrencyRateProvider, StaticCurrencyRateService
from catalog_workflow.services.financials import LocaleFinancialService
from catalog_workflow.services.job_queue import InMemoryJobQueue
from catalog_workflow.services.products import ProductLookup, ProductStagingClient
from catalog_workflow.services.tracker import WorkflowTracker
from catalog_workflow.services.translation import Translator, TaggingTranslationService
from catalog_workflow.services.workflow import WorkflowOrchestrator
from catalog_workflow.settings import Settings
from catalog_workflow.worker.handlers import build_handler_registry
from catalog_workflow.worker.processor import BackgroundJobProcessor

logger = logging.getLogger(__name__)

@dataclass
class WorkflowEngine:
    """Everything one process needs to accept and run background workflows."""

    queue: InMemoryJobQueue
    tracker: WorkflowTracker
    orchestrator: WorkflowOrchestrator
    processor: BackgroundJobProcessor
    sweeper: StaleWorkflowSweeper
    financials: LocaleFinancialService
    content: MultiLanguageContentService
    products: ProductLookup
    run_worker: bool = True
    history_limit: int = 50

    async def start(self):
        if not self.run_worker:
            logger.info("Worker disabled; jobs will be queued but not processed")
            return
        await self.processor.start()
        await self.sweeper.start()

    async def stop(self):
        if self.run_worker:
            await self.sweeper.stop()
            await self.processor.stop()

        close = getattr(self.products, "close", None)
        if close is not None:
            await close()

def build_engine(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    translator: Optional[Translator] = None,
    products: Optional[ProductLookup] = None,
    currency: Optional[CurrencyRateProvider] = None
) -> WorkflowEngine:
    translator = translator or TaggingTranslationService()
    products = products or ProductStagingClient(
        settings.PRODUCT_STAGING_URL, timeout=settings.PRODUCT_STAGING_TIMEOUT_SECONDS
    )
    currency = currency or StaticCurrencyRateService(refresh_delay=settings.CURRENCY_REFRESH_DELAY_SECONDS)

    queue = InMemoryJobQueue(default_max_retries=settings.DEFAULT_MAX_RETRIES)
    tracker = WorkflowTracker(session_factory)

    financials = LocaleFinancialService(session_factory, currency, products)
    content = MultiLanguageContentService(session_factory, translator, products)

    processor = BackgroundJobProcessor(
        queue,
        tracker,
        build_handler_registry(financials, content, currency, settings),
        poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
        error_pause_seconds=settings.WORKER_ERROR_PAUSE_SECONDS,
        retry_base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        retry_max_delay=settings.RETRY_MAX_DELAY_SECONDS,
    )

    return WorkflowEngine(
        queue=queue,
        tracker=tracker,
        orchestrator=WorkflowOrchestrator(
            session_factory, queue, products, seconds_per_item=settings.ESTIMATED_SECONDS_PER_ITEM
        ),
        processor=processor,
        sweeper=StaleWorkflowSweeper(
            tracker,
            interval=settings.STALE_SWEEP_INTERVAL_SECONDS,
            threshold_minutes=settings.STALE_WORKFLOW_THRESHOLD_MINUTES,
        ),
        financials=financials,
        content=content,
        products=products,
        run_worker=settings.WORKER_ENABLED,
        history_limit=settings.JOB_HISTORY_LIMIT,
    )
