import asyncio
import logging
from typing import Any, Awaitable, Callable, Type, TypeVar

from pydantic import BaseModel, ValidationError

from catalog_workflow.domain.errors import MissingJobParametersError, JobExecutionError
from catalog_workflow.domain.models import (
    BackgroundJob, LocaleFinancialJobParameters, MultiLanguageContentJobParameters, utcnow,
)
from catalog_workflow.domain.states import JobType
from catalog_workflow.services.content import MultiLanguageContentService
from catalog_workflow.services.currency import CurrencyRateProvider
from catalog_workflow.services.financials import LocaleFinancialService
from catalog_workflow.settings import Settings

logger = logging.getLogger(__name__)

Handler = Callable[[BackgroundJob], Awaitable[dict[str, Any]]]

P = TypeVar("P", bound=BaseModel)

def parse_parameters(job: BackgroundJob, model: Type[P]) -> P:
    try:
        return model.model_validate(job.parameters or {})
    except ValidationError as e:
        raise MissingJobParametersError(f"Invalid parameters for {job.type} job {job.id}: {e}") from e

def build_handler_registry(
    financials: LocaleFinancialService,
    content: MultiLanguageContentService,
    currency: CurrencyRateProvider,
    settings: Settings
) -> dict[JobType, Handler]:

    async def locale_financials(job: BackgroundJob) -> dict[str, Any]:
        params = parse_parameters(job, LocaleFinancialJobParameters)
        if not params.locale_ids:
            raise MissingJobParametersError(f"No locales given for job {job.id}")

        calculated = await financials.calculate_locale_financials(
            params.product_id, params.catalog_id, params.locale_ids
        )
        if not calculated:
            raise JobExecutionError(
                f"No locale financials calculated for product {params.product_id} ({len(params.locale_ids)} requested)"
            )

        return {
            "calculated_locales": len(calculated),
            "locales": [str(locale_id) for locale_id in calculated],
            "updated_at": utcnow().isoformat(),
        }

    async def multi_language_content(job: BackgroundJob) -> dict[str, Any]:
        params = parse_parameters(job, MultiLanguageContentJobParameters)
        if not params.target_locales:
            raise MissingJobParametersError(f"No target locales given for job {job.id}")

        generated = await content.generate_multi_language_content(
            params.product_id, params.source_locale, params.target_locales
        )
        if not generated:
            raise JobExecutionError(
                f"No content generated for product {params.product_id} ({len(params.target_locales)} requested)"
            )

        return {
            "generated_languages": len(generated),
            "locales": generated,
            "updated_at": utcnow().isoformat(),
        }

    async def currency_refresh(job: BackgroundJob) -> dict[str, Any]:
        refreshed = await currency.refresh_rates()
        return {
            "refreshed_currencies": refreshed,
            "updated_at": utcnow().isoformat(),
        }

    # Placeholders until the compliance and recalculation pipelines exist
    async def compliance_update(job: BackgroundJob) -> dict[str, Any]:
        logger.info("Updating compliance for %s %s", job.entity_type, job.entity_id)
        await asyncio.sleep(settings.COMPLIANCE_UPDATE_DELAY_SECONDS)
        return {
            "compliance_checks": 5,
            "violations": 0,
            "updated_at": utcnow().isoformat(),
        }

    async def catalog_recalculation(job: BackgroundJob) -> dict[str, Any]:
        logger.info("Recalculating catalog %s", job.entity_id)
        await asyncio.sleep(settings.CATALOG_RECALCULATION_DELAY_SECONDS)
        return {
            "recalculated_products": 150,
            "updated_at": utcnow().isoformat(),
        }

    return {
        JobType.LOCALE_FINANCIALS: locale_financials,
        JobType.MULTI_LANGUAGE_CONTENT: multi_language_content,
        JobType.CURRENCY_REFRESH: currency_refresh,
        JobType.COMPLIANCE_UPDATE: compliance_update,
        JobType.CATALOG_RECALCULATION: catalog_recalculation,
    }
