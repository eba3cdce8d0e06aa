from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from catalog_workflow.api.deps import Engine
from catalog_workflow.domain.errors import WorkflowError, InvalidWorkflowRequestError

router = APIRouter()

class LocaleFinancialsRequest(BaseModel):
    locale_ids: list[UUID] = Field(min_length=1)
    initiated_by: Optional[str] = None
    config: dict[str, Any] = {}

class ContentGenerationRequest(BaseModel):
    source_locale: str = "en_US"
    target_locales: list[str] = Field(min_length=1)
    initiated_by: Optional[str] = None
    config: dict[str, Any] = {}

class WorkflowHandleResponse(BaseModel):
    workflow_job_id: UUID
    status: str
    estimated_completion: datetime
    message: str
    job_ids: list[UUID]
    model_config = ConfigDict(from_attributes=True)

class WorkflowJobResponse(BaseModel):
    id: UUID
    job_name: str
    job_type: str
    status: str
    catalog_id: Optional[UUID] = None
    catalog_product_id: Optional[UUID] = None
    total_items: int
    completed_items: int
    failed_items: int
    progress_percentage: int
    catalog_code: Optional[str] = None
    product_skus: Optional[str] = None
    locale_codes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

class WorkflowProgressResponse(BaseModel):
    catalog_product_id: UUID
    locale_status: str
    content_status: str
    overall_progress_percent: float
    workflows: list[WorkflowJobResponse]
    model_config = ConfigDict(from_attributes=True)

def http_error(e: WorkflowError) -> HTTPException:
    if isinstance(e, InvalidWorkflowRequestError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=404, detail=str(e))

@router.post(
    "/catalog-products/{catalog_product_id}/locale-financials",
    response_model=WorkflowHandleResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_locale_financials(catalog_product_id: UUID, payload: LocaleFinancialsRequest, engine: Engine):
    try:
        handle = await engine.orchestrator.start_locale_financials(
            catalog_product_id, payload.locale_ids, payload.initiated_by, payload.config
        )
    except WorkflowError as e:
        raise http_error(e) from e
    return WorkflowHandleResponse.model_validate(handle)

@router.post(
    "/catalog-products/{catalog_product_id}/content",
    response_model=WorkflowHandleResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_content_generation(catalog_product_id: UUID, payload: ContentGenerationRequest, engine: Engine):
    try:
        handle = await engine.orchestrator.start_content_generation(
            catalog_product_id, payload.source_locale, payload.target_locales, payload.initiated_by, payload.config
        )
    except WorkflowError as e:
        raise http_error(e) from e
    return WorkflowHandleResponse.model_validate(handle)

@router.get("/catalog-products/{catalog_product_id}/progress", response_model=WorkflowProgressResponse)
async def workflow_progress(catalog_product_id: UUID, engine: Engine):
    try:
        progress = await engine.orchestrator.workflow_progress(catalog_product_id)
    except WorkflowError as e:
        raise http_error(e) from e
    return WorkflowProgressResponse.model_validate(progress)

@router.get("", response_model=list[WorkflowJobResponse])
async def list_workflows(engine: Engine, limit: int = Query(50, ge=1, le=500)):
    return await engine.orchestrator.list_workflows(limit)

@router.get("/{workflow_job_id}", response_model=WorkflowJobResponse)
async def get_workflow(workflow_job_id: UUID, engine: Engine):
    workflow_job = await engine.orchestrator.get_workflow(workflow_job_id)
    if not workflow_job:
        raise HTTPException(status_code=404, detail="Workflow job not found")
    return workflow_job
