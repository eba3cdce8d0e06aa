from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from catalog_workflow.api.deps import Engine
from catalog_workflow.domain.states import JobType, JobStatus

router = APIRouter()

class JobCreate(BaseModel):
    type: JobType
    entity_id: str
    entity_type: str
    parameters: dict[str, Any] = {}
    created_by: str = "system"
    max_retries: Optional[int] = None

class JobResponse(BaseModel):
    id: UUID
    type: JobType
    entity_id: str
    entity_type: str
    status: JobStatus
    parameters: dict[str, Any]
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: int
    max_retries: int
    retry_of: Optional[UUID] = None
    created_by: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    workflow_job_id: Optional[UUID] = None
    catalog_product_id: Optional[UUID] = None
    model_config = ConfigDict(from_attributes=True)

def to_response(job) -> JobResponse:
    response = JobResponse.model_validate(job)
    if job.duration is not None:
        response.duration_seconds = job.duration.total_seconds()
    return response

@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(payload: JobCreate, engine: Engine):
    job_id = await engine.queue.enqueue(
        payload.type,
        payload.entity_id,
        payload.entity_type,
        payload.parameters,
        payload.created_by,
        max_retries=payload.max_retries,
    )
    return to_response(await engine.queue.get_job(job_id))

@router.get("", response_model=list[JobResponse])
async def job_history(engine: Engine, limit: Optional[int] = Query(None, ge=1, le=1000)):
    jobs = await engine.queue.history(limit or engine.history_limit)
    return [to_response(job) for job in jobs]

@router.get("/entity/{entity_type}/{entity_id}", response_model=list[JobResponse])
async def jobs_for_entity(entity_type: str, entity_id: str, engine: Engine):
    return [to_response(job) for job in await engine.queue.jobs_by_entity(entity_id, entity_type)]

@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: UUID, engine: Engine):
    job = await engine.queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return to_response(job)

@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: UUID, engine: Engine):
    # Jobs already picked up run to completion; the snapshot shows which case applied
    job = await engine.queue.cancel(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return to_response(job)
