from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from catalog_workflow.api.deps import Engine
from catalog_workflow.api.v1.workflows import WorkflowJobResponse
from catalog_workflow.domain.errors import WorkflowJobNotFoundError

router = APIRouter()

@router.post("/workflows/force-complete-stale")
async def force_complete_stale_workflows(engine: Engine, threshold_minutes: int = Query(5, ge=0)):
    count = await engine.tracker.force_complete_stale_workflows(threshold_minutes)
    return {
        "completed_count": count,
        "threshold_minutes": threshold_minutes,
        "message": f"Force-completed {count} workflow jobs running longer than {threshold_minutes} minutes",
    }

@router.post("/workflows/{workflow_job_id}/force-complete", response_model=WorkflowJobResponse)
async def force_complete_workflow(workflow_job_id: UUID, engine: Engine):
    try:
        return await engine.tracker.force_complete_workflow(workflow_job_id)
    except WorkflowJobNotFoundError:
        raise HTTPException(status_code=404, detail="Running workflow job not found")
