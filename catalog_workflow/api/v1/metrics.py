from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
QUEUE_DEPTH = Gauge('background_job_queue_depth', 'Number of jobs waiting in the in-process queue')
JOBS_ENQUEUED = Counter('background_jobs_enqueued_total', 'Total jobs enqueued', ['job_type'])
JOB_FAILURES = Counter('background_job_failures_total', 'Total job failures', ['job_type', 'type']) # type=retryable|final
JOB_COMPLETE_TOTAL = Counter('background_jobs_completed_total', 'Total jobs reaching a terminal status', ['job_type', 'result'])

JOB_DURATION = Histogram(
    'background_job_duration_seconds',
    'Time from dequeue to terminal status',
    ['job_type'],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)

WORKFLOW_UPDATE_ERRORS = Counter(
    "workflow_projection_update_errors_total",
    "Failed best-effort updates of workflow rows or catalog products",
    ["target"] # workflow_job | catalog_product
)

WORKFLOWS_FORCE_COMPLETED = Counter(
    "workflows_force_completed_total",
    "Workflow rows closed by the staleness sweep or an operator"
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
