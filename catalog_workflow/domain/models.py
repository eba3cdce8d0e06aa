from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from catalog_workflow.domain.states import JobType, JobStatus, TERMINAL_STATUSES

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

@dataclass
class BackgroundJob:
    type: JobType
    entity_id: str
    entity_type: str
    parameters: dict[str, Any] = field(default_factory=dict)

    id: UUID = field(default_factory=uuid4)
    status: JobStatus = JobStatus.PENDING
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None

    retry_count: int = 0
    max_retries: int = 3
    retry_of: Optional[UUID] = None  # Job this entry re-runs

    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    created_by: str = "system"
    workflow_job_id: Optional[UUID] = None
    catalog_product_id: Optional[UUID] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

class LocaleFinancialJobParameters(BaseModel):
    product_id: UUID
    catalog_id: UUID
    locale_ids: list[UUID] = Field(default_factory=list)

class MultiLanguageContentJobParameters(BaseModel):
    product_id: UUID
    source_locale: str = "en_US"
    target_locales: list[str] = Field(default_factory=list)

@dataclass
class WorkflowHandle:
    workflow_job_id: UUID
    status: str
    estimated_completion: datetime
    message: str = ""
    job_ids: list[UUID] = field(default_factory=list)

@dataclass
class WorkflowProgress:
    catalog_product_id: UUID
    locale_status: str
    content_status: str
    overall_progress_percent: float
    workflows: list[Any] = field(default_factory=list)
