"""Job-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from greenlight.models.job import JobPriority


class JobCreate(BaseModel):
    """Schema for enqueueing a job."""

    project_id: UUID
    job_type: str
    agent_key: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    priority: JobPriority = JobPriority.NORMAL
    run_after: Optional[datetime] = None


class JobEnqueueResponse(BaseModel):
    """Response after enqueueing a job."""

    job_id: UUID
    idempotency_key: str


class JobResponse(BaseModel):
    """Job status response."""

    id: UUID
    project_id: UUID
    job_type: str
    agent_key: str
    status: str
    priority: int
    payload: Dict[str, Any]
    idempotency_key: str
    attempt_count: int
    max_attempts: int
    run_after: datetime
    locked_by: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
