"""Night shift and scheduler response schemas."""

from datetime import datetime
from typing import Dict, List
from uuid import UUID

from pydantic import BaseModel


class ProjectSweepOut(BaseModel):
    """One project's sweep outcome."""

    project_id: str
    status: str  # 'skipped', 'completed', 'failed'
    detail: str
    approvals_created: int
    jobs_enqueued: int
    actions: List[str]


class SweepResponse(BaseModel):
    """Response after a synchronous night shift sweep."""

    ran_at: datetime
    project_count: int
    results: List[ProjectSweepOut]
    counts: Dict[str, int]


class SchedulerRunResponse(BaseModel):
    """Response after handing a sweep to the job queue."""

    ok: bool = True
    job_id: UUID
    minute: str
