"""Job routes."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from greenlight.database import get_db
from greenlight.schemas.job import JobCreate, JobEnqueueResponse, JobResponse
from greenlight.services.idempotency import payload_key
from greenlight.services.job_queue import count_jobs_by_status, enqueue_job, get_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobEnqueueResponse)
def create_job(
    data: JobCreate,
    db: Session = Depends(get_db),
):
    """Enqueue a job; a repeat of an in-flight request returns the existing job."""
    key = data.idempotency_key or payload_key(data.job_type, data.payload)
    job_id = enqueue_job(
        db,
        project_id=data.project_id,
        job_type=data.job_type,
        agent_key=data.agent_key,
        payload=data.payload,
        idempotency_key=key,
        priority=data.priority,
        run_after=data.run_after,
    )
    return JobEnqueueResponse(job_id=job_id, idempotency_key=key)


@router.get("/counts")
def job_counts(
    project_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
):
    """Job counts by status."""
    return count_jobs_by_status(db, project_id)


@router.get("/{job_id}", response_model=JobResponse)
def get_job_status(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Get job status."""
    return get_job(db, job_id)
