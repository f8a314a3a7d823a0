"""Idempotent job queue: enqueue, lease, complete, fail and stale-job reclaim."""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from greenlight.config import settings
from greenlight.database import as_uuid, utcnow
from greenlight.errors import ConflictError, NotFoundError, PermanentError, TransientError, ValidationError
from greenlight.models.job import (
    IN_FLIGHT_PREDICATE,
    IN_FLIGHT_STATUSES,
    JOB_STATUSES,
    AgentKey,
    Job,
    JobPriority,
    JobType,
)
from greenlight.services.retry import storage_retry, with_retry

logger = logging.getLogger(__name__)

# Requeued stale jobs wait this long before another worker may take them
RECLAIM_BACKOFF = timedelta(seconds=15)


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PermanentError(f"Unsupported database dialect for job queue: {dialect}")
    return insert


def _insert_or_fetch(db: Session, values: Dict[str, Any]) -> uuid.UUID:
    """Insert a queued job unless one is already in flight for the same key."""
    insert = _dialect_insert(db)

    # A conflicting job may finish between the insert and the lookup
    for _ in range(3):
        stmt = (
            insert(Job)
            .values(id=uuid.uuid4(), **values)
            .on_conflict_do_nothing(
                index_elements=["project_id", "idempotency_key"],
                index_where=IN_FLIGHT_PREDICATE,
            )
            .returning(Job.id)
        )
        job_id = db.execute(stmt).scalar_one_or_none()
        if job_id is not None:
            logger.info(f"Enqueued job {job_id} ({values['job_type']}, key={values['idempotency_key']})")
            return job_id

        existing = (
            db.query(Job.id)
            .filter(
                Job.project_id == values["project_id"],
                Job.idempotency_key == values["idempotency_key"],
                Job.status.in_(IN_FLIGHT_STATUSES),
            )
            .first()
        )
        if existing is not None:
            logger.info(f"Job already in flight for key {values['idempotency_key']}: {existing.id}")
            return existing.id

    raise TransientError(f"Could not settle enqueue for key {values['idempotency_key']}")


def enqueue_job(
    db: Session,
    project_id,
    job_type: str,
    agent_key: str,
    payload: Optional[Dict[str, Any]],
    idempotency_key: str,
    priority: int = JobPriority.NORMAL,
    run_after=None,
    commit: bool = True,
) -> uuid.UUID:
    """
    Enqueue a job, collapsing duplicates of an in-flight request.

    Args:
        db: Database session
        project_id: Owning project (or SYSTEM_PROJECT_ID)
        job_type: One of JobType.ALL
        agent_key: One of AgentKey.ALL
        payload: JSON-serializable job input
        idempotency_key: Key identifying the logical request
        priority: JobPriority value
        run_after: Earliest time a worker may lease the job
        commit: Commit and retry transient failures here; pass False to
            join the caller's transaction

    Returns:
        Id of the new job, or of the in-flight job sharing the key
    """
    if job_type not in JobType.ALL:
        raise ValidationError(f"Unknown job_type: {job_type}")
    if agent_key not in AgentKey.ALL:
        raise ValidationError(f"Unknown agent_key: {agent_key}")
    if not idempotency_key or not idempotency_key.strip():
        raise ValidationError("idempotency_key is required")
    try:
        priority = JobPriority(int(priority))
    except ValueError:
        raise ValidationError(f"Unknown priority: {priority}")

    values = {
        "project_id": as_uuid(project_id),
        "job_type": job_type,
        "agent_key": agent_key,
        "status": "queued",
        "priority": int(priority),
        "payload": payload or {},
        "idempotency_key": idempotency_key,
        "run_after": run_after or utcnow(),
        "max_attempts": settings.MAX_JOB_ATTEMPTS,
    }

    if not commit:
        return _insert_or_fetch(db, values)

    def _attempt():
        job_id = _insert_or_fetch(db, values)
        db.commit()
        return job_id

    return with_retry(_attempt, db=db)


@storage_retry
def lease_jobs(
    db: Session,
    worker_id: str,
    job_types: Optional[Iterable[str]] = None,
    limit: int = 5,
) -> List[Job]:
    """Claim ready jobs for a worker, highest priority then oldest first."""
    now = utcnow()
    query = db.query(Job).filter(Job.status == "queued", Job.run_after <= now)
    if job_types:
        query = query.filter(Job.job_type.in_(list(job_types)))

    jobs = (
        query.order_by(Job.priority.desc(), Job.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )

    for job in jobs:
        job.status = "running"
        job.locked_by = worker_id
        job.locked_at = now
        job.attempt_count = (job.attempt_count or 0) + 1
        job.updated_at = now

    db.commit()

    if jobs:
        logger.info(f"Worker {worker_id} leased {len(jobs)} job(s)")
    return jobs


def _finish(db: Session, job_id, status: str, error: Optional[str]) -> None:
    job_id = as_uuid(job_id)
    now = utcnow()
    result = db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == "running")
        .values(
            status=status,
            last_error=error,
            locked_by=None,
            locked_at=None,
            completed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        job = db.get(Job, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        raise ConflictError(f"Job {job_id} is {job.status}, not running")
    db.commit()


@storage_retry
def complete_job(db: Session, job_id) -> None:
    """Mark a running job completed."""
    _finish(db, job_id, "completed", None)
    logger.info(f"Job {job_id} completed")


@storage_retry
def fail_job(db: Session, job_id, reason: str) -> None:
    """Mark a running job failed. Retrying is an explicit re-enqueue by the caller."""
    _finish(db, job_id, "failed", reason[:2000])
    logger.warning(f"Job {job_id} failed: {reason}")


@storage_retry
def reclaim_stale_jobs(db: Session, stale_after: timedelta) -> int:
    """Requeue (or fail, once attempts are spent) jobs whose worker stopped reporting."""
    now = utcnow()
    cutoff = now - stale_after
    stale = (
        db.query(Job)
        .filter(Job.status == "running", Job.locked_at < cutoff)
        .with_for_update(skip_locked=True)
        .all()
    )

    for job in stale:
        job.locked_by = None
        job.locked_at = None
        job.updated_at = now
        if job.attempt_count < job.max_attempts:
            job.status = "queued"
            job.run_after = now + RECLAIM_BACKOFF
            job.last_error = "reclaimed: worker presumed dead"
        else:
            job.status = "failed"
            job.completed_at = now
            job.last_error = "reclaimed: stale running job exceeded max attempts"

    db.commit()

    if stale:
        logger.warning(f"Reclaimed {len(stale)} stale job(s)")
    return len(stale)


def get_job(db: Session, job_id) -> Job:
    job = with_retry(lambda: db.get(Job, as_uuid(job_id)))
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def count_jobs_by_status(db: Session, project_id=None) -> Dict[str, int]:
    """Job counts keyed by status, zero-filled."""
    query = db.query(Job.status, func.count(Job.id))
    if project_id is not None:
        query = query.filter(Job.project_id == as_uuid(project_id))
    rows = with_retry(lambda: query.group_by(Job.status).all())

    counts = {status: 0 for status in JOB_STATUSES}
    for status, count in rows:
        counts[status] = count
    return counts
