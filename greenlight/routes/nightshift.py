"""Night shift and scheduler trigger routes."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from greenlight.config import settings
from greenlight.database import get_db, utcnow
from greenlight.models.job import SYSTEM_PROJECT_ID, AgentKey, JobPriority, JobType
from greenlight.schemas.nightshift import ProjectSweepOut, SchedulerRunResponse, SweepResponse
from greenlight.services.idempotency import build_key, minute_bucket
from greenlight.services.job_queue import enqueue_job
from greenlight.services.scheduler import NightShiftScheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["nightshift"])


def _matches(secret: str, supplied: Optional[str]) -> bool:
    return bool(secret) and bool(supplied) and hmac.compare_digest(secret, supplied)


def require_scheduler_secret(
    authorization: Optional[str] = Header(default=None),
    x_night_shift_secret: Optional[str] = Header(default=None),
) -> None:
    """Accept ``Bearer <CRON_SECRET>`` or ``X-Night-Shift-Secret: <NIGHT_SHIFT_SECRET>``."""
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[len("Bearer "):].strip()

    if _matches(settings.CRON_SECRET, bearer) or _matches(settings.NIGHT_SHIFT_SECRET, x_night_shift_secret):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route("/nightshift/run", methods=["GET", "POST"], response_model=SweepResponse)
def run_night_shift(db: Session = Depends(get_db), _: None = Depends(require_scheduler_secret)):
    """Sweep opted-in projects now and report per-project results."""
    report = NightShiftScheduler().run_sweep(db)
    return SweepResponse(
        ran_at=report.ran_at,
        project_count=len(report.results),
        results=[ProjectSweepOut(**vars(r)) for r in report.results],
        counts=report.counts,
    )


@router.api_route("/scheduler/run", methods=["GET", "POST"], response_model=SchedulerRunResponse)
def run_scheduler(db: Session = Depends(get_db), _: None = Depends(require_scheduler_secret)):
    """Hand a sweep to the job queue; repeated calls within a minute collapse into one job."""
    minute = minute_bucket(utcnow())
    job_id = enqueue_job(
        db,
        project_id=SYSTEM_PROJECT_ID,
        job_type=JobType.NIGHTSHIFT_SWEEP,
        agent_key=AgentKey.SYSTEM,
        payload={"minute": minute},
        idempotency_key=build_key("scheduler", minute),
        priority=JobPriority.BACKGROUND,
    )
    logger.info(f"Scheduler tick {minute} -> job {job_id}")
    return SchedulerRunResponse(job_id=job_id, minute=minute)

