"""Night shift handlers: sweep fan-out and per-project cycle."""

import logging
from dataclasses import asdict
from typing import Any, Dict

from greenlight.database import utcnow
from greenlight.errors import PermanentError
from greenlight.handlers.base import BaseHandler
from greenlight.models.job import AgentKey, JobPriority, JobType
from greenlight.schemas.handlers import NightShiftCycleInput, NightShiftSweepInput
from greenlight.services.idempotency import build_key, day_bucket
from greenlight.services.job_queue import enqueue_job
from greenlight.services.scheduler import NightShiftScheduler

logger = logging.getLogger(__name__)


class NightShiftSweepHandler(BaseHandler):
    """Fans a sweep out into one cycle job per eligible project."""

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        input_data = NightShiftSweepInput(**payload)
        scheduler = NightShiftScheduler()
        day = day_bucket(utcnow())

        job_ids = []
        for project_id in scheduler.eligible_projects(self.db, input_data.limit):
            job_ids.append(
                enqueue_job(
                    self.db,
                    project_id=project_id,
                    job_type=JobType.NIGHTSHIFT_CYCLE_PROJECT,
                    agent_key=AgentKey.NIGHT_SHIFT,
                    payload={"project_id": str(project_id)},
                    idempotency_key=build_key("nightshift", project_id, day),
                    priority=JobPriority.BACKGROUND,
                )
            )

        logger.info(f"Night shift sweep enqueued {len(job_ids)} project cycle(s)")
        return {"enqueued": len(job_ids), "job_ids": [str(j) for j in job_ids]}


class NightShiftCycleHandler(BaseHandler):
    """Runs the night shift for a single project."""

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        input_data = NightShiftCycleInput(**payload)
        result = NightShiftScheduler().sweep_project(self.db, input_data.project_id)
        if result.status == "failed":
            raise PermanentError(f"Night shift cycle failed: {result.detail}")
        return asdict(result)
