"""Background worker for processing jobs."""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Type

import sqlalchemy
from sqlalchemy.exc import SQLAlchemyError

from greenlight.config import settings
from greenlight.database import SessionLocal
from greenlight.errors import ConflictError
from greenlight.handlers.approval_execute import ApprovalExecuteHandler
from greenlight.handlers.base import BaseHandler, Collaborators
from greenlight.handlers.nightshift import NightShiftCycleHandler, NightShiftSweepHandler
from greenlight.handlers.phase_generate import PhaseGenerateHandler
from greenlight.models.job import JobType
from greenlight.services.job_queue import complete_job, fail_job, lease_jobs, reclaim_stale_jobs
from greenlight.services.projects import record_task_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeasedJob:
    """Snapshot of a leased job, safe to hand to another thread."""

    id: uuid.UUID
    project_id: uuid.UUID
    job_type: str
    agent_key: str
    payload: Dict[str, Any]


class Worker:
    """Background worker for processing jobs."""

    def __init__(
        self,
        session_factory=SessionLocal,
        collaborators: Optional[Collaborators] = None,
        worker_id: Optional[str] = None,
        concurrency: Optional[int] = None,
    ):
        """Initialize worker."""
        self.session_factory = session_factory
        self.collaborators = collaborators or Collaborators()
        self.worker_id = worker_id or settings.WORKER_ID
        self.poll_interval = settings.WORKER_POLL_INTERVAL
        self.batch_size = settings.WORKER_CLAIM_BATCH
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self.job_timeout = settings.JOB_TIMEOUT_SECONDS
        self.stale_after = timedelta(minutes=settings.STALE_JOB_MINUTES)
        self._last_reclaim: Optional[float] = None

        # Handler registry
        self.handlers: Dict[str, Type[BaseHandler]] = {
            JobType.PHASE0_GENERATE: PhaseGenerateHandler,
            JobType.PHASE_GENERATE: PhaseGenerateHandler,
            JobType.APPROVAL_EXECUTE: ApprovalExecuteHandler,
            JobType.NIGHTSHIFT_SWEEP: NightShiftSweepHandler,
            JobType.NIGHTSHIFT_CYCLE_PROJECT: NightShiftCycleHandler,
        }

    def wait_for_database(self, stop_event: Optional[threading.Event] = None, max_wait: int = 60) -> bool:
        """Block until the jobs table is queryable or ``max_wait`` seconds pass."""
        waited = 0
        while waited < max_wait:
            if stop_event and stop_event.is_set():
                return False
            db = self.session_factory()
            try:
                db.execute(sqlalchemy.text("SELECT 1 FROM agent_jobs LIMIT 1"))
                logger.info("Database is ready, starting worker loop")
                return True
            except SQLAlchemyError as e:
                logger.info(f"Waiting for database/migrations... ({waited}s): {e}")
                time.sleep(2)
                waited += 2
            finally:
                db.close()

        logger.error(f"Database not ready after {max_wait} seconds, starting anyway...")
        return False

    def run(self, stop_event: Optional[threading.Event] = None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info(f"Worker {self.worker_id} started - waiting for database to be ready...")
        self.wait_for_database(stop_event)

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="greenlight-job") as pool:
            while True:
                # Check if stop signal received
                if stop_event and stop_event.is_set():
                    logger.info("Worker stop signal received")
                    break

                try:
                    processed = self.run_once(pool)
                except KeyboardInterrupt:
                    logger.info("Worker shutting down")
                    break
                except Exception as e:
                    logger.error(f"Worker error: {e}", exc_info=True)
                    processed = 0

                if not processed:
                    if stop_event:
                        stop_event.wait(self.poll_interval)
                    else:
                        time.sleep(self.poll_interval)

    def maybe_reclaim(self, db) -> int:
        """Reclaim stale jobs at most once per poll interval."""
        now = time.monotonic()
        if self._last_reclaim is not None and now - self._last_reclaim < self.poll_interval:
            return 0
        self._last_reclaim = now
        return reclaim_stale_jobs(db, self.stale_after)

    def lease(self) -> List[LeasedJob]:
        """Reclaim stale work, then lease a batch of ready jobs."""
        db = self.session_factory()
        try:
            self.maybe_reclaim(db)
            # Never lease more than the pool can start at once
            limit = min(self.batch_size, self.concurrency)
            jobs = lease_jobs(db, self.worker_id, job_types=list(self.handlers), limit=limit)
            return [
                LeasedJob(
                    id=job.id,
                    project_id=job.project_id,
                    job_type=job.job_type,
                    agent_key=job.agent_key,
                    payload=dict(job.payload or {}),
                )
                for job in jobs
            ]
        finally:
            db.close()

    def run_once(self, pool: Optional[ThreadPoolExecutor] = None) -> int:
        """Lease one batch and run it to completion. Returns the number of jobs leased."""
        jobs = self.lease()
        if not jobs:
            return 0

        if pool is None:
            with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="greenlight-job") as own_pool:
                self.dispatch(own_pool, jobs)
        else:
            self.dispatch(pool, jobs)
        return len(jobs)

    def dispatch(self, pool: ThreadPoolExecutor, jobs: List[LeasedJob]):
        """Run leased jobs on the pool and finalize each within the job timeout.

        Each job's clock starts when a pool thread picks it up, not when it was
        submitted, so time spent waiting for a free thread is not charged to it.
        """
        started_at: Dict[uuid.UUID, float] = {}

        def _run(job: LeasedJob):
            started_at[job.id] = time.monotonic()
            return self.process_job(job)

        futures = [(job, pool.submit(_run, job)) for job in jobs]

        for job, future in futures:
            # Not started yet: earlier jobs just freed its thread
            started = started_at.get(job.id, time.monotonic())
            remaining = max(0.0, self.job_timeout - (time.monotonic() - started))
            try:
                future.result(timeout=remaining)
            except FutureTimeoutError:
                future.cancel()
                logger.error(f"Job {job.id} exceeded {self.job_timeout}s")
                self.finalize(job, f"Timed out after {self.job_timeout}s")
            except Exception as e:
                logger.error(f"Job {job.id} failed: {e}", exc_info=True)
                self.finalize(job, str(e) or e.__class__.__name__)
            else:
                self.finalize(job, None)

    def process_job(self, job: LeasedJob) -> Dict[str, Any]:
        """Process a single job in its own session."""
        logger.info(f"Processing job {job.id} ({job.job_type})")

        handler_class = self.handlers.get(job.job_type)
        if not handler_class:
            raise ValueError(f"No handler for job type: {job.job_type}")

        db = self.session_factory()
        try:
            handler = handler_class(db, self.collaborators)
            return handler.execute(job.payload)
        finally:
            db.close()

    def finalize(self, job: LeasedJob, error: Optional[str]):
        """Complete or fail a job. Failed jobs stay failed until re-enqueued."""
        db = self.session_factory()
        try:
            if error is None:
                complete_job(db, job.id)
                return
            fail_job(db, job.id, error)
            record_task_log(db, job.project_id, job.agent_key, job.job_type, "failed", error[:500])
        except ConflictError as e:
            # Reclaimed and re-leased (or failed) while this worker was still running it
            logger.warning(f"Job {job.id} was finalized elsewhere: {e}")
        finally:
            db.close()


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread).

    Args:
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = Worker()
    worker.run(stop_event=stop_event)


def main():
    """Entry point for standalone worker."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    worker = Worker()
    worker.run()


if __name__ == "__main__":
    main()
