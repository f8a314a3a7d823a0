"""Night shift sweep over opted-in projects."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from greenlight.config import settings
from greenlight.database import as_uuid, utcnow
from greenlight.models.approval import FAILURE_REVIEW_ACTION, Approval
from greenlight.models.project import PhasePacket, Project
from greenlight.schemas.packets import parse_phase_packet
from greenlight.services.approvals import (
    count_pending_approvals,
    create_approval,
    enqueue_execution,
    find_open_approval,
)
from greenlight.services.nightshift import DerivedAction, derive_actions
from greenlight.services.projects import (
    count_recent_tasks,
    load_kpi_snapshot,
    load_latest_packet,
    load_project,
    permissions_from_raw,
    record_task_log,
)
from greenlight.services.retry import with_retry

logger = logging.getLogger(__name__)

AGENT = "night_shift"


@dataclass
class ProjectSweepResult:
    """Outcome of one project's sweep."""

    project_id: str
    status: str  # 'skipped', 'completed', 'failed'
    detail: str
    approvals_created: int = 0
    jobs_enqueued: int = 0
    actions: List[str] = field(default_factory=list)


@dataclass
class SweepReport:
    ran_at: datetime
    results: List[ProjectSweepResult]

    @property
    def counts(self) -> Dict[str, int]:
        counts = {"projects": len(self.results), "completed": 0, "skipped": 0, "failed": 0}
        for result in self.results:
            counts[result.status] += 1
        counts["approvals_created"] = sum(r.approvals_created for r in self.results)
        counts["jobs_enqueued"] = sum(r.jobs_enqueued for r in self.results)
        return counts


class NightShiftScheduler:
    """Derives autonomous actions per project and funnels them into approvals and jobs."""

    def __init__(
        self,
        batch_limit: Optional[int] = None,
        max_actions: Optional[int] = None,
        failure_window_hours: Optional[int] = None,
        auto_approve_low_risk: Optional[bool] = None,
    ):
        """Initialize scheduler, defaulting to settings."""
        self.batch_limit = batch_limit or settings.NIGHTSHIFT_BATCH_LIMIT
        self.max_actions = max_actions or settings.NIGHTSHIFT_MAX_ACTIONS
        self.failure_window = timedelta(hours=failure_window_hours or settings.NIGHTSHIFT_FAILURE_WINDOW_HOURS)
        if auto_approve_low_risk is None:
            auto_approve_low_risk = settings.NIGHTSHIFT_AUTO_APPROVE_LOW_RISK
        self.auto_approve_low_risk = auto_approve_low_risk

    def eligible_projects(self, db: Session, limit: Optional[int] = None) -> List[uuid.UUID]:
        """Opted-in projects, least recently updated first."""
        limit = min(limit or self.batch_limit, self.batch_limit)
        rows = with_retry(
            lambda: db.query(Project.id)
            .filter(Project.night_shift.is_(True))
            .order_by(Project.updated_at.asc())
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    def run_sweep(self, db: Session, limit: Optional[int] = None) -> SweepReport:
        """Sweep every eligible project; one project's failure never stops the batch."""
        ran_at = utcnow()
        project_ids = self.eligible_projects(db, limit)
        logger.info(f"Night shift sweep starting for {len(project_ids)} project(s)")

        results = [self.sweep_project(db, project_id) for project_id in project_ids]
        report = SweepReport(ran_at=ran_at, results=results)

        logger.info(f"Night shift sweep finished: {report.counts}")
        return report

    def sweep_project(self, db: Session, project_id) -> ProjectSweepResult:
        """Sweep one project, converting any error into a failed result."""
        project_id = as_uuid(project_id)
        try:
            return self._sweep(db, project_id)
        except Exception as e:
            logger.error(f"Night shift failed for project {project_id}: {e}", exc_info=True)
            db.rollback()
            try:
                record_task_log(db, project_id, AGENT, "nightshift_cycle", "failed", str(e)[:500])
            except Exception as log_error:
                logger.error(f"Could not record night shift failure for {project_id}: {log_error}")
            return ProjectSweepResult(project_id=str(project_id), status="failed", detail=str(e))

    def _step(self, db: Session, project_id, step: str, detail: str, status: str = "completed") -> None:
        record_task_log(db, project_id, AGENT, step, status, detail)

    def _sweep(self, db: Session, project_id: uuid.UUID) -> ProjectSweepResult:
        project = load_project(db, project_id)
        pid = str(project_id)

        self._step(db, project_id, "health_check", "Checking pending approvals", status="running")
        pending = count_pending_approvals(db, project_id)
        if pending:
            detail = f"Skipped: {pending} pending approval(s) awaiting a decision"
            self._step(db, project_id, "health_check", detail)
            logger.info(f"Project {pid}: {detail}")
            return ProjectSweepResult(project_id=pid, status="skipped", detail=detail)

        packet_row = load_latest_packet(db, project_id, project.phase)
        if packet_row is None:
            detail = f"Skipped: no packet for phase {project.phase} or earlier yet"
            self._step(db, project_id, "health_check", detail)
            logger.info(f"Project {pid}: {detail}")
            return ProjectSweepResult(project_id=pid, status="skipped", detail=detail)

        self._step(db, project_id, "health_check", f"Healthy: working from phase {packet_row.phase} packet")

        packet = parse_phase_packet(packet_row.phase, packet_row.packet)
        actions = derive_actions(
            phase=packet_row.phase,
            packet=packet,
            runtime_mode=project.runtime_mode,
            permissions=permissions_from_raw(project.permissions),
            repo_url=project.repo_url,
            kpis=load_kpi_snapshot(db, project_id),
            max_actions=self.max_actions,
        )

        result = ProjectSweepResult(project_id=pid, status="completed", detail="")
        for action in actions:
            result.actions.append(action.description)
            step = f"action:{action.approval.action_type}" if action.approval else "action"
            self._step(db, project_id, step, action.description, status="running")

            if action.approval is None:
                self._step(db, project_id, step, f"Logged: {action.description}")
                continue

            approval, job_id = self._queue_action(db, project, packet_row, action)
            if approval is None:
                self._step(db, project_id, step, f"Open {action.approval.action_type} approval exists; not queued")
                continue

            result.approvals_created += 1
            if job_id is not None:
                result.jobs_enqueued += 1
                self._step(db, project_id, step, f"Auto-approved {approval.action_type}; execution job {job_id}")
            else:
                self._step(db, project_id, step, f"Queued {approval.action_type} for approval ({approval.risk} risk)")

        tally, review_created = self._review_failures(db, project)
        if review_created:
            result.approvals_created += 1

        result.detail = (
            f"Derived {len(actions)} action(s); {result.approvals_created} approval(s) created; "
            f"{result.jobs_enqueued} job(s) enqueued; recent tasks: {tally['completed']} completed, "
            f"{tally['failed']} failed"
        )
        self._step(db, project_id, "summary", "Summarizing night shift cycle", status="running")
        self._step(db, project_id, "summary", result.detail)
        logger.info(f"Project {pid}: {result.detail}")
        return result

    def _queue_action(
        self,
        db: Session,
        project: Project,
        packet_row: PhasePacket,
        action: DerivedAction,
    ) -> Tuple[Optional[Approval], Optional[uuid.UUID]]:
        derived = action.approval

        def _insert():
            # Check-then-insert is best effort; a concurrent sweep may still add a duplicate
            if find_open_approval(db, project.id, project.phase, derived.action_type) is not None:
                return None, None

            approval = create_approval(
                db,
                project_id=project.id,
                phase=project.phase,
                approval_type="execution",
                title=derived.title,
                action_type=derived.action_type,
                risk=derived.risk,
                description=action.description,
                payload={"source": AGENT, "next_action": action.description},
                packet_id=packet_row.id,
                agent_source=AGENT,
            )

            job_id = None
            if self.auto_approve_low_risk and derived.risk == "low":
                approval.status = "approved"
                approval.version = 2
                approval.decided_at = utcnow()
                approval.resolved_by = AGENT
                db.flush()
                job_id = enqueue_execution(db, approval)

            db.commit()
            return approval, job_id

        return with_retry(_insert, db=db)

    def _review_failures(self, db: Session, project: Project) -> Tuple[Dict[str, int], bool]:
        """Tally recent task outcomes and raise a review approval when anything failed."""
        since = utcnow() - self.failure_window
        last_review = with_retry(
            lambda: db.query(Approval)
            .filter(Approval.project_id == project.id, Approval.action_type == FAILURE_REVIEW_ACTION)
            .order_by(Approval.created_at.desc())
            .first()
        )
        # Failures already put in front of a human are not reported twice
        if last_review is not None and last_review.created_at > since:
            since = last_review.created_at

        tally = count_recent_tasks(db, project.id, since)
        if tally["failed"] == 0:
            return tally, False

        def _insert():
            if find_open_approval(db, project.id, project.phase, FAILURE_REVIEW_ACTION) is not None:
                return False
            create_approval(
                db,
                project_id=project.id,
                phase=project.phase,
                approval_type="execution",
                title="Night Shift: Review Failed Tasks",
                action_type=FAILURE_REVIEW_ACTION,
                risk="medium",
                description=f"{tally['failed']} task(s) failed since {since.isoformat()}",
                payload={"source": AGENT, "failed": tally["failed"], "completed": tally["completed"]},
                agent_source=AGENT,
            )
            db.commit()
            return True

        created = with_retry(_insert, db=db)
        if created:
            self._step(db, project.id, "failure_review", f"Queued review of {tally['failed']} failed task(s)")
        return tally, created
