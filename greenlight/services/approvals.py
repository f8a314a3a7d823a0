"""Approval queue state machine guarded by optimistic concurrency."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from greenlight.database import as_uuid, utcnow
from greenlight.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from greenlight.models.approval import (
    APPROVAL_TYPES,
    DECISIONS,
    EXECUTABLE_ACTIONS,
    OPEN_STATUSES,
    PHASE_ADVANCE_ACTIONS,
    RISK_LEVELS,
    Approval,
)
from greenlight.models.job import AgentKey, JobPriority, JobType
from greenlight.models.project import Project
from greenlight.services.idempotency import build_key
from greenlight.services.job_queue import enqueue_job
from greenlight.services.projects import record_task_log
from greenlight.services.retry import with_retry

logger = logging.getLogger(__name__)

MAX_PHASE = 3


@dataclass
class DecisionResult:
    """Outcome of a decision call."""

    approval_id: uuid.UUID
    status: str
    version: int
    relaunch_required: bool
    job_id: Optional[uuid.UUID] = None


def risk_from_confidence(confidence: int) -> str:
    if confidence < 40:
        return "high"
    if confidence < 70:
        return "medium"
    return "low"


def create_approval(
    db: Session,
    project_id,
    phase: int,
    approval_type: str,
    title: str,
    action_type: str,
    risk: str,
    description: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    packet_id=None,
    agent_source: Optional[str] = None,
) -> Approval:
    """Add a pending approval to the session; the caller commits."""
    if approval_type not in APPROVAL_TYPES:
        raise ValidationError(f"Unknown approval type: {approval_type}")
    if risk not in RISK_LEVELS:
        raise ValidationError(f"Unknown risk level: {risk}")

    approval = Approval(
        project_id=as_uuid(project_id),
        phase=phase,
        packet_id=as_uuid(packet_id) if packet_id is not None else None,
        type=approval_type,
        title=title,
        description=description,
        risk=risk,
        action_type=action_type,
        agent_source=agent_source,
        payload=payload or {},
        status="pending",
        version=1,
    )
    db.add(approval)
    db.flush()
    return approval


def find_open_approval(db: Session, project_id, phase: int, action_type: str) -> Optional[Approval]:
    """Pending or approved approval for the same (project, phase, action_type)."""
    return (
        db.query(Approval)
        .filter(
            Approval.project_id == as_uuid(project_id),
            Approval.phase == phase,
            Approval.action_type == action_type,
            Approval.status.in_(OPEN_STATUSES),
        )
        .first()
    )


def count_pending_approvals(db: Session, project_id) -> int:
    return with_retry(
        lambda: db.query(Approval)
        .filter(Approval.project_id == as_uuid(project_id), Approval.status == "pending")
        .count()
    )


def has_pending_approval(db: Session, project_id) -> bool:
    return count_pending_approvals(db, project_id) > 0


def list_approvals(db: Session, project_id=None, status: Optional[str] = None) -> List[Approval]:
    query = db.query(Approval)
    if project_id is not None:
        query = query.filter(Approval.project_id == as_uuid(project_id))
    if status is not None:
        query = query.filter(Approval.status == status)
    return with_retry(lambda: query.order_by(Approval.created_at.desc()).all())


def enqueue_execution(db: Session, approval: Approval) -> uuid.UUID:
    """Queue execution of an approved action; joins the caller's transaction."""
    return enqueue_job(
        db,
        project_id=approval.project_id,
        job_type=JobType.APPROVAL_EXECUTE,
        agent_key=AgentKey.ENGINEERING,
        payload={
            "approval_id": str(approval.id),
            "project_id": str(approval.project_id),
            "action_type": approval.action_type,
        },
        idempotency_key=build_key("approval", approval.id),
        priority=JobPriority.USER_INTERACTIVE,
        commit=False,
    )


def _advance_phase(db: Session, approval: Approval, project: Project) -> Optional[uuid.UUID]:
    next_phase = max(project.phase or 0, approval.phase) + 1
    project.phase = next_phase
    logger.info(f"Project {project.id} advanced to phase {next_phase}")

    if next_phase > MAX_PHASE:
        return None

    return enqueue_job(
        db,
        project_id=project.id,
        job_type=JobType.PHASE_GENERATE,
        agent_key=AgentKey.CEO,
        payload={"project_id": str(project.id), "phase": next_phase, "approval_id": str(approval.id)},
        idempotency_key=build_key("phasegen", project.id, next_phase),
        priority=JobPriority.USER_BLOCKING,
        commit=False,
    )


def _enqueue_regeneration(db: Session, approval: Approval, guidance: str) -> uuid.UUID:
    phase = approval.phase
    return enqueue_job(
        db,
        project_id=approval.project_id,
        job_type=JobType.PHASE0_GENERATE if phase == 0 else JobType.PHASE_GENERATE,
        agent_key=AgentKey.CEO,
        payload={
            "project_id": str(approval.project_id),
            "phase": phase,
            "approval_id": str(approval.id),
            "force_regenerate": True,
            "revision_guidance": guidance,
        },
        # Distinct from the original run's key so the superseded job cannot absorb it
        idempotency_key=build_key("phasegen", approval.project_id, phase, approval.id, "revised"),
        priority=JobPriority.USER_BLOCKING,
        commit=False,
    )


def _decide_once(
    db: Session,
    approval_id: uuid.UUID,
    expected_version: int,
    decision: str,
    actor_id: str,
    guidance: Optional[str],
) -> DecisionResult:
    # Previous attempts may have left stale state in the identity map
    db.expire_all()

    approval = db.get(Approval, approval_id)
    if approval is None:
        raise NotFoundError(f"Approval {approval_id} not found")

    project = db.get(Project, approval.project_id)
    if project is None:
        raise NotFoundError(f"Project {approval.project_id} not found")
    if project.owner_id != actor_id:
        raise ForbiddenError("Caller does not own this project")

    if decision == "revised" and approval.action_type in PHASE_ADVANCE_ACTIONS and not guidance:
        raise ValidationError("Revision guidance is required to regenerate a phase packet")

    result = db.execute(
        update(Approval)
        .where(
            Approval.id == approval_id,
            Approval.version == expected_version,
            Approval.status == "pending",
        )
        .values(
            status=decision,
            version=Approval.version + 1,
            decided_at=utcnow(),
            resolved_by=actor_id,
            guidance=guidance,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        current = db.query(Approval.version, Approval.status).filter(Approval.id == approval_id).one()
        raise ConflictError(
            f"Approval {approval_id} is at version {current.version} ({current.status})",
            current_version=current.version,
        )

    job_id = None
    if decision == "approved":
        if approval.action_type in PHASE_ADVANCE_ACTIONS:
            job_id = _advance_phase(db, approval, project)
        elif approval.action_type in EXECUTABLE_ACTIONS:
            job_id = enqueue_execution(db, approval)
    elif decision == "revised" and guidance:
        job_id = _enqueue_regeneration(db, approval, guidance)

    new_version = expected_version + 1
    record_task_log(
        db,
        project.id,
        "ceo_agent",
        "approval_decision",
        "completed",
        f"Decision: {decision} on {approval.action_type} (v{new_version})",
        commit=False,
    )
    db.commit()

    logger.info(f"Approval {approval_id} {decision} by {actor_id}, version {new_version}")

    return DecisionResult(
        approval_id=approval_id,
        status=decision,
        version=new_version,
        relaunch_required=job_id is not None,
        job_id=job_id,
    )


def decide(
    db: Session,
    approval_id,
    expected_version: int,
    decision: str,
    actor_id: str,
    guidance: Optional[str] = None,
) -> DecisionResult:
    """
    Resolve a pending approval at the version the caller read.

    Args:
        db: Database session
        approval_id: Approval to resolve
        expected_version: Version the caller last saw
        decision: 'approved', 'denied' or 'revised'
        actor_id: Authenticated caller; must own the project
        guidance: Revision guidance (required when revising a phase gate)

    Returns:
        DecisionResult with the new version and any downstream job

    Raises:
        NotFoundError: Unknown approval or project
        ForbiddenError: Caller does not own the project
        ValidationError: Bad decision or missing revision guidance
        ConflictError: Stored version differs from expected_version
    """
    if decision not in DECISIONS:
        raise ValidationError(f"Unknown decision: {decision}")
    approval_id = as_uuid(approval_id)
    guidance = (guidance or "").strip() or None

    return with_retry(
        lambda: _decide_once(db, approval_id, expected_version, decision, actor_id, guidance),
        db=db,
    )
