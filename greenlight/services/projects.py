"""Database-backed project collaborators: permissions, packets, task log, KPIs."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from greenlight.database import as_uuid, utcnow
from greenlight.errors import NotFoundError
from greenlight.models.project import AnalyticsEvent, PhasePacket, Project, TaskLog
from greenlight.schemas.project import KpiSnapshot, ProjectPermissions
from greenlight.services.retry import with_retry

logger = logging.getLogger(__name__)

# Last phase that produces a packet
MAX_PACKET_PHASE = 3


def load_project(db: Session, project_id) -> Project:
    project = with_retry(lambda: db.get(Project, as_uuid(project_id)))
    if project is None:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def permissions_from_raw(raw: Optional[Dict[str, Any]]) -> ProjectPermissions:
    """Parse stored grants, treating null entries as not granted."""
    cleaned = {k: v for k, v in (raw or {}).items() if v is not None}
    return ProjectPermissions(**cleaned)


def load_project_permissions(db: Session, project_id) -> ProjectPermissions:
    return permissions_from_raw(load_project(db, project_id).permissions)


def load_latest_packet(db: Session, project_id, phase: int) -> Optional[PhasePacket]:
    """
    Newest packet at or below ``phase``, or None.

    Projects past go-live (phase 4+) keep working from their phase 3 packet.
    """
    max_phase = min(phase, MAX_PACKET_PHASE)
    return with_retry(
        lambda: db.query(PhasePacket)
        .filter(PhasePacket.project_id == as_uuid(project_id), PhasePacket.phase <= max_phase)
        .order_by(PhasePacket.phase.desc(), PhasePacket.created_at.desc())
        .first()
    )


def save_packet(db: Session, project_id, phase: int, packet: Dict[str, Any]) -> PhasePacket:
    """Add a packet to the session; the caller commits."""
    synopsis = packet.get("reasoning_synopsis") or {}
    row = PhasePacket(
        project_id=as_uuid(project_id),
        phase=phase,
        packet=packet,
        confidence=synopsis.get("confidence"),
    )
    db.add(row)
    db.flush()
    return row


def record_task_log(
    db: Session,
    project_id,
    agent: str,
    step: str,
    status: str,
    detail: Optional[str] = None,
    commit: bool = True,
) -> None:
    """Append an audit entry; with commit=True it is written in its own retried transaction."""
    entry = dict(project_id=as_uuid(project_id), agent=agent, step=step, status=status, detail=detail)
    if not commit:
        db.add(TaskLog(**entry))
        return

    def _write():
        db.add(TaskLog(**entry))
        db.commit()

    with_retry(_write, db=db)


def count_recent_tasks(db: Session, project_id, since: datetime) -> Dict[str, int]:
    """Completed/failed task-log counts since a point in time."""
    rows = with_retry(
        lambda: db.query(TaskLog.status, func.count(TaskLog.id))
        .filter(
            TaskLog.project_id == as_uuid(project_id),
            TaskLog.created_at >= since,
            TaskLog.status.in_(("completed", "failed")),
        )
        .group_by(TaskLog.status)
        .all()
    )
    counts = {"completed": 0, "failed": 0}
    for status, count in rows:
        counts[status] = count
    return counts


def load_kpi_snapshot(db: Session, project_id, now: Optional[datetime] = None) -> KpiSnapshot:
    """Seven-day traffic, lead and payment counters from analytics events."""
    since = (now or utcnow()) - timedelta(days=7)
    rows = with_retry(
        lambda: db.query(
            AnalyticsEvent.event_name,
            func.count(AnalyticsEvent.id),
            func.coalesce(func.sum(AnalyticsEvent.amount_cents), 0),
        )
        .filter(AnalyticsEvent.project_id == as_uuid(project_id), AnalyticsEvent.created_at >= since)
        .group_by(AnalyticsEvent.event_name)
        .all()
    )
    by_name = {name: (count, amount) for name, count, amount in rows}
    return KpiSnapshot(
        traffic_7d=by_name.get("traffic", (0, 0))[0],
        leads_7d=by_name.get("lead", (0, 0))[0],
        payments_7d=by_name.get("payment", (0, 0))[0],
        revenue_cents_7d=int(by_name.get("payment", (0, 0))[1]),
    )
