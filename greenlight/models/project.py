"""Project, packet, task log and analytics models."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid

from greenlight.database import Base, JSONType, utcnow


class Project(Base):
    """Project moving through the phase pipeline."""

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    phase = Column(Integer, nullable=False, default=0)
    permissions = Column(JSONType, nullable=False, default=dict)
    runtime_mode = Column(Text, nullable=False, default="shared")  # 'shared', 'attached'
    repo_url = Column(Text)
    night_shift = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_projects_night_shift", "night_shift", "updated_at"),)


class PhasePacket(Base):
    """Phase deliverable produced by a generation job."""

    __tablename__ = "phase_packets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    phase = Column(Integer, nullable=False)
    packet = Column(JSONType, nullable=False)
    confidence = Column(Integer)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_phase_packets_project_phase", "project_id", "phase", "created_at"),)


class TaskLog(Base):
    """Audit trail entry for agent steps."""

    __tablename__ = "task_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Uuid, nullable=False)
    agent = Column(Text, nullable=False)
    step = Column(Text, nullable=False)
    status = Column(Text, nullable=False)  # 'running', 'completed', 'failed'
    detail = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_task_log_project_created", "project_id", "created_at"),)


class AnalyticsEvent(Base):
    """Traffic, lead and payment events used for KPI snapshots."""

    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    event_name = Column(Text, nullable=False)  # 'traffic', 'lead', 'payment'
    amount_cents = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_analytics_events_project", "project_id", "event_name", "created_at"),)
