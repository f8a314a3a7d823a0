"""Job model for the agent work queue."""

import enum
import uuid

from sqlalchemy import Column, DateTime, Index, Integer, Text, text, Uuid

from greenlight.database import Base, JSONType, utcnow


class JobPriority(enum.IntEnum):
    """Ordered priorities; workers lease higher values first."""

    BACKGROUND = 10
    NORMAL = 50
    USER_INTERACTIVE = 80
    USER_BLOCKING = 100


class JobType:
    PHASE0_GENERATE = "phase0.generate_packet"
    PHASE_GENERATE = "phase.generate_packet"
    APPROVAL_EXECUTE = "approval.execute"
    NIGHTSHIFT_SWEEP = "nightshift.sweep"
    NIGHTSHIFT_CYCLE_PROJECT = "nightshift.cycle_project"

    ALL = (
        PHASE0_GENERATE,
        PHASE_GENERATE,
        APPROVAL_EXECUTE,
        NIGHTSHIFT_SWEEP,
        NIGHTSHIFT_CYCLE_PROJECT,
    )


class AgentKey:
    CEO = "ceo"
    RESEARCH = "research"
    DESIGN = "design"
    ENGINEERING = "engineering"
    NIGHT_SHIFT = "night_shift"
    OUTREACH = "outreach"
    SYSTEM = "system"

    ALL = (CEO, RESEARCH, DESIGN, ENGINEERING, NIGHT_SHIFT, OUTREACH, SYSTEM)


JOB_STATUSES = ("queued", "running", "completed", "failed")
IN_FLIGHT_STATUSES = ("queued", "running")
TERMINAL_STATUSES = ("completed", "failed")

# Sentinel project for jobs that are not scoped to a single project
SYSTEM_PROJECT_ID = uuid.UUID("00000000-0000-0000-0000-000000000000")

IN_FLIGHT_PREDICATE = text("status IN ('queued', 'running')")


class Job(Base):
    """Job represents a queued unit of agent work."""

    __tablename__ = "agent_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False)
    job_type = Column(Text, nullable=False)
    agent_key = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="queued")  # 'queued', 'running', 'completed', 'failed'
    priority = Column(Integer, nullable=False, default=int(JobPriority.NORMAL))
    payload = Column(JSONType, nullable=False, default=dict)
    idempotency_key = Column(Text, nullable=False)
    run_after = Column(DateTime, nullable=False, default=utcnow)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    locked_by = Column(Text)
    locked_at = Column(DateTime)
    last_error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        # At most one in-flight job per logical request
        Index(
            "uq_agent_jobs_inflight_key",
            "project_id",
            "idempotency_key",
            unique=True,
            postgresql_where=IN_FLIGHT_PREDICATE,
            sqlite_where=IN_FLIGHT_PREDICATE,
        ),
        Index("idx_agent_jobs_ready", "status", "run_after", "priority", "created_at"),
        Index("idx_agent_jobs_project", "project_id", "created_at"),
    )
