"""Approval queue model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, Uuid

from greenlight.database import Base, JSONType, utcnow

APPROVAL_TYPES = ("phase_advance", "execution")
APPROVAL_STATUSES = ("pending", "approved", "denied", "revised")
DECISIONS = ("approved", "denied", "revised")
OPEN_STATUSES = ("pending", "approved")
RISK_LEVELS = ("high", "medium", "low")

PHASE_ADVANCE_ACTIONS = frozenset(
    {
        "phase0_packet_review",
        "phase1_validate_review",
        "phase2_distribute_review",
        "phase3_golive_review",
    }
)

EXECUTABLE_ACTIONS = frozenset(
    {
        "deploy_landing_page",
        "send_welcome_email_sequence",
        "send_phase2_lifecycle_email",
        "activate_meta_ads_campaign",
        "trigger_phase3_repo_workflow",
        "trigger_phase3_deploy",
    }
)

FAILURE_REVIEW_ACTION = "review_failed_tasks"


class Approval(Base):
    """Human-in-the-loop gate decision, guarded by a version counter."""

    __tablename__ = "approval_queue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    phase = Column(Integer, nullable=False)
    packet_id = Column(Uuid, ForeignKey("phase_packets.id", ondelete="SET NULL"))
    type = Column(Text, nullable=False)  # 'phase_advance', 'execution'
    title = Column(Text, nullable=False)
    description = Column(Text)
    risk = Column(Text, nullable=False)  # 'high', 'medium', 'low'
    action_type = Column(Text, nullable=False)
    agent_source = Column(Text)
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(Text, nullable=False, default="pending")
    version = Column(Integer, nullable=False, default=1)
    guidance = Column(Text)
    execution_status = Column(Text)  # 'running', 'completed', 'failed'
    created_at = Column(DateTime, nullable=False, default=utcnow)
    decided_at = Column(DateTime)
    resolved_by = Column(Text)

    __table_args__ = (
        Index("idx_approval_queue_project_status", "project_id", "status"),
        Index("idx_approval_queue_dedup", "project_id", "phase", "action_type", "status"),
    )


class ActionExecution(Base):
    """Execution record for an approved action."""

    __tablename__ = "action_executions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    approval_id = Column(Uuid, ForeignKey("approval_queue.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(Uuid, nullable=False)
    action_type = Column(Text, nullable=False)
    status = Column(Text, nullable=False)  # 'running', 'completed', 'failed'
    detail = Column(Text)
    provider_response = Column(JSONType)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_action_executions_approval", "approval_id", "created_at"),)
