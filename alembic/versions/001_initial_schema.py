"""Initial orchestration schema

Revision ID: 001
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")
IN_FLIGHT = sa.text("status IN ('queued', 'running')")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "agent_jobs" in existing_tables:
        return

    # Create projects table
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner_id", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("phase", sa.Integer, nullable=False, server_default="0"),
        sa.Column("permissions", JSON_TYPE, nullable=False),
        sa.Column("runtime_mode", sa.Text, nullable=False, server_default="shared"),
        sa.Column("repo_url", sa.Text),
        sa.Column("night_shift", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_projects_night_shift", "projects", ["night_shift", "updated_at"])

    # Create phase_packets table
    op.create_table(
        "phase_packets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("phase", sa.Integer, nullable=False),
        sa.Column("packet", JSON_TYPE, nullable=False),
        sa.Column("confidence", sa.Integer),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_phase_packets_project_phase", "phase_packets", ["project_id", "phase", "created_at"])

    # Create approval_queue table
    op.create_table(
        "approval_queue",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("phase", sa.Integer, nullable=False),
        sa.Column("packet_id", sa.Uuid(), sa.ForeignKey("phase_packets.id", ondelete="SET NULL")),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("risk", sa.Text, nullable=False),
        sa.Column("action_type", sa.Text, nullable=False),
        sa.Column("agent_source", sa.Text),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("guidance", sa.Text),
        sa.Column("execution_status", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("decided_at", sa.DateTime),
        sa.Column("resolved_by", sa.Text),
        sa.CheckConstraint("status IN ('pending', 'approved', 'denied', 'revised')", name="ck_approval_status"),
        sa.CheckConstraint("risk IN ('high', 'medium', 'low')", name="ck_approval_risk"),
    )
    op.create_index("idx_approval_queue_project_status", "approval_queue", ["project_id", "status"])
    op.create_index("idx_approval_queue_dedup", "approval_queue", ["project_id", "phase", "action_type", "status"])

    # Create action_executions table
    op.create_table(
        "action_executions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "approval_id",
            sa.Uuid(),
            sa.ForeignKey("approval_queue.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("action_type", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("detail", sa.Text),
        sa.Column("provider_response", JSON_TYPE),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_action_executions_approval", "action_executions", ["approval_id", "created_at"])

    # Create task_log table
    op.create_table(
        "task_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("agent", sa.Text, nullable=False),
        sa.Column("step", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("detail", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_task_log_project_created", "task_log", ["project_id", "created_at"])

    # Create analytics_events table
    op.create_table(
        "analytics_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_name", sa.Text, nullable=False),
        sa.Column("amount_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_analytics_events_project", "analytics_events", ["project_id", "event_name", "created_at"])

    # Create agent_jobs table
    op.create_table(
        "agent_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("agent_key", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="queued"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="50"),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("idempotency_key", sa.Text, nullable=False),
        sa.Column("run_after", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("locked_by", sa.Text),
        sa.Column("locked_at", sa.DateTime),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime),
        sa.CheckConstraint("status IN ('queued', 'running', 'completed', 'failed')", name="ck_agent_jobs_status"),
    )
    # At most one in-flight job per (project, key); finished jobs free the key
    op.create_index(
        "uq_agent_jobs_inflight_key",
        "agent_jobs",
        ["project_id", "idempotency_key"],
        unique=True,
        postgresql_where=IN_FLIGHT,
        sqlite_where=IN_FLIGHT,
    )
    op.create_index("idx_agent_jobs_ready", "agent_jobs", ["status", "run_after", "priority", "created_at"])
    op.create_index("idx_agent_jobs_project", "agent_jobs", ["project_id", "created_at"])


def downgrade() -> None:
    op.drop_table("agent_jobs")
    op.drop_table("analytics_events")
    op.drop_table("task_log")
    op.drop_table("action_executions")
    op.drop_table("approval_queue")
    op.drop_table("phase_packets")
    op.drop_table("projects")
