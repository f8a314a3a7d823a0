"""SQLAlchemy ORM models."""

from greenlight.models.project import AnalyticsEvent, PhasePacket, Project, TaskLog
from greenlight.models.approval import ActionExecution, Approval
from greenlight.models.job import Job

__all__ = [
    "Project",
    "PhasePacket",
    "TaskLog",
    "AnalyticsEvent",
    "Approval",
    "ActionExecution",
    "Job",
]
