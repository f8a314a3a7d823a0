"""Approval-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DecisionRequest(BaseModel):
    """Decision on a pending approval, at the version the caller read."""

    decision: Literal["approved", "denied", "revised"]
    version: int = Field(ge=1)
    guidance: Optional[str] = None


class DecisionResponse(BaseModel):
    ok: bool = True
    approval_id: UUID
    status: str
    version: int
    relaunch_required: bool
    job_id: Optional[UUID] = None


class ApprovalOut(BaseModel):
    """Approval queue entry."""

    id: UUID
    project_id: UUID
    phase: int
    packet_id: Optional[UUID] = None
    type: str
    title: str
    description: Optional[str] = None
    risk: str
    action_type: str
    agent_source: Optional[str] = None
    payload: Dict[str, Any]
    status: str
    version: int
    guidance: Optional[str] = None
    execution_status: Optional[str] = None
    created_at: datetime
    decided_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    model_config = {"from_attributes": True}
