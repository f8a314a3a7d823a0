"""Job handler input schemas."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


# Phase generation
class PhaseGenerateInput(BaseModel):
    """Input for PhaseGenerateHandler."""

    project_id: UUID
    phase: int = Field(default=0, ge=0, le=3)
    approval_id: Optional[UUID] = None
    force_regenerate: bool = False
    revision_guidance: Optional[str] = None


# Approved action execution
class ApprovalExecuteInput(BaseModel):
    """Input for ApprovalExecuteHandler."""

    approval_id: UUID
    project_id: Optional[UUID] = None
    action_type: Optional[str] = None


# Night shift
class NightShiftSweepInput(BaseModel):
    """Input for NightShiftSweepHandler."""

    limit: Optional[int] = Field(default=None, ge=1)
    minute: Optional[str] = None


class NightShiftCycleInput(BaseModel):
    """Input for NightShiftCycleHandler."""

    project_id: UUID
