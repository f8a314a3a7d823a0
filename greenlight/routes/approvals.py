"""Approval routes."""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from greenlight.database import get_db
from greenlight.schemas.approval import ApprovalOut, DecisionRequest, DecisionResponse
from greenlight.services.approvals import decide, list_approvals

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/approvals", tags=["approvals"])


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, as forwarded by the authenticating proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


@router.get("", response_model=List[ApprovalOut])
def get_approvals(
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List approvals, newest first."""
    return list_approvals(db, project_id=project_id, status=status)


@router.post("/{approval_id}/decision", response_model=DecisionResponse)
def post_decision(
    approval_id: uuid.UUID,
    data: DecisionRequest,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Approve, deny or revise a pending approval."""
    result = decide(
        db,
        approval_id=approval_id,
        expected_version=data.version,
        decision=data.decision,
        actor_id=user_id,
        guidance=data.guidance,
    )
    return DecisionResponse(
        approval_id=result.approval_id,
        status=result.status,
        version=result.version,
        relaunch_required=result.relaunch_required,
        job_id=result.job_id,
    )
