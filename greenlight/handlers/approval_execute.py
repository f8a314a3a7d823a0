"""Approved action execution handler."""

import logging
from typing import Any, Dict, Optional

from greenlight.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from greenlight.handlers.base import BaseHandler
from greenlight.models.approval import EXECUTABLE_ACTIONS, ActionExecution, Approval
from greenlight.models.project import PhasePacket, Project
from greenlight.schemas.handlers import ApprovalExecuteInput
from greenlight.schemas.project import ProjectPermissions
from greenlight.services.integrations import ACTION_PERMISSIONS
from greenlight.services.projects import load_project, permissions_from_raw, record_task_log
from greenlight.services.retry import with_retry

logger = logging.getLogger(__name__)

AGENT = "engineering_agent"


def missing_grant(action_type: str, permissions: ProjectPermissions, project: Project) -> Optional[str]:
    """Name of the grant blocking ``action_type``, or None when it may run."""
    grant = ACTION_PERMISSIONS.get(action_type)
    if grant and not getattr(permissions, grant):
        return grant
    if action_type == "activate_meta_ads_campaign" and permissions.ads_budget_cap <= 0:
        return "ads_budget_cap"
    if action_type == "trigger_phase3_repo_workflow" and not project.repo_url:
        return "repo_url"
    return None


class ApprovalExecuteHandler(BaseHandler):
    """Runs an approved action exactly once through the action executor."""

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        input_data = ApprovalExecuteInput(**payload)
        approval = with_retry(lambda: self.db.get(Approval, input_data.approval_id))
        if approval is None:
            raise NotFoundError(f"Approval {input_data.approval_id} not found")
        if approval.status != "approved":
            raise ConflictError(f"Approval {approval.id} is {approval.status}, not approved")
        if approval.action_type not in EXECUTABLE_ACTIONS:
            raise ValidationError(f"Action {approval.action_type} is not executable")

        done = with_retry(
            lambda: self.db.query(ActionExecution)
            .filter(ActionExecution.approval_id == approval.id, ActionExecution.status == "completed")
            .first()
        )
        if done is not None:
            logger.info(f"Approval {approval.id} already executed, skipping")
            return {"skipped": True, "detail": done.detail}

        project = load_project(self.db, approval.project_id)
        # Grants may have been revoked since the approval was created
        blocked_by = missing_grant(approval.action_type, permissions_from_raw(project.permissions), project)
        if blocked_by:
            detail = f"{approval.action_type} blocked: missing {blocked_by}"
            self._record(approval, "failed", detail)
            record_task_log(self.db, project.id, AGENT, approval.action_type, "failed", detail)
            raise ForbiddenError(detail)

        self._record(approval, "running", "Execution started")

        packet = None
        if approval.packet_id is not None:
            row = with_retry(lambda: self.db.get(PhasePacket, approval.packet_id))
            packet = row.packet if row is not None else None

        request = {
            "approval_id": str(approval.id),
            "project_id": str(project.id),
            "project_name": project.name,
            "runtime_mode": project.runtime_mode,
            "repo_url": project.repo_url,
            "payload": approval.payload,
            "phase_packet": packet,
        }
        try:
            response = self.collaborators.executor.execute(approval.action_type, request)
        except Exception as e:
            self._record(approval, "failed", str(e)[:500])
            record_task_log(self.db, project.id, AGENT, approval.action_type, "failed", str(e)[:500])
            raise

        detail = response.get("detail") or f"{approval.action_type} executed"
        self._record(approval, "completed", detail, response)
        record_task_log(self.db, project.id, AGENT, approval.action_type, "completed", detail)
        logger.info(f"Executed {approval.action_type} for approval {approval.id}")

        return {"approval_id": str(approval.id), "detail": detail}

    def _record(
        self,
        approval: Approval,
        status: str,
        detail: str,
        provider_response: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an execution record and mirror its status on the approval."""
        approval_id = approval.id
        project_id = approval.project_id
        action_type = approval.action_type

        def _write():
            self.db.add(
                ActionExecution(
                    approval_id=approval_id,
                    project_id=project_id,
                    action_type=action_type,
                    status=status,
                    detail=detail,
                    provider_response=provider_response,
                )
            )
            self.db.query(Approval).filter(Approval.id == approval_id).update(
                {"execution_status": status}, synchronize_session=False
            )
            self.db.commit()

        with_retry(_write, db=self.db)
