"""Phase packet generation handler."""

import logging
from typing import Any, Dict

import pydantic

from greenlight.errors import PermanentError
from greenlight.handlers.base import BaseHandler
from greenlight.models.approval import Approval
from greenlight.schemas.handlers import PhaseGenerateInput
from greenlight.schemas.packets import parse_phase_packet
from greenlight.services.approvals import create_approval, risk_from_confidence
from greenlight.services.projects import load_project, record_task_log, save_packet
from greenlight.services.retry import with_retry

logger = logging.getLogger(__name__)

AGENT = "ceo_agent"

# Gate each generated packet is put behind
PHASE_REVIEWS = {
    0: ("phase0_packet_review", "Phase 0 Idea Packet Ready"),
    1: ("phase1_validate_review", "Phase 1 Validation Plan Ready"),
    2: ("phase2_distribute_review", "Phase 2 Distribution Plan Ready"),
    3: ("phase3_golive_review", "Phase 3 Go-Live Plan Ready"),
}


class PhaseGenerateHandler(BaseHandler):
    """Generates a phase packet and queues it for phase-advance review."""

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Generate, validate and persist the packet, then open its review."""
        input_data = PhaseGenerateInput(**payload)
        phase = input_data.phase
        project = load_project(self.db, input_data.project_id)
        action_type, title = PHASE_REVIEWS[phase]

        if not input_data.force_regenerate:
            existing = with_retry(
                lambda: self.db.query(Approval)
                .filter(
                    Approval.project_id == project.id,
                    Approval.phase == phase,
                    Approval.action_type == action_type,
                    Approval.status == "pending",
                )
                .first()
            )
            if existing is not None:
                logger.info(f"Phase {phase} review already pending for project {project.id}, skipping")
                return {"skipped": True, "approval_id": str(existing.id)}

        step = f"phase{phase}_init"
        detail = f"Generating phase {phase} packet"
        if input_data.revision_guidance:
            detail += f" with guidance: {input_data.revision_guidance[:200]}"
        record_task_log(self.db, project.id, AGENT, step, "running", detail)

        raw = self.collaborators.generator.generate(project, phase, input_data.revision_guidance)
        try:
            packet = parse_phase_packet(phase, raw)
        except pydantic.ValidationError as e:
            record_task_log(self.db, project.id, AGENT, step, "failed", f"Invalid phase {phase} packet")
            raise PermanentError(f"Generated phase {phase} packet failed validation: {e}") from e

        data = packet.model_dump(mode="json")
        confidence = packet.reasoning_synopsis.confidence
        risk = risk_from_confidence(confidence)

        def _persist():
            row = save_packet(self.db, project.id, phase, data)
            approval = create_approval(
                self.db,
                project_id=project.id,
                phase=phase,
                approval_type="phase_advance",
                title=title,
                action_type=action_type,
                risk=risk,
                description=f"Phase {phase} artifacts generated. CEO confidence: {confidence}/100.",
                payload=data,
                packet_id=row.id,
                agent_source=AGENT,
            )
            record_task_log(
                self.db,
                project.id,
                AGENT,
                f"phase{phase}_complete",
                "completed",
                f"Phase {phase} artifacts generated ({confidence}/100 confidence)",
                commit=False,
            )
            self.db.commit()
            return row.id, approval.id

        packet_id, approval_id = with_retry(_persist, db=self.db)
        logger.info(f"Saved phase {phase} packet {packet_id} for project {project.id}, review {approval_id}")

        return {
            "packet_id": str(packet_id),
            "approval_id": str(approval_id),
            "confidence": confidence,
            "risk": risk,
        }

