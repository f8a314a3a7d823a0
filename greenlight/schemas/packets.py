"""Phase packet schemas."""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

Recommendation = Literal["greenlight", "revise", "kill"]


class EvidenceSchema(BaseModel):
    """Claim backing a recommendation."""

    claim: str
    source: str


class ReasoningSynopsis(BaseModel):
    """Recommendation summary shared by every phase packet."""

    decision: Recommendation
    confidence: int = Field(ge=0, le=100)
    rationale: List[str] = Field(min_length=1)
    risks: List[str] = []
    next_actions: List[str] = []
    evidence: List[EvidenceSchema] = []


# Phase 0: idea packet
class ConfidenceBreakdown(BaseModel):
    market: int = Field(ge=0, le=100)
    competition: int = Field(ge=0, le=100)
    feasibility: int = Field(ge=0, le=100)
    timing: int = Field(ge=0, le=100)


class CompetitorSchema(BaseModel):
    name: str
    positioning: str
    gap: str
    pricing: str


class MarketSizing(BaseModel):
    tam: str
    sam: str
    som: str


class TargetPersona(BaseModel):
    name: str
    description: str
    pain_points: List[str]


class MvpScope(BaseModel):
    in_scope: List[str]
    deferred: List[str]


class Phase0Packet(BaseModel):
    """Idea validation packet."""

    phase: Optional[Literal[0]] = None
    tagline: str
    elevator_pitch: str
    confidence_breakdown: Optional[ConfidenceBreakdown] = None
    competitor_analysis: List[CompetitorSchema] = []
    market_sizing: MarketSizing
    target_persona: TargetPersona
    mvp_scope: MvpScope
    recommendation: Recommendation
    reasoning_synopsis: ReasoningSynopsis


# Phase 1: validation packet
class LandingPage(BaseModel):
    headline: str = Field(min_length=8)
    subheadline: str = Field(min_length=8)
    primary_cta: str = Field(min_length=3)
    sections: List[str] = Field(min_length=3)
    launch_notes: List[str] = Field(min_length=2)


class Waitlist(BaseModel):
    capture_stack: str
    double_opt_in: bool
    form_fields: List[str] = Field(min_length=2)
    target_conversion_rate: str


class EmailStep(BaseModel):
    day: str
    subject: str = Field(min_length=3)
    goal: str = Field(min_length=8)


class EmailSequence(BaseModel):
    emails: List[EmailStep] = Field(min_length=3)


class Phase1Packet(BaseModel):
    """Landing page, waitlist and email sequence plan."""

    phase: Optional[Literal[1]] = None
    summary: str = Field(min_length=20)
    landing_page: LandingPage
    waitlist: Waitlist
    email_sequence: EmailSequence
    reasoning_synopsis: ReasoningSynopsis


# Phase 2: distribution packet
class ChannelPlan(BaseModel):
    channel: str
    objective: str
    weekly_budget: str


class DistributionStrategy(BaseModel):
    north_star_metric: str
    channel_plan: List[ChannelPlan] = Field(min_length=2)


class PaidAcquisition(BaseModel):
    enabled: bool
    budget_cap_per_day: float = Field(ge=0)
    target_audiences: List[str] = Field(min_length=1)
    creative_angles: List[str] = []
    kill_switch: str


class Phase2Packet(BaseModel):
    """Distribution and paid acquisition plan."""

    phase: Optional[Literal[2]] = None
    summary: str = Field(min_length=20)
    distribution_strategy: DistributionStrategy
    paid_acquisition: PaidAcquisition
    weekly_experiments: List[str] = Field(min_length=1)
    guardrails: List[str] = Field(min_length=1)
    reasoning_synopsis: ReasoningSynopsis


# Phase 3: go-live packet
class Milestone(BaseModel):
    name: str
    owner: str
    exit_criteria: str


class MergePolicy(BaseModel):
    review_required: bool
    approvals_required: int = Field(ge=1)
    protected_branch: str


class RollbackPlan(BaseModel):
    triggers: List[str] = Field(min_length=1)
    steps: List[str] = Field(min_length=1)


class Phase3Packet(BaseModel):
    """Build, QA and launch plan."""

    phase: Optional[Literal[3]] = None
    summary: str = Field(min_length=20)
    milestones: List[Milestone] = Field(min_length=1)
    launch_checklist: List[str] = Field(min_length=1)
    rollback_plan: RollbackPlan
    merge_policy: MergePolicy
    reasoning_synopsis: ReasoningSynopsis


PhasePacketModel = Union[Phase0Packet, Phase1Packet, Phase2Packet, Phase3Packet]

PACKET_SCHEMAS = {
    0: Phase0Packet,
    1: Phase1Packet,
    2: Phase2Packet,
    3: Phase3Packet,
}


def parse_phase_packet(phase: int, payload: Dict[str, Any]) -> PhasePacketModel:
    """Validate a raw packet against its phase schema (raises pydantic.ValidationError)."""
    schema = PACKET_SCHEMAS.get(phase)
    if schema is None:
        raise ValueError(f"Unsupported phase {phase}")
    return schema(**payload)
