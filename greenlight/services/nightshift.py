"""Night shift action derivation from phase packets."""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from greenlight.schemas.packets import PhasePacketModel
from greenlight.schemas.project import KpiSnapshot, ProjectPermissions

# Candidate next_actions read from the packet before KPI heuristics are appended
PACKET_ACTION_LIMIT = 5

ADS_KEYWORDS = ("meta", "ads", "ad campaign", "paid", "acquisition")
EMAIL_KEYWORDS = ("email", "outreach", "newsletter", "sequence")
REPO_KEYWORDS = ("repo", "repository", "workflow", "pull request", "merge", "branch")
DEPLOY_KEYWORDS = ("deploy", "launch", "go live", "release")

CONVERSION_ACTION = "Deploy a conversion-optimized landing page variant (visitors are not signing up this week)"
REENGAGEMENT_ACTION = "Send a re-engagement email sequence to subscribers with no purchases this week"


@dataclass(frozen=True)
class RuleContext:
    phase: int
    runtime_mode: str
    repo_url: Optional[str]
    permissions: ProjectPermissions


@dataclass(frozen=True)
class ActionRule:
    """Keyword rule resolving free text to an approvable action."""

    action_type: str
    title: str
    risk: str
    keywords: Sequence[str]
    gate: Callable[[RuleContext], bool]

    def matches(self, text: str, ctx: RuleContext) -> bool:
        """Fragment match on lowercased text: "relaunch" hits "launch", "unpaid" hits "paid"."""
        return any(k in text for k in self.keywords) and self.gate(ctx)


@dataclass(frozen=True)
class DerivedApproval:
    action_type: str
    title: str
    risk: str


@dataclass(frozen=True)
class DerivedAction:
    description: str
    approval: Optional[DerivedApproval] = None


# Evaluated top to bottom, first match wins: ads, email, repo workflow, deploy
RULES: List[ActionRule] = [
    ActionRule(
        action_type="activate_meta_ads_campaign",
        title="Night Shift: Activate Meta Ads Campaign",
        risk="high",
        keywords=ADS_KEYWORDS,
        gate=lambda c: c.phase >= 2 and c.permissions.ads_enabled and c.permissions.ads_budget_cap > 0,
    ),
    ActionRule(
        action_type="send_phase2_lifecycle_email",
        title="Night Shift: Send Lifecycle Email",
        risk="low",
        keywords=EMAIL_KEYWORDS,
        gate=lambda c: c.phase >= 2 and c.permissions.email_send,
    ),
    ActionRule(
        action_type="send_welcome_email_sequence",
        title="Night Shift: Send Welcome Sequence",
        risk="low",
        keywords=EMAIL_KEYWORDS,
        gate=lambda c: c.phase < 2 and c.permissions.email_send,
    ),
    ActionRule(
        action_type="trigger_phase3_repo_workflow",
        title="Night Shift: Trigger Repo Workflow",
        risk="high",
        keywords=REPO_KEYWORDS,
        gate=lambda c: c.phase >= 3 and c.permissions.repo_write and bool(c.repo_url),
    ),
    ActionRule(
        action_type="trigger_phase3_deploy",
        title="Night Shift: Trigger Phase 3 Deploy",
        risk="high",
        keywords=DEPLOY_KEYWORDS,
        gate=lambda c: c.phase >= 3 and c.permissions.deploy,
    ),
    ActionRule(
        action_type="deploy_landing_page",
        title="Night Shift: Deploy Shared Runtime Landing",
        risk="medium",
        keywords=DEPLOY_KEYWORDS,
        gate=lambda c: c.phase >= 1 and c.runtime_mode == "shared",
    ),
]


def classify_action(text: str, ctx: RuleContext) -> Optional[DerivedApproval]:
    """Resolve one free-text action through the rule table."""
    lowered = text.lower()
    for rule in RULES:
        if rule.matches(lowered, ctx):
            return DerivedApproval(action_type=rule.action_type, title=rule.title, risk=rule.risk)
    return None


def next_actions_from_packet(packet: PhasePacketModel) -> List[str]:
    actions = [a.strip() for a in packet.reasoning_synopsis.next_actions]
    return [a for a in actions if a][:PACKET_ACTION_LIMIT]


def kpi_actions(kpis: Optional[KpiSnapshot]) -> List[str]:
    """Heuristic actions from funnel counters."""
    if kpis is None:
        return []
    actions = []
    if kpis.traffic_7d > 0 and kpis.leads_7d == 0:
        actions.append(CONVERSION_ACTION)
    if kpis.leads_7d > 0 and kpis.revenue_cents_7d == 0:
        actions.append(REENGAGEMENT_ACTION)
    return actions


def derive_actions(
    phase: int,
    packet: PhasePacketModel,
    runtime_mode: str,
    permissions: ProjectPermissions,
    repo_url: Optional[str] = None,
    kpis: Optional[KpiSnapshot] = None,
    max_actions: int = 3,
) -> List[DerivedAction]:
    """
    Derive at most ``max_actions`` candidate actions for one project.

    Only the first action resolving to a given action_type carries an
    approval; later ones in the same derivation are plain log entries.
    """
    ctx = RuleContext(phase=phase, runtime_mode=runtime_mode, repo_url=repo_url, permissions=permissions)
    candidates = (next_actions_from_packet(packet) + kpi_actions(kpis))[: min(max_actions, 3)]

    seen_types = set()
    derived = []
    for text in candidates:
        approval = classify_action(text, ctx)
        if approval is not None and approval.action_type in seen_types:
            approval = None
        if approval is not None:
            seen_types.add(approval.action_type)
        derived.append(DerivedAction(description=text, approval=approval))
    return derived
