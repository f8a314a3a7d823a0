"""Project-side schemas consumed by the orchestration core."""

from pydantic import BaseModel


class ProjectPermissions(BaseModel):
    """Capability grants; anything missing is denied."""

    repo_write: bool = False
    deploy: bool = False
    email_send: bool = False
    ads_enabled: bool = False
    ads_budget_cap: float = 0


class KpiSnapshot(BaseModel):
    """Seven-day funnel counters."""

    traffic_7d: int = 0
    leads_7d: int = 0
    payments_7d: int = 0
    revenue_cents_7d: int = 0
