"""Pytest configuration and fixtures."""

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["NIGHT_SHIFT_SECRET"] = "night-test-secret"
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["RETRY_MAX_DELAY"] = "0"
os.environ["NIGHTSHIFT_AUTO_APPROVE_LOW_RISK"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import greenlight.models  # noqa: F401
from greenlight.database import Base, get_db
from greenlight.handlers.base import Collaborators
from greenlight.models.project import AnalyticsEvent, Project
from greenlight.services.projects import save_packet

OWNER_ID = "owner-1"


def synopsis(next_actions=None, confidence=75):
    return {
        "decision": "greenlight",
        "confidence": confidence,
        "rationale": ["Early demand signals are strong"],
        "risks": ["Crowded market"],
        "next_actions": list(next_actions or []),
        "evidence": [{"claim": "Waitlist growth", "source": "analytics"}],
    }


def build_packet(phase, next_actions=None, confidence=75):
    """A minimal valid packet for ``phase``."""
    reasoning = synopsis(next_actions, confidence)
    if phase == 0:
        return {
            "tagline": "Invoices that chase themselves",
            "elevator_pitch": "Automated invoice follow-ups for freelancers.",
            "market_sizing": {"tam": "$4B", "sam": "$600M", "som": "$12M"},
            "target_persona": {
                "name": "Freelance designer",
                "description": "Solo operator billing 5-15 clients",
                "pain_points": ["Late payments", "Awkward reminders"],
            },
            "mvp_scope": {"in_scope": ["Reminder emails"], "deferred": ["Payments"]},
            "recommendation": "greenlight",
            "reasoning_synopsis": reasoning,
        }
    if phase == 1:
        return {
            "summary": "Validate demand with a landing page and waitlist.",
            "landing_page": {
                "headline": "Get paid on time",
                "subheadline": "Reminders that sound like you",
                "primary_cta": "Join waitlist",
                "sections": ["Problem", "Solution", "Pricing"],
                "launch_notes": ["Ship Monday", "Share in communities"],
            },
            "waitlist": {
                "capture_stack": "native form",
                "double_opt_in": True,
                "form_fields": ["email", "role"],
                "target_conversion_rate": "8%",
            },
            "email_sequence": {
                "emails": [
                    {"day": "Day 0", "subject": "Welcome", "goal": "Confirm signup intent"},
                    {"day": "Day 2", "subject": "The problem", "goal": "Deepen problem awareness"},
                    {"day": "Day 5", "subject": "Early access", "goal": "Invite to beta cohort"},
                ]
            },
            "reasoning_synopsis": reasoning,
        }
    if phase == 2:
        return {
            "summary": "Scale acquisition through two channels with guardrails.",
            "distribution_strategy": {
                "north_star_metric": "Weekly signups",
                "channel_plan": [
                    {"channel": "Meta", "objective": "Signups", "weekly_budget": "$200"},
                    {"channel": "Communities", "objective": "Awareness", "weekly_budget": "$0"},
                ],
            },
            "paid_acquisition": {
                "enabled": True,
                "budget_cap_per_day": 25,
                "target_audiences": ["Freelancers"],
                "creative_angles": ["Late payment pain"],
                "kill_switch": "CPA above $40",
            },
            "weekly_experiments": ["Headline A/B"],
            "guardrails": ["Daily spend cap"],
            "reasoning_synopsis": reasoning,
        }
    return {
        "summary": "Ship the MVP behind review and launch with rollback ready.",
        "milestones": [{"name": "Beta", "owner": "engineering", "exit_criteria": "10 paying users"}],
        "launch_checklist": ["Monitoring on", "Billing tested"],
        "rollback_plan": {"triggers": ["Error rate above 2%"], "steps": ["Revert deploy"]},
        "merge_policy": {"review_required": True, "approvals_required": 1, "protected_branch": "main"},
        "reasoning_synopsis": reasoning,
    }


class FakeGenerator:
    """In-memory packet generator."""

    def __init__(self, packets=None):
        self.packets = packets or {}
        self.calls = []

    def generate(self, project, phase, guidance=None):
        self.calls.append((project.id, phase, guidance))
        return self.packets.get(phase) or build_packet(phase, ["Publish launch announcement"])


class FakeExecutor:
    """In-memory action executor."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def execute(self, action_type, payload):
        self.calls.append((action_type, payload))
        if self.error is not None:
            raise self.error
        return {"detail": f"{action_type} done", "provider_id": "prov-1"}


@pytest.fixture(scope="function")
def engine():
    """In-memory database shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def collaborators(fake_generator, fake_executor):
    return Collaborators(generator=fake_generator, executor=fake_executor)


@pytest.fixture
def make_project(test_db):
    """Factory for committed projects."""

    def _make(
        phase=0,
        permissions=None,
        runtime_mode="shared",
        repo_url=None,
        night_shift=True,
        owner_id=OWNER_ID,
        name="Invoice Chaser",
    ):
        project = Project(
            owner_id=owner_id,
            name=name,
            phase=phase,
            permissions=permissions or {},
            runtime_mode=runtime_mode,
            repo_url=repo_url,
            night_shift=night_shift,
        )
        test_db.add(project)
        test_db.commit()
        return project

    return _make


@pytest.fixture
def add_packet(test_db):
    """Factory for committed phase packets."""

    def _add(project, phase=None, next_actions=None, confidence=75):
        phase = project.phase if phase is None else phase
        row = save_packet(test_db, project.id, phase, build_packet(phase, next_actions, confidence))
        test_db.commit()
        return row

    return _add


@pytest.fixture
def add_events(test_db):
    """Factory for analytics events."""

    def _add(project, event_name, count=1, amount_cents=0):
        for _ in range(count):
            test_db.add(AnalyticsEvent(project_id=project.id, event_name=event_name, amount_cents=amount_cents))
        test_db.commit()

    return _add


@pytest.fixture
def client(session_factory):
    """API client bound to the test database."""
    from greenlight.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
