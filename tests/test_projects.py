"""Tests for project-side helpers."""

import uuid
from datetime import timedelta

import pytest

from greenlight.database import utcnow
from greenlight.errors import NotFoundError
from greenlight.services.projects import (
    count_recent_tasks,
    load_kpi_snapshot,
    load_latest_packet,
    load_project,
    load_project_permissions,
    permissions_from_raw,
    record_task_log,
)


def test_missing_grants_are_denied():
    """Test absent and null grants read as not granted."""
    permissions = permissions_from_raw({"email_send": True, "deploy": None})

    assert permissions.email_send is True
    assert permissions.deploy is False
    assert permissions.ads_budget_cap == 0


def test_load_project_permissions(make_project, test_db):
    """Test grants are read from the stored project."""
    project = make_project(permissions={"ads_enabled": True, "ads_budget_cap": 15})

    permissions = load_project_permissions(test_db, project.id)

    assert permissions.ads_enabled is True
    assert permissions.ads_budget_cap == 15


def test_unknown_project(test_db):
    """Test unknown projects raise NotFoundError."""
    with pytest.raises(NotFoundError):
        load_project(test_db, uuid.uuid4())


def test_latest_packet_wins(make_project, add_packet, test_db):
    """Test the newest packet for the phase is returned."""
    project = make_project(phase=1)
    old = add_packet(project, next_actions=["Old plan"])
    old.created_at = utcnow() - timedelta(days=1)
    test_db.commit()
    new = add_packet(project, next_actions=["New plan"])

    assert load_latest_packet(test_db, project.id, 1).id == new.id
    assert load_latest_packet(test_db, project.id, 0) is None


def test_packet_lookup_falls_back_to_earlier_phases(make_project, add_packet, test_db):
    """Test later phases without their own packet use the newest earlier one."""
    project = make_project(phase=4)
    add_packet(project, phase=1)
    golive = add_packet(project, phase=3)

    assert load_latest_packet(test_db, project.id, 4).id == golive.id
    assert load_latest_packet(test_db, project.id, 2).phase == 1


def test_count_recent_tasks(make_project, test_db):
    """Test only completed and failed entries since the cutoff are counted."""
    project = make_project()
    record_task_log(test_db, project.id, "ceo_agent", "phase0_init", "running")
    record_task_log(test_db, project.id, "ceo_agent", "phase0_complete", "completed")
    record_task_log(test_db, project.id, "engineering_agent", "deploy_landing_page", "failed", "timeout")

    counts = count_recent_tasks(test_db, project.id, utcnow() - timedelta(hours=1))

    assert counts == {"completed": 1, "failed": 1}
    assert count_recent_tasks(test_db, project.id, utcnow() + timedelta(hours=1)) == {"completed": 0, "failed": 0}


def test_kpi_snapshot(make_project, add_events, test_db):
    """Test seven-day counters are built from analytics events."""
    project = make_project()
    add_events(project, "traffic", count=4)
    add_events(project, "lead", count=2)
    add_events(project, "payment", count=1, amount_cents=4900)

    kpis = load_kpi_snapshot(test_db, project.id)

    assert (kpis.traffic_7d, kpis.leads_7d, kpis.payments_7d, kpis.revenue_cents_7d) == (4, 2, 1, 4900)
