"""Tests for the night shift sweep."""

from datetime import timedelta

import pytest

from greenlight.database import utcnow
from greenlight.models.approval import Approval
from greenlight.models.job import Job, JobType
from greenlight.models.project import PhasePacket, Project, TaskLog
from greenlight.services.approvals import create_approval, decide
from greenlight.services.projects import record_task_log
from greenlight.services.scheduler import NightShiftScheduler

ADS_GRANTS = {"ads_enabled": True, "ads_budget_cap": 50, "email_send": True}


@pytest.fixture
def scheduler():
    return NightShiftScheduler(auto_approve_low_risk=False)


def approvals_for(db, project, action_type=None):
    db.expire_all()
    query = db.query(Approval).filter(Approval.project_id == project.id)
    if action_type:
        query = query.filter(Approval.action_type == action_type)
    return query.all()


def steps_for(db, project):
    db.expire_all()
    return [(t.step, t.status) for t in db.query(TaskLog).filter(TaskLog.project_id == project.id).order_by(TaskLog.id)]


def test_phase2_ads_scenario(test_db, make_project, add_packet, scheduler):
    """Test a phase 2 project with ads granted gets a pending high-risk ads approval."""
    project = make_project(phase=2, permissions=ADS_GRANTS)
    add_packet(project, next_actions=["Launch Meta ads test campaign"])

    result = scheduler.sweep_project(test_db, project.id)

    assert result.status == "completed"
    assert result.approvals_created == 1
    ads = approvals_for(test_db, project, "activate_meta_ads_campaign")
    assert len(ads) == 1
    assert (ads[0].status, ads[0].risk, ads[0].type, ads[0].version) == ("pending", "high", "execution", 1)
    assert ads[0].agent_source == "night_shift"
    assert ads[0].phase == 2


def test_sequential_sweeps_do_not_duplicate_approvals(test_db, make_project, add_packet, scheduler):
    """Test a second sweep finds the open approval and adds nothing."""
    project = make_project(phase=2, permissions=ADS_GRANTS)
    add_packet(project, next_actions=["Launch Meta ads test campaign"])

    scheduler.sweep_project(test_db, project.id)
    second = scheduler.sweep_project(test_db, project.id)

    assert second.status == "skipped"
    assert len(approvals_for(test_db, project, "activate_meta_ads_campaign")) == 1


def test_approved_action_is_not_proposed_again(test_db, make_project, add_packet, scheduler):
    """Test an approved (not yet executed) action still counts as open."""
    project = make_project(phase=2, permissions=ADS_GRANTS)
    add_packet(project, next_actions=["Launch Meta ads test campaign"])
    scheduler.sweep_project(test_db, project.id)
    ads = approvals_for(test_db, project, "activate_meta_ads_campaign")[0]
    ads.status = "approved"
    ads.version = 2
    test_db.commit()

    result = scheduler.sweep_project(test_db, project.id)

    assert result.status == "completed"
    assert result.approvals_created == 0
    assert len(approvals_for(test_db, project, "activate_meta_ads_campaign")) == 1


def test_pending_approval_blocks_sweep(test_db, make_project, add_packet, scheduler):
    """Test a project with a pending approval is skipped without new work."""
    project = make_project(phase=2, permissions=ADS_GRANTS)
    add_packet(project, next_actions=["Launch Meta ads test campaign"])
    create_approval(test_db, project.id, 2, "phase_advance", "Review", "phase2_distribute_review", "low")
    test_db.commit()

    result = scheduler.sweep_project(test_db, project.id)

    assert result.status == "skipped"
    assert "pending" in result.detail
    assert len(approvals_for(test_db, project)) == 1
    assert test_db.query(Job).count() == 0
    assert steps_for(test_db, project) == [("health_check", "running"), ("health_check", "completed")]


def test_missing_packet_skips(test_db, make_project, scheduler):
    """Test projects without a packet for their phase are skipped."""
    project = make_project(phase=1)

    result = scheduler.sweep_project(test_db, project.id)

    assert result.status == "skipped"
    assert "packet" in result.detail


def test_every_step_is_logged(test_db, make_project, add_packet, scheduler):
    """Test health check, actions and summary each leave running/completed entries."""
    project = make_project(phase=1, permissions={"email_send": True})
    add_packet(project, next_actions=["Send welcome email sequence", "Interview five customers"])

    scheduler.sweep_project(test_db, project.id)

    assert steps_for(test_db, project) == [
        ("health_check", "running"),
        ("health_check", "completed"),
        ("action:send_welcome_email_sequence", "running"),
        ("action:send_welcome_email_sequence", "completed"),
        ("action", "running"),
        ("action", "completed"),
        ("summary", "running"),
        ("summary", "completed"),
    ]


def test_low_risk_auto_approval_enqueues_execution(test_db, make_project, add_packet):
    """Test low-risk actions are approved and queued when auto-approval is on."""
    project = make_project(phase=2, permissions=ADS_GRANTS)
    add_packet(project, next_actions=["Launch Meta ads test campaign", "Send lifecycle email to new signups"])

    result = NightShiftScheduler(auto_approve_low_risk=True).sweep_project(test_db, project.id)

    assert result.approvals_created == 2
    assert result.jobs_enqueued == 1

    email = approvals_for(test_db, project, "send_phase2_lifecycle_email")[0]
    assert (email.status, email.version, email.resolved_by) == ("approved", 2, "night_shift")
    ads = approvals_for(test_db, project, "activate_meta_ads_campaign")[0]
    assert ads.status == "pending"

    job = test_db.query(Job).one()
    assert job.job_type == JobType.APPROVAL_EXECUTE
    assert job.idempotency_key == f"approval:{email.id}"


def test_recent_failures_raise_review_approval(test_db, make_project, add_packet, scheduler):
    """Test failed tasks in the window produce one medium-risk review approval."""
    project = make_project(phase=1, runtime_mode="attached")
    add_packet(project, next_actions=["Interview five customers"])
    record_task_log(test_db, project.id, "engineering_agent", "deploy_landing_page", "failed", "hook 500")

    result = scheduler.sweep_project(test_db, project.id)

    reviews = approvals_for(test_db, project, "review_failed_tasks")
    assert len(reviews) == 1
    assert (reviews[0].risk, reviews[0].status) == ("medium", "pending")
    assert result.approvals_created == 1
    assert "1 failed" in result.detail


def test_failures_already_reviewed_are_not_reported_again(test_db, make_project, add_packet, scheduler):
    """Test a resolved review covers the failures it was raised for."""
    project = make_project(phase=1, runtime_mode="attached")
    add_packet(project, next_actions=["Interview five customers"])
    record_task_log(test_db, project.id, "engineering_agent", "deploy_landing_page", "failed", "hook 500")
    scheduler.sweep_project(test_db, project.id)
    review = approvals_for(test_db, project, "review_failed_tasks")[0]
    review.status = "denied"
    test_db.commit()

    scheduler.sweep_project(test_db, project.id)

    assert len(approvals_for(test_db, project, "review_failed_tasks")) == 1


def test_old_failures_are_outside_window(test_db, make_project, add_packet, scheduler):
    """Test failures older than the window are ignored."""
    project = make_project(phase=1, runtime_mode="attached")
    add_packet(project, next_actions=["Interview five customers"])
    test_db.add(
        TaskLog(
            project_id=project.id,
            agent="engineering_agent",
            step="deploy_landing_page",
            status="failed",
            created_at=utcnow() - timedelta(days=3),
        )
    )
    test_db.commit()

    scheduler.sweep_project(test_db, project.id)

    assert approvals_for(test_db, project, "review_failed_tasks") == []


def test_one_broken_project_does_not_stop_the_batch(test_db, make_project, add_packet, scheduler):
    """Test per-project isolation: an unparseable packet fails only its own project."""
    broken = make_project(phase=2, permissions=ADS_GRANTS, name="Broken")
    test_db.add(PhasePacket(project_id=broken.id, phase=2, packet={"summary": "missing everything"}))
    test_db.commit()
    healthy = make_project(phase=2, permissions=ADS_GRANTS, name="Healthy")
    add_packet(healthy, next_actions=["Launch Meta ads test campaign"])

    report = scheduler.run_sweep(test_db)

    by_id = {r.project_id: r for r in report.results}
    assert by_id[str(broken.id)].status == "failed"
    assert by_id[str(healthy.id)].status == "completed"
    assert report.counts["failed"] == 1
    assert report.counts["completed"] == 1
    assert ("nightshift_cycle", "failed") in steps_for(test_db, broken)
    assert len(approvals_for(test_db, healthy, "activate_meta_ads_campaign")) == 1


def test_sweep_selects_opted_in_projects_oldest_first(test_db, make_project, scheduler):
    """Test only night-shift projects are swept, least recently updated first."""
    newer = make_project(name="Newer")
    older = make_project(name="Older")
    make_project(name="Opted out", night_shift=False)
    older.updated_at = utcnow() - timedelta(days=1)
    test_db.commit()

    assert scheduler.eligible_projects(test_db) == [older.id, newer.id]
    assert scheduler.eligible_projects(test_db, limit=1) == [older.id]


def test_launched_project_keeps_proposing_phase3_actions(test_db, make_project, add_packet, scheduler):
    """Test approving go-live does not leave the night shift without a packet."""
    project = make_project(
        phase=3,
        permissions={"deploy": True, "repo_write": True},
        repo_url="https://example.com/acme/app",
    )
    add_packet(project, next_actions=["Trigger repo workflow for launch branch", "Deploy production release"])
    gate = create_approval(test_db, project.id, 3, "phase_advance", "Go live", "phase3_golive_review", "medium")
    test_db.commit()
    decide(test_db, gate.id, expected_version=1, decision="approved", actor_id=project.owner_id)
    test_db.expire_all()
    assert test_db.get(Project, project.id).phase == 4

    result = scheduler.sweep_project(test_db, project.id)

    assert result.status == "completed"
    assert result.approvals_created == 2
    assert len(approvals_for(test_db, project, "trigger_phase3_repo_workflow")) == 1
    assert len(approvals_for(test_db, project, "trigger_phase3_deploy")) == 1
