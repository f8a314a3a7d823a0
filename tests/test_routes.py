"""Tests for API routes."""

import uuid

import pytest

from greenlight.models.approval import Approval
from greenlight.models.job import Job, JobType
from greenlight.services.approvals import create_approval
from greenlight.services.idempotency import payload_key

OWNER = {"X-User-Id": "owner-1"}
CRON = {"Authorization": "Bearer cron-test-secret"}


@pytest.fixture
def pending_gate(test_db, make_project):
    project = make_project(phase=0)
    approval = create_approval(test_db, project.id, 0, "phase_advance", "Review", "phase0_packet_review", "medium")
    test_db.commit()
    return approval


def job_request(project_id, **overrides):
    body = {
        "project_id": str(project_id),
        "job_type": JobType.APPROVAL_EXECUTE,
        "agent_key": "engineering",
        "payload": {"approval_id": "a-1"},
        "idempotency_key": "approval:a-1",
    }
    body.update(overrides)
    return body


def test_health(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# Jobs
def test_enqueue_is_idempotent(client):
    """Test repeated enqueue requests return the same job."""
    project_id = uuid.uuid4()

    first = client.post("/jobs", json=job_request(project_id))
    second = client.post("/jobs", json=job_request(project_id))

    assert first.status_code == 200
    assert first.json()["job_id"] == second.json()["job_id"]


def test_enqueue_derives_key_from_payload(client):
    """Test a missing key is derived from job type and payload."""
    body = job_request(uuid.uuid4(), idempotency_key=None)

    response = client.post("/jobs", json=body)

    assert response.json()["idempotency_key"] == payload_key(JobType.APPROVAL_EXECUTE, {"approval_id": "a-1"})


def test_enqueue_unknown_job_type(client):
    """Test domain validation errors map to 422 with an error body."""
    response = client.post("/jobs", json=job_request(uuid.uuid4(), job_type="bogus"))

    assert response.status_code == 422
    assert "bogus" in response.json()["error"]


def test_get_job(client):
    """Test job status lookup."""
    job_id = client.post("/jobs", json=job_request(uuid.uuid4())).json()["job_id"]

    response = client.get(f"/jobs/{job_id}")

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["attempt_count"] == 0


def test_get_unknown_job(client):
    """Test unknown jobs return 404."""
    response = client.get(f"/jobs/{uuid.uuid4()}")

    assert response.status_code == 404
    assert "error" in response.json()


def test_job_counts(client):
    """Test per-status counts for a project."""
    project_id = uuid.uuid4()
    client.post("/jobs", json=job_request(project_id))

    response = client.get("/jobs/counts", params={"project_id": str(project_id)})

    assert response.json() == {"queued": 1, "running": 0, "completed": 0, "failed": 0}


# Approvals
def test_decision_requires_user(client, pending_gate):
    """Test decisions without a caller identity are rejected."""
    response = client.post(f"/approvals/{pending_gate.id}/decision", json={"decision": "approved", "version": 1})

    assert response.status_code == 401


def test_approve_then_stale_retry(client, test_db, pending_gate):
    """Test approval bumps the version and a stale retry conflicts."""
    url = f"/approvals/{pending_gate.id}/decision"

    approved = client.post(url, json={"decision": "approved", "version": 1}, headers=OWNER)
    stale = client.post(url, json={"decision": "denied", "version": 1}, headers=OWNER)

    assert approved.status_code == 200
    body = approved.json()
    assert (body["ok"], body["status"], body["version"], body["relaunch_required"]) == (True, "approved", 2, True)
    assert body["job_id"] is not None

    assert stale.status_code == 409
    assert stale.json()["current_version"] == 2
    test_db.expire_all()
    assert test_db.get(Approval, pending_gate.id).status == "approved"


def test_decision_by_non_owner(client, pending_gate):
    """Test only the project owner may decide."""
    response = client.post(
        f"/approvals/{pending_gate.id}/decision",
        json={"decision": "approved", "version": 1},
        headers={"X-User-Id": "someone-else"},
    )

    assert response.status_code == 403


def test_revision_without_guidance(client, pending_gate):
    """Test revising a phase gate needs guidance."""
    response = client.post(
        f"/approvals/{pending_gate.id}/decision",
        json={"decision": "revised", "version": 1, "guidance": " "},
        headers=OWNER,
    )

    assert response.status_code == 422


def test_list_approvals(client, pending_gate):
    """Test listing approvals by project and status."""
    response = client.get("/approvals", params={"project_id": str(pending_gate.project_id), "status": "pending"})

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [str(pending_gate.id)]


# Night shift triggers
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer wrong"},
        {"Authorization": "cron-test-secret"},
        {"X-Night-Shift-Secret": "cron-test-secret"},
    ],
)
def test_night_shift_rejects_bad_credentials(client, headers):
    """Test the sweep endpoint requires a scheduler secret."""
    response = client.post("/nightshift/run", headers=headers)

    assert response.status_code == 401


@pytest.mark.parametrize("method", ["get", "post"])
def test_night_shift_run_with_cron_secret(client, make_project, add_packet, method):
    """Test an authorized sweep reports per-project results."""
    project = make_project(phase=2, permissions={"ads_enabled": True, "ads_budget_cap": 40})
    add_packet(project, next_actions=["Launch Meta ads test campaign"])

    response = getattr(client, method)("/nightshift/run", headers=CRON)

    assert response.status_code == 200
    body = response.json()
    assert body["project_count"] == 1
    assert body["results"][0]["project_id"] == str(project.id)
    assert body["results"][0]["approvals_created"] == 1
    assert body["counts"]["completed"] == 1


def test_night_shift_run_with_header_secret(client):
    """Test the night shift header secret is accepted."""
    response = client.get("/nightshift/run", headers={"X-Night-Shift-Secret": "night-test-secret"})

    assert response.status_code == 200
    assert response.json()["project_count"] == 0


def test_scheduler_run_enqueues_one_sweep_per_minute(client, test_db):
    """Test repeated scheduler ticks within a minute share one sweep job."""
    first = client.post("/scheduler/run", headers=CRON).json()
    second = client.get("/scheduler/run", headers=CRON).json()

    assert first["ok"] is True
    if first["minute"] == second["minute"]:
        assert first["job_id"] == second["job_id"]

    job = test_db.get(Job, uuid.UUID(first["job_id"]))
    assert job.job_type == JobType.NIGHTSHIFT_SWEEP
    assert job.idempotency_key == f"scheduler:{first['minute']}"


def test_scheduler_run_requires_secret(client, test_db):
    """Test unauthenticated ticks enqueue nothing."""
    response = client.post("/scheduler/run")

    assert response.status_code == 401
    assert test_db.query(Job).count() == 0
