from __future__ import annotations

import time
import uuid

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.domain.enums import ProviderName
from app.domain.models import GenerationParams
from app.main import create_app
from app.services.container import build_services

from conftest import JWT_SECRET, PENDING, ScriptedProvider, build_with, make_settings, succeeded


def _headers(user_id) -> dict:
    return {"X-User-Id": str(user_id)}


def _wait_for(client, url, headers, *, until=("completed", "failed"), attempts=200):
    body = {}
    for _ in range(attempts):
        body = client.get(url, headers=headers).json()
        if body.get("status") in until:
            return body
        time.sleep(0.02)
    raise AssertionError(f"{url} never reached {until}: {body}")


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}
    assert client.get("/api/health/ready").status_code == 200


def test_create_and_fetch_job(client, owner_id):
    r = client.post(
        "/api/generation/jobs",
        json={"prompt": "a happy song about summer", "provider": "test", "style": "pop", "durationSeconds": 60},
        headers=_headers(owner_id),
    )

    assert r.status_code == 200
    created = r.json()
    assert created["success"] is True
    assert created["message"] == "Music generation started"
    assert created["status"] == "processing"
    assert created["deduplicated"] is False

    body = _wait_for(client, f"/api/generation/jobs/{created['jobId']}", _headers(owner_id))
    assert body["status"] == "completed"
    assert body["progress"] == 100
    assert body["track"]["durationSeconds"] == 60
    assert body["track"]["audioLocation"]
    assert body["resultTrackId"] == body["track"]["id"]


def test_provider_is_case_insensitive(client, owner_id):
    r = client.post("/api/generation/jobs", json={"prompt": "tune", "provider": "TEST"}, headers=_headers(owner_id))

    assert r.status_code == 200


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"provider": "test"}, "Prompt is required"),
        ({"prompt": "   ", "provider": "test"}, "Prompt is required"),
        ({"prompt": "tune"}, "Provider is required"),
        ({"prompt": "tune", "provider": "udio"}, "Invalid provider"),
        ({"prompt": "tune", "provider": "test", "durationSeconds": 5}, "Duration must be between 10 and 480 seconds"),
        ({"prompt": "x" * 3001, "provider": "test"}, "Prompt must be at most 3000 characters"),
    ],
)
def test_invalid_requests_are_rejected(client, owner_id, services, payload, message):
    r = client.post("/api/generation/jobs", json=payload, headers=_headers(owner_id))

    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert message in body["error"]
    assert services.registry.active_keys() == []


def test_malformed_body_is_a_400(client, owner_id):
    r = client.post(
        "/api/generation/jobs",
        json={"prompt": "tune", "provider": "test", "durationSeconds": "long"},
        headers=_headers(owner_id),
    )

    assert r.status_code == 400
    assert r.json()["success"] is False


def test_unauthenticated_requests_are_rejected(client):
    r = client.post("/api/generation/jobs", json={"prompt": "tune", "provider": "test"})

    assert r.status_code == 401
    assert r.json() == {"success": False, "error": "Authentication required"}


def test_bearer_token_identifies_the_owner(client):
    user_id = uuid.uuid4()
    token = jwt.encode({"sub": str(user_id)}, JWT_SECRET, algorithm="HS256")
    auth = {"Authorization": f"Bearer {token}"}

    created = client.post("/api/generation/jobs", json={"prompt": "tune", "provider": "test"}, headers=auth).json()
    body = _wait_for(client, f"/api/generation/jobs/{created['jobId']}", auth)

    assert body["status"] == "completed"
    assert client.get(f"/api/generation/jobs/{created['jobId']}", headers=_headers(user_id)).status_code == 200


def test_bad_bearer_token_is_rejected(client):
    r = client.get(f"/api/generation/jobs/{uuid.uuid4()}", headers={"Authorization": "Bearer not-a-jwt"})

    assert r.status_code == 401
    assert r.json()["error"].startswith("Invalid token")


def test_x_user_id_can_be_disabled(owner_id):
    services = build_services(make_settings(ALLOW_X_USER_ID=False))
    with TestClient(create_app(services)) as c:
        r = c.get(f"/api/generation/jobs/{uuid.uuid4()}", headers=_headers(owner_id))

    assert r.status_code == 401


def test_jobs_of_other_owners_are_not_found(client, owner_id):
    created = client.post("/api/generation/jobs", json={"prompt": "tune", "provider": "test"}, headers=_headers(owner_id)).json()

    r = client.get(f"/api/generation/jobs/{created['jobId']}", headers=_headers(uuid.uuid4()))

    assert r.status_code == 404
    assert r.json()["success"] is False


def test_identical_request_while_active_is_deduplicated(owner_id):
    services = build_services(make_settings(TEST_PROVIDER_DELAY_SECONDS=30.0, JOB_POLL_INTERVAL_SECONDS=0.05))
    payload = {"prompt": "same again", "provider": "test"}

    with TestClient(create_app(services)) as c:
        first = c.post("/api/generation/jobs", json=payload, headers=_headers(owner_id)).json()
        second = c.post("/api/generation/jobs", json=payload, headers=_headers(owner_id)).json()

    assert second["deduplicated"] is True
    assert second["jobId"] == first["jobId"]
    assert second["message"] == "An identical request is already in progress"


def test_reset_starts_a_new_job(owner_id):
    services = build_services(make_settings(TEST_PROVIDER_DELAY_SECONDS=30.0, JOB_POLL_INTERVAL_SECONDS=0.05))

    with TestClient(create_app(services)) as c:
        created = c.post("/api/generation/jobs", json={"prompt": "retry me", "provider": "test"}, headers=_headers(owner_id)).json()
        r = c.post(f"/api/generation/jobs/{created['jobId']}/reset", headers=_headers(owner_id))
        old = c.get(f"/api/generation/jobs/{created['jobId']}", headers=_headers(owner_id)).json()

    assert r.status_code == 200
    body = r.json()
    assert body["previousJobId"] == created["jobId"]
    assert body["jobId"] != created["jobId"]
    assert old["status"] == "failed"
    assert old["errorCode"] == "CANCELLED"


def test_pipeline_runs_to_completion(client, owner_id):
    r = client.post(
        "/api/pipelines",
        json={"prompt": "an anthem", "provider": "test", "enableWavConversion": True},
        headers=_headers(owner_id),
    )

    assert r.status_code == 200
    created = r.json()
    assert [s["name"] for s in created["steps"]] == ["style_refinement", "base_generation", "wav_conversion"]
    assert all(s["status"] == "pending" for s in created["steps"])

    body = _wait_for(client, f"/api/pipelines/{created['pipelineId']}", _headers(owner_id))
    assert body["status"] == "completed"
    assert body["aggregateProgress"] == 1.0
    assert body["estimatedTimeRemaining"] == 0
    assert body["finalResult"]["trackId"]
    assert all(s["status"] == "completed" for s in body["steps"])


def test_pipeline_with_unsupported_stage_is_a_400(client, owner_id):
    r = client.post(
        "/api/pipelines",
        json={"prompt": "an anthem", "provider": "mureka", "enableVocalSeparation": True},
        headers=_headers(owner_id),
    )

    assert r.status_code == 400
    assert "vocal_separation" in r.json()["error"]


def test_cleanup_stuck_jobs(client, services, owner_id, backdate):
    outcome = client.portal.call(
        services.generation.create_job, owner_id, ProviderName.test, None, GenerationParams(prompt="orphan")
    )
    backdate(services.jobs, outcome.job.id, 20)

    r = client.post("/api/maintenance/cleanup-stuck-jobs")

    assert r.status_code == 200
    assert r.json() == {"success": True, "cleanedJobs": 1, "cleanedPipelines": 0, "message": "Cleaned up 1 stuck jobs"}
    job = client.get(f"/api/generation/jobs/{outcome.job.id}", headers=_headers(owner_id)).json()
    assert job["status"] == "failed"
    assert job["errorCode"] == "STALLED"


def test_cleanup_requires_maintenance_token_when_configured():
    services = build_services(make_settings(MAINTENANCE_TOKEN="m-secret"))

    with TestClient(create_app(services)) as c:
        denied = c.post("/api/maintenance/cleanup-stuck-jobs")
        allowed = c.post("/api/maintenance/cleanup-stuck-jobs", headers={"X-Maintenance-Token": "m-secret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["cleanedJobs"] == 0


def test_suno_callback_wakes_the_polling_job(owner_id):
    settings = make_settings(JOB_POLL_INTERVAL_SECONDS=30.0)
    services = build_with(settings, ScriptedProvider(polls=[succeeded()]))

    with TestClient(create_app(services)) as c:
        created = c.post(
            "/api/generation/jobs",
            json={"prompt": "wake up", "provider": "suno", "instrumental": True},
            headers=_headers(owner_id),
        ).json()
        url = f"/api/generation/jobs/{created['jobId']}"
        for _ in range(100):
            job = c.get(url, headers=_headers(owner_id)).json()
            if job["providerTaskId"]:
                break
            time.sleep(0.01)

        r = c.post(
            "/api/providers/suno/callback",
            json={"code": 200, "msg": "All generated successfully.", "data": {"callbackType": "complete", "task_id": job["providerTaskId"]}},
        )
        done = _wait_for(c, url, _headers(owner_id))

    assert r.json() == {"success": True, "nudged": True}
    assert done["status"] == "completed"


def test_suno_callback_for_unknown_task(client):
    r = client.post("/api/providers/suno/callback", json={"code": 200, "data": {"task_id": "nobody"}})

    assert r.status_code == 200
    assert r.json() == {"success": True, "nudged": False}


def test_suno_callback_rejects_bad_payload_and_token():
    services = build_with(make_settings(PROVIDER_CALLBACK_TOKEN="cb-secret"), ScriptedProvider(polls=[PENDING]))

    with TestClient(create_app(services)) as c:
        no_token = c.post("/api/providers/suno/callback", json={"code": 200, "data": {"task_id": "t"}})
        bad_body = c.post("/api/providers/suno/callback?token=cb-secret", json={"code": 200})

    assert no_token.status_code == 401
    assert bad_body.status_code == 400
