"""Tests for the /garmin-trainer and /cron endpoints."""

import json
from datetime import timedelta

import httpx
import pytest

from garmin_trainer.core.auth_jwt import create_session_token
from garmin_trainer.db.models import GarminTrainerJob, User
from garmin_trainer.integrations.garmin.connections import upsert_garmin_connection
from garmin_trainer.integrations.garmin.training_api import GARMIN_WORKOUT_URL
from garmin_trainer.services.credits import get_user
from garmin_trainer.services.trainer_jobs import TIMEOUT_ERROR, create_garmin_trainer_job
from garmin_trainer.utils.timezone import utcnow


class TestCreateJob:
    def test_requires_authentication(self, client):
        assert client.post("/garmin-trainer/jobs", json={"planMarkdown": "Footing"}).status_code == 401

    def test_invalid_token(self, client):
        response = client.post("/garmin-trainer/jobs", json={"planMarkdown": "Footing"}, headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_requires_garmin_connection(self, client, auth_headers):
        response = client.post("/garmin-trainer/jobs", json={"planMarkdown": "Footing"}, headers=auth_headers)

        assert response.status_code == 409

    @pytest.mark.parametrize("markdown", ["", "   "])
    def test_blank_markdown(self, client, auth_headers, garmin_connection, markdown):
        response = client.post("/garmin-trainer/jobs", json={"planMarkdown": markdown}, headers=auth_headers)

        assert response.status_code == 400

    def test_no_credit_left(self, client, auth_headers, garmin_connection, user, db_session, fake_ai):
        db_session.get(User, user.id).garmin_conversions_remaining = 0
        db_session.commit()
        ai = fake_ai()

        response = client.post("/garmin-trainer/jobs", json={"planMarkdown": "Footing"}, headers=auth_headers)

        assert response.status_code == 402
        assert "Free" in response.json()["detail"]
        assert db_session.query(GarminTrainerJob).count() == 0
        assert ai.requests == []

    def test_job_runs_in_background(self, client, auth_headers, garmin_connection, user, fake_ai, running_workout):
        fake_ai(running_workout)

        response = client.post("/garmin-trainer/jobs", json={"planMarkdown": "Footing 45 min"}, headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["etaMinutes"] == 2

        job = client.get(f"/garmin-trainer/jobs/{body['jobId']}", headers=auth_headers).json()
        assert job["status"] == "completed"
        assert job["resultJson"]["ownerId"] == garmin_connection.garmin_user_id
        assert get_user(user.id).garmin_conversions_remaining == 4


class TestReadJob:
    def test_non_numeric_id(self, client, auth_headers):
        assert client.get("/garmin-trainer/jobs/abc", headers=auth_headers).status_code == 400

    def test_missing_job(self, client, auth_headers):
        assert client.get("/garmin-trainer/jobs/999", headers=auth_headers).status_code == 404

    def test_id_beyond_integer_range(self, client, auth_headers):
        assert client.get("/garmin-trainer/jobs/99999999999999999999999", headers=auth_headers).status_code == 404

    def test_other_users_job(self, client, garmin_connection, user):
        job = create_garmin_trainer_job(user.id, "Footing")
        stranger = {"Authorization": f"Bearer {create_session_token('provider-user-2')}"}

        assert client.get(f"/garmin-trainer/jobs/{job.id}", headers=stranger).status_code == 404

    def test_stale_job_reports_timeout(self, client, auth_headers, garmin_connection, user, db_session):
        job = create_garmin_trainer_job(user.id, "Footing")
        row = db_session.get(GarminTrainerJob, job.id)
        row.updated_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        data = client.get(f"/garmin-trainer/jobs/{job.id}", headers=auth_headers).json()

        assert (data["status"], data["error"], data["creditRefunded"]) == ("failed", TIMEOUT_ERROR, True)
        assert get_user(user.id).garmin_conversions_remaining == 5


class TestPushWorkout:
    def test_invalid_workout_lists_issues(self, client, auth_headers, garmin_connection):
        response = client.post("/garmin-trainer/push", json={"workout": {"workoutName": "x"}}, headers=auth_headers)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Invalid workout"
        assert detail["issues"]

    def test_requires_connection(self, client, auth_headers, running_workout):
        response = client.post("/garmin-trainer/push", json={"workout": running_workout}, headers=auth_headers)

        assert response.status_code == 409

    def test_push_uses_connection_owner(self, client, auth_headers, garmin_connection, running_workout, garmin_http):
        running_workout["ownerId"] = "someone-else"
        requests = garmin_http(
            lambda request: httpx.Response(200, json={"workoutId": 321} if str(request.url) == GARMIN_WORKOUT_URL else {})
        )

        response = client.post("/garmin-trainer/push", json={"workout": running_workout}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["workoutId"] == "321"
        assert json.loads(requests[0].content)["ownerId"] == garmin_connection.garmin_user_id

    def test_vendor_status_is_mirrored(self, client, auth_headers, garmin_connection, running_workout, garmin_http):
        garmin_http(lambda request: httpx.Response(400, json={"message": "bad"}))

        response = client.post("/garmin-trainer/push", json={"workout": running_workout}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Garmin rejected the workout"

    def test_refused_token_refresh(self, client, auth_headers, user, running_workout, garmin_http, token_factory):
        upsert_garmin_connection(user_id=user.id, garmin_user_id="garmin-user-1", tokens=token_factory(expires_in_seconds=0))
        garmin_http(lambda request: httpx.Response(401, text="invalid_grant"))

        response = client.post("/garmin-trainer/push", json={"workout": running_workout}, headers=auth_headers)

        assert response.status_code == 502


class TestCron:
    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"X-Cron-Secret": "wrong"}],
    )
    def test_rejects_bad_secret(self, client, headers):
        assert client.post("/cron/garmin-trainer/jobs", headers=headers).status_code == 401

    def test_unconfigured_secret_rejects_everything(self, client, configured_settings, monkeypatch):
        monkeypatch.setattr(configured_settings, "cron_secret", "")

        assert client.post("/cron/garmin-trainer/jobs", headers={"Authorization": "Bearer "}).status_code == 401

    @pytest.mark.parametrize(
        "headers",
        [{"Authorization": "Bearer cron-secret"}, {"X-Cron-Secret": "cron-secret"}],
    )
    def test_processes_pending_jobs(self, client, headers, garmin_connection, user, fake_ai, running_workout):
        create_garmin_trainer_job(user.id, "Footing 45 min")
        fake_ai(running_workout)

        response = client.post("/cron/garmin-trainer/jobs", headers=headers)

        assert response.json() == {"processed": 1}

    def test_quota_reset(self, client, user, db_session):
        row = db_session.get(User, user.id)
        row.garmin_conversions_remaining = 0
        row.last_quota_reset_at = None
        db_session.commit()

        response = client.post("/cron/quotas/reset", headers={"X-Cron-Secret": "cron-secret"})

        assert response.status_code == 200
        assert response.json() == {"reset": 1}
        assert get_user(user.id).garmin_conversions_remaining == 5


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestCronAdmin:
    def test_select_ai_model(self, client, db_session, configured_settings, monkeypatch):
        monkeypatch.setattr(configured_settings, "garmin_trainer_fallback_models", "backup")

        response = client.put(
            "/cron/ai-models/garmin-trainer", json={"modelId": "admin-choice"}, headers={"X-Cron-Secret": "cron-secret"}
        )

        assert response.status_code == 200
        assert response.json() == {"feature": "garmin-trainer", "candidates": ["admin-choice", "backup"]}

    def test_select_ai_model_requires_secret(self, client):
        assert client.put("/cron/ai-models/garmin-trainer", json={"modelId": "x"}).status_code == 401

    def test_change_user_plan(self, client, user):
        response = client.put(f"/cron/users/{user.id}/plan", json={"planType": "paid"}, headers={"X-Cron-Secret": "cron-secret"})

        assert response.status_code == 200
        assert response.json()["garminConversionsRemaining"] == 35
        assert get_user(user.id).plan_type == "paid"

    def test_change_plan_unknown_plan_or_user(self, client, user):
        headers = {"X-Cron-Secret": "cron-secret"}

        assert client.put(f"/cron/users/{user.id}/plan", json={"planType": "platinum"}, headers=headers).status_code == 400
        assert client.put("/cron/users/999/plan", json={"planType": "paid"}, headers=headers).status_code == 404
