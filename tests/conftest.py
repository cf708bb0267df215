"""Root conftest for all tests.

Shared fixtures: configured settings, an isolated in-memory database patched
into garmin_trainer.db.session, a local user with a Garmin connection, and an
HTTP client for the FastAPI app.
"""

import base64
import json
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from garmin_trainer.ai.client import GarminAiClient, GenerationResult, set_garmin_ai_client_override
from garmin_trainer.ai.model_config import invalidate_ai_model_cache
from garmin_trainer.config.settings import settings
from garmin_trainer.core.auth_jwt import create_session_token
from garmin_trainer.db.models import Base
from garmin_trainer.integrations.garmin.connections import upsert_garmin_connection
from garmin_trainer.integrations.garmin.oauth import GarminTokens
from garmin_trainer.services.credits import ensure_local_user
from garmin_trainer.utils.timezone import utcnow
from garmin_trainer.workouts.json_cleanup import parse_json_with_code_fence

TEST_ENCRYPTION_KEY = base64.b64encode(bytes(range(32))).decode("ascii")
CRON_SECRET = "cron-secret"
GARMIN_USER_ID = "garmin-user-1"


@pytest.fixture(autouse=True)
def configured_settings(monkeypatch):
    """Deterministic settings for every test; caches and overrides reset."""
    monkeypatch.setattr(settings, "garmin_token_encryption_key", TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(settings, "garmin_client_id", "client-id")
    monkeypatch.setattr(settings, "garmin_client_secret", "client-secret")
    monkeypatch.setattr(settings, "garmin_redirect_uri", "http://testserver/garmin/callback")
    monkeypatch.setattr(settings, "garmin_webhook_secret", "")
    monkeypatch.setattr(settings, "garmin_webhook_require_secret", False)
    monkeypatch.setattr(settings, "app_origin", "http://app.test")
    monkeypatch.setattr(settings, "auth_secret_key", "test-secret")
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "openrouter_api_key", "test-openrouter-key")
    monkeypatch.setattr(settings, "garmin_trainer_prompt", "")
    monkeypatch.setattr(settings, "garmin_trainer_auto_push", False)
    monkeypatch.setattr(settings, "garmin_trainer_correction_attempts", 1)
    monkeypatch.setattr(settings, "garmin_exercise_tool_enabled", True)
    invalidate_ai_model_cache()
    set_garmin_ai_client_override(None)
    yield settings
    invalidate_ai_model_cache()
    set_garmin_ai_client_override(None)


def _build_engine(url: str, **kwargs):
    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def _install_engine(monkeypatch, engine):
    import garmin_trainer.db.session as session_module

    monkeypatch.setattr(session_module, "_engine", engine)
    monkeypatch.setattr(
        session_module,
        "_SessionLocal",
        sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False),
    )


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """In-memory SQLite database shared by every get_session() call in the test.

    Yields a session for direct assertions; application code opens its own
    sessions on the same StaticPool connection.
    """
    engine = _build_engine("sqlite:///:memory:", poolclass=StaticPool)
    _install_engine(monkeypatch, engine)

    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(scope="function")
def file_db(monkeypatch, tmp_path):
    """File-backed SQLite database for tests that use several threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'garmin_trainer.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    _install_engine(monkeypatch, engine)
    yield engine
    engine.dispose()


@pytest.fixture
def user(db_session):
    return ensure_local_user("provider-user-1", email="athlete@example.com", name="Athlete")


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_session_token(user.provider_user_id)}"}


def make_tokens(access_token: str = "access-token", refresh_token: str = "refresh-token", expires_in_seconds: int = 3600) -> GarminTokens:
    return GarminTokens(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        scope="WORKOUT_IMPORT",
        access_token_expires_at=utcnow() + timedelta(seconds=expires_in_seconds),
    )


@pytest.fixture
def garmin_connection(user):
    return upsert_garmin_connection(user_id=user.id, garmin_user_id=GARMIN_USER_ID, tokens=make_tokens()).connection


@pytest.fixture
def client(db_session):
    from garmin_trainer.main import app

    return TestClient(app)


@pytest.fixture
def token_factory():
    return make_tokens


@pytest.fixture
def garmin_http(monkeypatch):
    """Route Garmin HTTP calls through a handler.

    Usage: `requests = garmin_http(handler)`; `requests` records every call.
    """
    from garmin_trainer.integrations.garmin import oauth, training_api

    def install(handler):
        requests = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        def factory():
            return httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))

        monkeypatch.setattr(oauth, "http_client", factory)
        monkeypatch.setattr(training_api, "http_client", factory)
        return requests

    return install


class FakeAiClient(GarminAiClient):
    """Scripted AI strategy: each model call pops the next answer (dict, text or exception)."""

    name = "fake"

    def __init__(self, answers):
        self.answers = list(answers)
        self.requests = []

    async def _generate_with_model(self, request, model_id):
        self.requests.append(request)
        if not self.answers:
            raise AssertionError("AI called more often than scripted")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        raw_text = answer if isinstance(answer, str) else json.dumps(answer)
        data, parse_error = parse_json_with_code_fence(raw_text)
        return GenerationResult(raw_text=raw_text, data=data, parse_error=parse_error, model_id=model_id)


@pytest.fixture
def fake_ai():
    def install(*answers):
        client = FakeAiClient(answers)
        set_garmin_ai_client_override(client)
        return client

    return install


@pytest.fixture
def running_workout():
    """A Garmin workout the validator accepts once normalized."""
    return {
        "ownerId": GARMIN_USER_ID,
        "workoutName": "Footing",
        "description": "45 min easy",
        "sport": "RUNNING",
        "workoutProvider": "Adapt2Life",
        "workoutSourceId": "Adapt2Life",
        "isSessionTransitionEnabled": False,
        "segments": [
            {
                "segmentOrder": 1,
                "sport": "RUNNING",
                "steps": [
                    {
                        "type": "WorkoutStep",
                        "stepOrder": 1,
                        "intensity": "ACTIVE",
                        "durationType": "TIME",
                        "durationValue": 2700,
                        "targetType": "HEART_RATE",
                        "targetValueLow": 65,
                        "targetValueHigh": 75,
                    }
                ],
            }
        ],
    }
