"""Tests for the Garmin OAuth2/PKCE adapter and the connection store."""

import base64
import hashlib
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from garmin_trainer.core.errors import ConfigurationError, GarminOAuthError, GarminTokenRefreshError
from garmin_trainer.core.encryption import decrypt_secret
from garmin_trainer.db.models import GarminConnection
from garmin_trainer.integrations.garmin import oauth
from garmin_trainer.integrations.garmin.connections import (
    delete_garmin_connection_by_garmin_user_id,
    ensure_garmin_access_token,
    fetch_garmin_connection_by_garmin_user_id,
    fetch_garmin_connection_by_user_id,
    upsert_garmin_connection,
)
from garmin_trainer.integrations.garmin.oauth_sessions import (
    consume_oauth_session,
    create_oauth_session,
    sweep_expired_oauth_sessions,
)
from garmin_trainer.services.credits import ensure_local_user

GARMIN_USER_ID = "garmin-user-1"


class TestPkce:
    def test_pair_matches_s256(self):
        pair = oauth.generate_pkce_pair()

        expected = base64.urlsafe_b64encode(hashlib.sha256(pair.code_verifier.encode()).digest()).rstrip(b"=").decode()
        assert pair.code_challenge == expected
        assert len(pair.code_verifier) == 64

    def test_state_is_random_hex(self):
        assert len(oauth.generate_state()) == 32
        assert oauth.generate_state() != oauth.generate_state()

    def test_authorization_url(self):
        url = oauth.build_authorization_url(state="abc", code_challenge="challenge")

        query = parse_qs(urlparse(url).query)
        assert url.startswith(oauth.GARMIN_AUTHORIZE_URL)
        assert query["code_challenge_method"] == ["S256"]
        assert query["state"] == ["abc"]
        assert query["client_id"] == ["client-id"]

    def test_authorization_url_requires_credentials(self, configured_settings, monkeypatch):
        monkeypatch.setattr(configured_settings, "garmin_client_secret", "")

        with pytest.raises(ConfigurationError):
            oauth.build_authorization_url(state="abc", code_challenge="challenge")


def test_compute_expires_at_applies_safety_margin():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    assert oauth.compute_expires_at(3600, now) == now + timedelta(seconds=3000)
    assert oauth.compute_expires_at(None, now) == now


class TestTokenCalls:
    @pytest.mark.asyncio
    async def test_exchange_authorization_code(self, garmin_http):
        requests = garmin_http(
            lambda request: httpx.Response(200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 86400, "scope": "WORKOUT_IMPORT"}),
        )

        tokens = await oauth.exchange_authorization_code(code="the-code", code_verifier="the-verifier")

        assert (tokens.access_token, tokens.refresh_token, tokens.scope) == ("at", "rt", "WORKOUT_IMPORT")
        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code_verifier"] == ["the-verifier"]

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_not_rotated(self, garmin_http):
        garmin_http(lambda request: httpx.Response(200, json={"access_token": "new-at", "expires_in": 3600}))

        tokens = await oauth.refresh_access_token("old-rt")

        assert tokens.refresh_token == "old-rt"

    @pytest.mark.asyncio
    async def test_vendor_error_keeps_body_as_cause(self, garmin_http):
        garmin_http(lambda request: httpx.Response(400, text='{"error": "invalid_grant"}'))

        with pytest.raises(GarminOAuthError) as exc_info:
            await oauth.exchange_authorization_code(code="bad", code_verifier="v")

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.cause
        assert "invalid_grant" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_fetch_user_id(self, garmin_http):
        requests = garmin_http(lambda request: httpx.Response(200, json={"userId": 123456}))

        assert await oauth.fetch_garmin_user_id("at") == "123456"
        assert requests[0].headers["Authorization"] == "Bearer at"

    @pytest.mark.asyncio
    async def test_fetch_user_id_missing(self, garmin_http):
        garmin_http(lambda request: httpx.Response(200, json={}))

        with pytest.raises(GarminOAuthError):
            await oauth.fetch_garmin_user_id("at")


class TestConnectionStore:
    def test_tokens_are_stored_encrypted(self, garmin_connection, db_session):
        row = db_session.get(GarminConnection, garmin_connection.id)

        assert row.access_token_encrypted != "access-token"
        assert decrypt_secret(row.access_token_encrypted) == "access-token"
        assert decrypt_secret(row.refresh_token_encrypted) == "refresh-token"

    def test_relinking_moves_garmin_account(self, garmin_connection, user, token_factory):
        other = ensure_local_user("provider-user-2")

        result = upsert_garmin_connection(user_id=other.id, garmin_user_id=GARMIN_USER_ID, tokens=token_factory())

        assert result.reassigned_from_user_id == user.id
        assert fetch_garmin_connection_by_user_id(user.id) is None
        assert fetch_garmin_connection_by_garmin_user_id(GARMIN_USER_ID).user_id == other.id

    def test_same_user_update_is_not_reassignment(self, garmin_connection, user, token_factory):
        result = upsert_garmin_connection(user_id=user.id, garmin_user_id=GARMIN_USER_ID, tokens=token_factory(access_token="at-2"))

        assert result.reassigned_from_user_id is None
        assert result.connection.id == garmin_connection.id

    def test_delete_by_garmin_user_id(self, garmin_connection):
        assert delete_garmin_connection_by_garmin_user_id(GARMIN_USER_ID) is True
        assert delete_garmin_connection_by_garmin_user_id(GARMIN_USER_ID) is False


class TestEnsureAccessToken:
    @pytest.mark.asyncio
    async def test_fresh_token_is_returned_without_refresh(self, garmin_connection, garmin_http):
        requests = garmin_http(lambda request: httpx.Response(500))

        token, _ = await ensure_garmin_access_token(garmin_connection)

        assert token == "access-token"
        assert requests == []

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_and_persisted(self, user, garmin_http, token_factory):
        connection = upsert_garmin_connection(user_id=user.id, garmin_user_id=GARMIN_USER_ID, tokens=token_factory(expires_in_seconds=30)).connection
        requests = garmin_http(
            lambda request: httpx.Response(200, json={"access_token": "new-at", "refresh_token": "new-rt", "expires_in": 86400}),
        )

        token, refreshed = await ensure_garmin_access_token(connection)

        assert token == "new-at"
        assert parse_qs(requests[0].content.decode())["refresh_token"] == ["refresh-token"]
        stored = fetch_garmin_connection_by_user_id(user.id)
        assert decrypt_secret(stored.access_token_encrypted) == "new-at"
        assert decrypt_secret(stored.refresh_token_encrypted) == "new-rt"
        assert refreshed.id == connection.id

    @pytest.mark.asyncio
    async def test_refused_refresh(self, user, garmin_http, token_factory):
        connection = upsert_garmin_connection(user_id=user.id, garmin_user_id=GARMIN_USER_ID, tokens=token_factory(expires_in_seconds=0)).connection
        garmin_http(lambda request: httpx.Response(401, text="invalid_grant"))

        with pytest.raises(GarminTokenRefreshError):
            await ensure_garmin_access_token(connection)

    @pytest.mark.asyncio
    async def test_undecryptable_tokens(self, garmin_connection, configured_settings, monkeypatch):
        monkeypatch.setattr(configured_settings, "garmin_token_encryption_key", base64.b64encode(b"z" * 32).decode())

        with pytest.raises(GarminTokenRefreshError, match="reconnect"):
            await ensure_garmin_access_token(garmin_connection)


class TestOAuthSessions:
    def test_session_is_single_use(self, user):
        create_oauth_session(state="state-1", code_verifier="verifier", user_id=user.id, provider_user_id=user.provider_user_id)

        consumed = consume_oauth_session("state-1")

        assert consumed.code_verifier == "verifier"
        assert consume_oauth_session("state-1") is None

    def test_sweep_removes_expired(self, user, configured_settings, monkeypatch):
        monkeypatch.setattr(configured_settings, "garmin_oauth_session_ttl_seconds", -1)
        create_oauth_session(state="old", code_verifier="v", user_id=user.id, provider_user_id=user.provider_user_id)

        assert sweep_expired_oauth_sessions() == 1
        assert consume_oauth_session("old") is None
