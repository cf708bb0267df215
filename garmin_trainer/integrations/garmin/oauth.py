"""Garmin OAuth2 + PKCE adapter.

Network calls only; callers persist tokens. Vendor error bodies are attached
to GarminOAuthError.cause for logs and never returned to end users.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

import httpx
from loguru import logger

from garmin_trainer.config.settings import settings
from garmin_trainer.core.errors import ConfigurationError, GarminOAuthError
from garmin_trainer.utils.timezone import utcnow

GARMIN_AUTHORIZE_URL = "https://connect.garmin.com/oauth2Confirm"
GARMIN_TOKEN_URL = "https://diauth.garmin.com/di-oauth2-service/oauth/token"
GARMIN_USER_ID_URL = "https://apis.garmin.com/wellness-api/rest/user/id"

# Tokens are treated as expired this long before the vendor says so
EXPIRY_SAFETY_MARGIN_SECONDS = 600


@dataclass(frozen=True)
class PkcePair:
    code_verifier: str
    code_challenge: str


@dataclass(frozen=True)
class GarminTokens:
    access_token: str
    refresh_token: str
    token_type: str | None
    scope: str | None
    access_token_expires_at: datetime


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    return secrets.token_hex(16)


def generate_pkce_pair() -> PkcePair:
    """48 random bytes -> 64-char verifier; challenge = base64url(sha256(verifier))."""
    verifier = _b64url(secrets.token_bytes(48))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PkcePair(code_verifier=verifier, code_challenge=challenge)


def _require_client_credentials() -> tuple[str, str]:
    if not settings.garmin_client_id or not settings.garmin_client_secret:
        raise ConfigurationError("GARMIN_CLIENT_ID and GARMIN_CLIENT_SECRET must be set")
    return settings.garmin_client_id, settings.garmin_client_secret


def build_authorization_url(*, state: str, code_challenge: str) -> str:
    client_id, _ = _require_client_credentials()
    params = {
        "client_id": client_id,
        "response_type": "code",
        "state": state,
        "redirect_uri": settings.garmin_redirect_uri,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{GARMIN_AUTHORIZE_URL}?{urlencode(params)}"


def http_client() -> httpx.AsyncClient:
    """Client used for every Garmin call (patched in tests)."""
    return httpx.AsyncClient(timeout=settings.garmin_http_timeout_seconds)


def compute_expires_at(expires_in: int | float | None, now: datetime | None = None) -> datetime:
    now = now or utcnow()
    seconds = float(expires_in or 0)
    return now + timedelta(seconds=max(0.0, seconds - EXPIRY_SAFETY_MARGIN_SECONDS))


def _parse_token_response(data: dict, *, previous_refresh_token: str | None = None) -> GarminTokens:
    access_token = data.get("access_token")
    refresh_token = data.get("refresh_token") or previous_refresh_token
    if not access_token or not refresh_token:
        raise GarminOAuthError("Garmin token response is missing tokens", cause=str(sorted(data)))
    return GarminTokens(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type=data.get("token_type"),
        scope=data.get("scope"),
        access_token_expires_at=compute_expires_at(data.get("expires_in")),
    )


async def _post_token_form(form: dict[str, str], action: str) -> dict:
    async with http_client() as client:
        try:
            resp = await client.post(
                GARMIN_TOKEN_URL,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"[GARMIN_OAUTH] {action} request failed: {type(e).__name__}: {e}")
            raise GarminOAuthError(f"Garmin {action} request failed") from e

    if resp.status_code >= 400:
        logger.error(f"[GARMIN_OAUTH] {action} failed: status={resp.status_code} body={resp.text[:500]}")
        raise GarminOAuthError(f"Garmin {action} failed", status_code=resp.status_code, cause=resp.text)

    try:
        return resp.json()
    except ValueError as e:
        raise GarminOAuthError(f"Garmin {action} returned invalid JSON", status_code=resp.status_code, cause=resp.text) from e


async def exchange_authorization_code(*, code: str, code_verifier: str) -> GarminTokens:
    """Exchange an authorization code for tokens.

    Raises:
        GarminOAuthError: Non-2xx answer or malformed token payload
        ConfigurationError: Client credentials missing
    """
    client_id, client_secret = _require_client_credentials()
    logger.info("[GARMIN_OAUTH] Exchanging authorization code")
    data = await _post_token_form(
        {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": settings.garmin_redirect_uri,
        },
        "token exchange",
    )
    return _parse_token_response(data)


async def refresh_access_token(refresh_token: str) -> GarminTokens:
    """Use a refresh token; Garmin may or may not rotate the refresh token."""
    client_id, client_secret = _require_client_credentials()
    logger.info("[GARMIN_OAUTH] Refreshing access token")
    data = await _post_token_form(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        "token refresh",
    )
    return _parse_token_response(data, previous_refresh_token=refresh_token)


async def fetch_garmin_user_id(access_token: str) -> str:
    """Return the Garmin user id owning the access token.

    Raises:
        GarminOAuthError: Request failed or `userId` is missing
    """
    async with http_client() as client:
        try:
            resp = await client.get(
                GARMIN_USER_ID_URL,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise GarminOAuthError("Garmin user id request failed") from e

    if resp.status_code >= 400:
        logger.error(f"[GARMIN_OAUTH] user id fetch failed: status={resp.status_code} body={resp.text[:500]}")
        raise GarminOAuthError("Garmin user id request failed", status_code=resp.status_code, cause=resp.text)

    try:
        user_id = resp.json().get("userId")
    except (ValueError, AttributeError) as e:
        raise GarminOAuthError("Garmin user id response is not a JSON object", cause=resp.text) from e
    if user_id is None or str(user_id).strip() == "":
        raise GarminOAuthError("Garmin user id response has no userId", cause=resp.text)
    return str(user_id).strip()
