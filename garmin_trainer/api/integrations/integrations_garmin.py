"""Garmin OAuth endpoints and connection management.

- GET /garmin/oauth/start: begin the PKCE flow (authenticated)
- GET /garmin/callback: vendor redirect target; always ends in a redirect to
  the integration page with `status` and `reason`
- GET /garmin/connection: connection status (never tokens)
- DELETE /garmin/connection: deregister at Garmin and unlink
"""

from __future__ import annotations

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from loguru import logger

from garmin_trainer.api.dependencies.auth import get_current_user_id, get_optional_user_id
from garmin_trainer.config.settings import settings
from garmin_trainer.core.errors import ConfigurationError, GarminApiError, GarminOAuthError, GarminTokenRefreshError
from garmin_trainer.integrations.garmin.connections import (
    delete_garmin_connection_by_user_id,
    ensure_garmin_access_token,
    fetch_garmin_connection_by_user_id,
    upsert_garmin_connection,
)
from garmin_trainer.integrations.garmin.oauth import (
    build_authorization_url,
    exchange_authorization_code,
    fetch_garmin_user_id,
    generate_pkce_pair,
    generate_state,
)
from garmin_trainer.integrations.garmin.oauth_sessions import (
    consume_oauth_session,
    create_oauth_session,
    sweep_expired_oauth_sessions,
)
from garmin_trainer.integrations.garmin.training_api import deregister_user
from garmin_trainer.services.credits import get_user
from garmin_trainer.utils.timezone import to_utc, utcnow

router = APIRouter(prefix="/garmin", tags=["integrations", "garmin"])


def integration_redirect(status_value: str, reason: str) -> RedirectResponse:
    query = urlencode({"status": status_value, "reason": reason})
    return RedirectResponse(
        url=f"{settings.app_origin.rstrip('/')}/integrations/garmin?{query}",
        status_code=status.HTTP_302_FOUND,
    )


def _error(reason: str) -> RedirectResponse:
    logger.info(f"[GARMIN_OAUTH] Callback ended with error reason={reason}")
    return integration_redirect("error", reason)


@router.get("/oauth/start")
def garmin_oauth_start(user_id: int = Depends(get_current_user_id)) -> RedirectResponse:
    if fetch_garmin_connection_by_user_id(user_id) is not None:
        return integration_redirect("success", "already_connected")

    user = get_user(user_id)
    state = generate_state()
    pkce = generate_pkce_pair()
    try:
        authorize_url = build_authorization_url(state=state, code_challenge=pkce.code_challenge)
    except ConfigurationError as e:
        logger.error(f"[GARMIN_OAUTH] {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Service unavailable") from e

    create_oauth_session(
        state=state,
        code_verifier=pkce.code_verifier,
        user_id=user_id,
        provider_user_id=user.provider_user_id if user else "",
    )
    logger.info(f"[GARMIN_OAUTH] Authorization started for user_id={user_id}")
    return RedirectResponse(url=authorize_url, status_code=status.HTTP_302_FOUND)


async def _handle_callback(request: Request, auth_user_id: int | None) -> RedirectResponse:
    params = request.query_params
    if params.get("error"):
        logger.info(f"[GARMIN_OAUTH] Authorization declined: {params.get('error')}")
        return _error("authorization_declined")

    code, state = params.get("code"), params.get("state")
    if not code or not state:
        return _error("missing_parameters")

    sweep_expired_oauth_sessions()
    oauth_session = consume_oauth_session(state)
    if oauth_session is None:
        return _error("invalid_session")
    if to_utc(oauth_session.expires_at) < utcnow():
        return _error("invalid_session")

    if auth_user_id is None or auth_user_id != oauth_session.user_id:
        return _error("unauthorized")
    if get_user(oauth_session.user_id) is None:
        return _error("user_not_found")

    try:
        tokens = await exchange_authorization_code(code=code, code_verifier=oauth_session.code_verifier)
        garmin_user_id = await fetch_garmin_user_id(tokens.access_token)
    except GarminOAuthError as e:
        logger.error(f"[GARMIN_OAUTH] OAuth failed for user_id={oauth_session.user_id}: {e} (status={e.status_code})")
        return _error("oauth_failed")

    result = upsert_garmin_connection(user_id=oauth_session.user_id, garmin_user_id=garmin_user_id, tokens=tokens)
    if result.reassigned_from_user_id is not None:
        return integration_redirect("success", "already_linked")
    return integration_redirect("success", "connected")


@router.get("/callback")
async def garmin_oauth_callback(request: Request, auth_user_id: int | None = Depends(get_optional_user_id)) -> RedirectResponse:
    try:
        return await _handle_callback(request, auth_user_id)
    except Exception as e:
        logger.exception(f"[GARMIN_OAUTH] Unexpected callback failure: {type(e).__name__}: {e}")
        return _error("unexpected_error")


@router.get("/connection")
def garmin_connection_status(user_id: int = Depends(get_current_user_id)) -> dict:
    connection = fetch_garmin_connection_by_user_id(user_id)
    if connection is None:
        return {"connected": False}
    return {
        "connected": True,
        "garminUserId": connection.garmin_user_id,
        "scope": connection.scope,
        "accessTokenExpiresAt": to_utc(connection.access_token_expires_at).isoformat()
        if connection.access_token_expires_at
        else None,
    }


@router.delete("/connection")
async def garmin_disconnect(user_id: int = Depends(get_current_user_id)) -> dict:
    connection = fetch_garmin_connection_by_user_id(user_id)
    if connection is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No Garmin connection")

    try:
        access_token, connection = await ensure_garmin_access_token(connection)
        await deregister_user(access_token)
    except GarminTokenRefreshError as e:
        logger.error(f"[GARMIN_OAUTH] Cannot deregister user_id={user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Garmin deregistration failed") from e
    except GarminApiError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Garmin deregistration failed") from e

    delete_garmin_connection_by_user_id(user_id)
    logger.info(f"[GARMIN_OAUTH] Garmin disconnected for user_id={user_id}")
    return {"success": True}
