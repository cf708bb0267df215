"""FastAPI authentication dependencies.

The session JWT is read from the Authorization header (Bearer) or the
`session` cookie. Its `sub` is the identity-provider user id; the local user
row is created on first sight.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from loguru import logger

from garmin_trainer.core.auth_jwt import decode_session_token
from garmin_trainer.services.credits import ensure_local_user

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def _get_auth_token(request: Request, token: str | None = Depends(oauth2_scheme)) -> str | None:
    """Bearer token first (API clients), then the session cookie (web)."""
    if token:
        return token
    return request.cookies.get("session") or None


def _resolve_user_id(request: Request, auth_token: str) -> int:
    try:
        claims = decode_session_token(auth_token)
    except ValueError as e:
        logger.warning(f"Auth failed: {e}, Path: {request.url.path}, Method: {request.method}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    user = ensure_local_user(claims["sub"], email=claims.get("email"), name=claims.get("name"))
    return user.id


def get_current_user_id(request: Request, token: str | None = Depends(oauth2_scheme)) -> int:
    """Local user id of the authenticated caller.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    auth_token = _get_auth_token(request, token)
    if not auth_token:
        logger.warning(f"Auth failed: missing token, Path: {request.url.path}, Method: {request.method}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _resolve_user_id(request, auth_token)


def get_optional_user_id(request: Request, token: str | None = Depends(oauth2_scheme)) -> int | None:
    """Like get_current_user_id, but None for anonymous or invalid sessions."""
    auth_token = _get_auth_token(request, token)
    if not auth_token:
        return None
    try:
        return _resolve_user_id(request, auth_token)
    except HTTPException:
        return None
