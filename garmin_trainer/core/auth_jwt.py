"""JWT session token verification.

Session tokens are issued by the identity provider bridge and carry the
provider's user id in the 'sub' claim. This service only verifies them;
`create_session_token` exists for local tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from loguru import logger

from garmin_trainer.config.settings import settings


def create_session_token(subject: str, *, email: str | None = None, name: str | None = None, ttl_days: int = 30) -> str:
    """Create a signed session token for a provider user id."""
    if not subject:
        raise ValueError("subject cannot be empty")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "exp": now + timedelta(days=ttl_days),
        "iat": now,
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def decode_session_token(token: str) -> dict:
    """Decode and verify a session token.

    Args:
        token: JWT token string

    Returns:
        Claims dictionary with at least 'sub'

    Raises:
        ValueError: If token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret_key,
            algorithms=[settings.auth_algorithm],
        )
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        raise ValueError("Invalid or expired token") from e

    if not payload.get("sub"):
        raise ValueError("Token missing user ID")
    return payload
