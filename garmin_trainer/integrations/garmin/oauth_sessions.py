"""Single-use OAuth session rows (state -> PKCE verifier)."""

from __future__ import annotations

from datetime import timedelta

from loguru import logger
from sqlalchemy import delete, select

from garmin_trainer.config.settings import settings
from garmin_trainer.db.models import GarminOAuthSession
from garmin_trainer.db.session import get_session
from garmin_trainer.utils.timezone import utcnow


def create_oauth_session(*, state: str, code_verifier: str, user_id: int, provider_user_id: str) -> GarminOAuthSession:
    now = utcnow()
    with get_session() as session:
        oauth_session = GarminOAuthSession(
            state=state,
            code_verifier=code_verifier,
            user_id=user_id,
            provider_user_id=provider_user_id,
            expires_at=now + timedelta(seconds=settings.garmin_oauth_session_ttl_seconds),
            created_at=now,
        )
        session.add(oauth_session)
        session.flush()
        return oauth_session


def consume_oauth_session(state: str) -> GarminOAuthSession | None:
    """Read and delete the session for `state` in one transaction.

    Unknown states return None; the delete is then a no-op.
    """
    with get_session() as session:
        oauth_session = session.execute(select(GarminOAuthSession).where(GarminOAuthSession.state == state)).scalar_one_or_none()
        if oauth_session is not None:
            session.delete(oauth_session)
        return oauth_session


def sweep_expired_oauth_sessions() -> int:
    with get_session() as session:
        result = session.execute(delete(GarminOAuthSession).where(GarminOAuthSession.expires_at < utcnow()))
        if result.rowcount:
            logger.debug(f"[GARMIN_OAUTH] Swept {result.rowcount} expired OAuth session(s)")
        return result.rowcount
