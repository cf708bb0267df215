"""Garmin connection store.

One row per local user. Tokens are stored encrypted; refresh happens on read
(ensure_garmin_access_token), so every consumer gets a usable token or a
GarminTokenRefreshError.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger
from sqlalchemy import delete, select

from garmin_trainer.core.encryption import EncryptionError, EncryptionKeyError, decrypt_secret, encrypt_secret
from garmin_trainer.core.errors import GarminOAuthError, GarminTokenRefreshError
from garmin_trainer.db.models import GarminConnection
from garmin_trainer.db.session import get_session
from garmin_trainer.integrations.garmin.oauth import GarminTokens, refresh_access_token
from garmin_trainer.utils.timezone import to_utc, utcnow

REFRESH_WINDOW_SECONDS = 60


@dataclass
class UpsertResult:
    connection: GarminConnection
    reassigned_from_user_id: int | None = None


def fetch_garmin_connection_by_user_id(user_id: int) -> GarminConnection | None:
    with get_session() as session:
        return session.execute(select(GarminConnection).where(GarminConnection.user_id == user_id)).scalar_one_or_none()


def fetch_garmin_connection_by_garmin_user_id(garmin_user_id: str) -> GarminConnection | None:
    with get_session() as session:
        return session.execute(
            select(GarminConnection).where(GarminConnection.garmin_user_id == garmin_user_id)
        ).scalar_one_or_none()


def upsert_garmin_connection(*, user_id: int, garmin_user_id: str, tokens: GarminTokens) -> UpsertResult:
    """Link a Garmin account to a local user.

    If the Garmin account is linked to another local user, that link is
    deleted first: the last user to authorize owns the account.
    """
    access_encrypted = encrypt_secret(tokens.access_token)
    refresh_encrypted = encrypt_secret(tokens.refresh_token)
    now = utcnow()

    with get_session() as session:
        previous_owner = session.execute(
            select(GarminConnection.user_id).where(
                GarminConnection.garmin_user_id == garmin_user_id,
                GarminConnection.user_id != user_id,
            )
        ).scalar_one_or_none()
        if previous_owner is not None:
            logger.warning(
                f"[GARMIN_OAUTH] Garmin user {garmin_user_id} was linked to user_id={previous_owner}; reassigning to user_id={user_id}"
            )
            session.execute(delete(GarminConnection).where(GarminConnection.user_id == previous_owner))
            session.flush()

        connection = session.execute(select(GarminConnection).where(GarminConnection.user_id == user_id)).scalar_one_or_none()
        if connection is None:
            connection = GarminConnection(user_id=user_id, created_at=now)
            session.add(connection)

        connection.garmin_user_id = garmin_user_id
        connection.access_token_encrypted = access_encrypted
        connection.refresh_token_encrypted = refresh_encrypted
        connection.token_type = tokens.token_type
        connection.scope = tokens.scope
        connection.access_token_expires_at = tokens.access_token_expires_at
        connection.updated_at = now
        session.flush()
        logger.info(f"[GARMIN_OAUTH] Connection stored for user_id={user_id} garmin_user_id={garmin_user_id}")
        return UpsertResult(connection=connection, reassigned_from_user_id=previous_owner)


def delete_garmin_connection_by_user_id(user_id: int) -> bool:
    with get_session() as session:
        result = session.execute(delete(GarminConnection).where(GarminConnection.user_id == user_id))
        return result.rowcount > 0


def delete_garmin_connection_by_garmin_user_id(garmin_user_id: str) -> bool:
    with get_session() as session:
        result = session.execute(delete(GarminConnection).where(GarminConnection.garmin_user_id == garmin_user_id))
        return result.rowcount > 0


def _needs_refresh(connection: GarminConnection) -> bool:
    if connection.access_token_expires_at is None:
        return True
    return to_utc(connection.access_token_expires_at) <= utcnow() + timedelta(seconds=REFRESH_WINDOW_SECONDS)


def _persist_refreshed_tokens(connection_id: int, tokens: GarminTokens) -> GarminConnection:
    with get_session() as session:
        connection = session.get(GarminConnection, connection_id)
        if connection is None:
            raise GarminTokenRefreshError("Garmin connection disappeared during token refresh")
        # All token fields are written together
        connection.access_token_encrypted = encrypt_secret(tokens.access_token)
        connection.refresh_token_encrypted = encrypt_secret(tokens.refresh_token)
        connection.token_type = tokens.token_type
        connection.scope = tokens.scope
        connection.access_token_expires_at = tokens.access_token_expires_at
        connection.updated_at = utcnow()
        session.flush()
        return connection


async def ensure_garmin_access_token(connection: GarminConnection) -> tuple[str, GarminConnection]:
    """Return a usable plaintext access token, refreshing it when near expiry.

    Returns:
        (access_token, connection); the connection is the refreshed row when a
        refresh happened

    Raises:
        GarminTokenRefreshError: Tokens cannot be decrypted or Garmin refused the refresh
    """
    try:
        if not _needs_refresh(connection):
            return decrypt_secret(connection.access_token_encrypted), connection
        refresh_token = decrypt_secret(connection.refresh_token_encrypted)
    except EncryptionKeyError as e:
        logger.error(f"[GARMIN_TOKEN] Encryption key problem for user_id={connection.user_id}: {e}")
        raise GarminTokenRefreshError("Token encryption key is not configured or changed; reconnect Garmin") from e
    except EncryptionError as e:
        logger.error(f"[GARMIN_TOKEN] Failed to decrypt tokens for user_id={connection.user_id}: {e}")
        raise GarminTokenRefreshError("Stored Garmin tokens cannot be decrypted; reconnect Garmin") from e

    logger.info(f"[GARMIN_TOKEN] Refreshing access token for user_id={connection.user_id}")
    try:
        tokens = await refresh_access_token(refresh_token)
    except GarminOAuthError as e:
        raise GarminTokenRefreshError(f"Garmin token refresh failed: {e}") from e

    refreshed = _persist_refreshed_tokens(connection.id, tokens)
    logger.info(
        f"[GARMIN_TOKEN] Token refreshed for user_id={connection.user_id}, expires_at={tokens.access_token_expires_at.isoformat()}"
    )
    return tokens.access_token, refreshed
