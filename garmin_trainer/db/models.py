from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class User(Base):
    """Local user, created the first time an identity-provider user is seen.

    Stores:
    - id: Local integer id (referenced by every other table)
    - provider_user_id: Identity provider user id (JWT 'sub'), unique
    - email, name: Profile snapshot from the provider
    - plan_type: Key into the plan catalog (free, paid, paid_unlimited, full)
    - training_generations_remaining / garmin_conversions_remaining:
      Monthly counters; NULL means the plan is unlimited
    - last_quota_reset_at: Last monthly reset
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    plan_type: Mapped[str] = mapped_column(String, nullable=False, default="free")
    training_generations_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)
    garmin_conversions_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_quota_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class GarminConnection(Base):
    """Garmin link for a local user (1:1).

    Tokens are stored only as AES-256-GCM ciphertext. garmin_user_id is
    globally unique: re-linking a Garmin account to another local user deletes
    the previous row (last authenticator wins).
    """

    __tablename__ = "garmin_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    garmin_user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    token_type: Mapped[str | None] = mapped_column(String, nullable=True)
    scope: Mapped[str | None] = mapped_column(String, nullable=True)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class GarminOAuthSession(Base):
    """In-flight authorization attempt. Consumed once by the callback."""

    __tablename__ = "garmin_oauth_sessions"

    state: Mapped[str] = mapped_column(String, primary_key=True)
    code_verifier: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider_user_id: Mapped[str] = mapped_column(String, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class GarminWebhookEvent(Base):
    """Append-only log of Garmin push entries.

    No dedup at write time; consumers must tolerate repeated entity ids.
    """

    __tablename__ = "garmin_webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    garmin_user_id: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_garmin_webhook_events_user_type", "user_id", "type"),
        Index("idx_garmin_webhook_events_entity", "type", "entity_id"),
    )


class GarminTrainerJob(Base):
    """Markdown → Garmin workout conversion request.

    Status flow: pending → processing → completed | failed. Rows are never
    deleted. credit_refunded is the one-shot refund lock.
    """

    __tablename__ = "garmin_trainer_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending", index=True)
    phase: Mapped[str | None] = mapped_column(String, nullable=True)
    plan_markdown: Mapped[str] = mapped_column(Text, nullable=False)
    result_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    push_result_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    garmin_workout_id: Mapped[str | None] = mapped_column(String, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_raw_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_debug_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ai_model_id: Mapped[str | None] = mapped_column(String, nullable=True)
    credit_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credit_refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_garmin_trainer_jobs_status_created", "status", "created_at"),)


class AiModelConfig(Base):
    """Admin-selected model per AI feature (e.g. 'garmin-trainer')."""

    __tablename__ = "ai_model_configs"

    feature: Mapped[str] = mapped_column(String, primary_key=True)
    model_id: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
