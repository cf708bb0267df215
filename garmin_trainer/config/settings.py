import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, falling back to a local SQLite file for development.

    ⚠️ SQLite is only meant for local runs and tests. Set DATABASE_URL to a
    PostgreSQL connection string in any deployed environment.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info("Using DATABASE_URL from environment")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "garmin_trainer.db"
    db_url = f"sqlite:///{db_path.resolve()}"
    logger.warning(f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(default_factory=get_database_url, validation_alias="DATABASE_URL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="LOG_FILE")
    log_rotation: str = Field(default="10 MB", validation_alias="LOG_ROTATION")
    log_retention: str = Field(default="7 days", validation_alias="LOG_RETENTION")
    app_origin: str = Field(
        default="http://localhost:3000",  # Frontend origin used for integration status redirects
        validation_alias="APP_ORIGIN",
    )

    # Session auth (JWT issued by the identity provider bridge)
    auth_secret_key: str = Field(default="", validation_alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field(default="HS256", validation_alias="AUTH_ALGORITHM")

    # Garmin OAuth2 / PKCE
    garmin_client_id: str = Field(default="", validation_alias="GARMIN_CLIENT_ID")
    garmin_client_secret: str = Field(default="", validation_alias="GARMIN_CLIENT_SECRET")
    garmin_redirect_uri: str = Field(
        default="http://localhost:8000/garmin/callback",
        validation_alias="GARMIN_REDIRECT_URI",
    )
    garmin_token_encryption_key: str = Field(default="", validation_alias="GARMIN_TOKEN_ENCRYPTION_KEY")
    garmin_http_timeout_seconds: float = Field(default=15.0, validation_alias="GARMIN_HTTP_TIMEOUT_SECONDS")
    garmin_oauth_session_ttl_seconds: int = Field(default=600, validation_alias="GARMIN_OAUTH_SESSION_TTL_SECONDS")

    # Garmin push webhooks
    garmin_webhook_secret: str = Field(default="", validation_alias="GARMIN_WEBHOOK_SECRET")
    garmin_webhook_require_secret: bool = Field(
        default=False,
        validation_alias="GARMIN_WEBHOOK_REQUIRE_SECRET",
        description="Reject webhooks with 500 when GARMIN_WEBHOOK_SECRET is missing instead of skipping verification",
    )

    # AI completion provider (OpenRouter-compatible)
    openrouter_api_key: str = Field(default="", validation_alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1", validation_alias="OPENROUTER_BASE_URL")
    ai_request_timeout_seconds: float = Field(default=45.0, validation_alias="AI_REQUEST_TIMEOUT_SECONDS")
    ai_max_retries: int = Field(default=2, validation_alias="AI_MAX_RETRIES")
    ai_max_retry_seconds: float = Field(default=20.0, validation_alias="AI_MAX_RETRY_SECONDS")
    ai_model_cache_ttl_seconds: int = Field(default=60, validation_alias="AI_MODEL_CACHE_TTL_SECONDS")
    ai_app_title: str = Field(default="Adapt2Life", validation_alias="AI_APP_TITLE")

    # Garmin trainer jobs
    garmin_trainer_model: str = Field(default="openai/gpt-5", validation_alias="GARMIN_TRAINER_MODEL")
    garmin_trainer_fallback_models: str = Field(
        default="openai/gpt-5-mini",
        validation_alias="GARMIN_TRAINER_FALLBACK_MODELS",
    )  # Comma-separated list
    garmin_trainer_prompt: str = Field(default="", validation_alias="GARMIN_TRAINER_PROMPT")
    garmin_trainer_job_timeout_seconds: int = Field(default=600, validation_alias="GARMIN_TRAINER_JOB_TIMEOUT_SECONDS")
    garmin_trainer_batch_size: int = Field(default=5, validation_alias="GARMIN_TRAINER_BATCH_SIZE")
    garmin_trainer_auto_push: bool = Field(default=True, validation_alias="GARMIN_TRAINER_AUTO_PUSH")
    garmin_trainer_correction_attempts: int = Field(default=1, validation_alias="GARMIN_TRAINER_CORRECTION_ATTEMPTS")
    garmin_exercise_tool_enabled: bool = Field(default=True, validation_alias="GARMIN_EXERCISE_TOOL_ENABLED")
    workout_provider_name: str = Field(default="Adapt2Life", validation_alias="WORKOUT_PROVIDER_NAME")

    cron_secret: str = Field(default="", validation_alias="CRON_SECRET")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("garmin_client_id", "garmin_client_secret")
    @classmethod
    def validate_garmin_credentials(cls, value: str) -> str:
        """Warn when Garmin credentials are missing.

        Empty values are allowed for local development and tests; the OAuth flow
        raises a ConfigurationError when it actually needs them.
        """
        if not value:
            logger.warning(
                "⚠️ GARMIN_CLIENT_ID and/or GARMIN_CLIENT_SECRET are not set. "
                "Garmin OAuth and Training API features will not work."
            )
        return value

    @field_validator("garmin_redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, value: str) -> str:
        """Validate that redirect URI points to /garmin/callback."""
        if value and "/garmin/callback" not in value:
            logger.warning(f"GARMIN_REDIRECT_URI should point to /garmin/callback, but got: {value}. This may cause OAuth failures.")
        return value

    @field_validator("garmin_trainer_batch_size", "garmin_trainer_job_timeout_seconds")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    def fallback_model_ids(self) -> list[str]:
        """Parse GARMIN_TRAINER_FALLBACK_MODELS into a list of model ids."""
        return [model.strip() for model in self.garmin_trainer_fallback_models.split(",") if model.strip()]


settings = Settings()
