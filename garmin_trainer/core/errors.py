"""Typed errors shared across the Garmin trainer service.

Routers translate these into HTTP responses; adapters raise them with the
underlying cause chained (`raise ... from e`).
"""

from __future__ import annotations

from typing import Any


class ConfigurationError(Exception):
    """A required secret or setting is missing. Fatal, never retried."""


class GarminOAuthError(Exception):
    """OAuth exchange/refresh/user-id call failed.

    `cause` holds the raw vendor response body for server-side diagnostics.
    It must never be shown to the end user.
    """

    def __init__(self, message: str, *, status_code: int | None = None, cause: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause


class GarminApiError(Exception):
    """Garmin REST call (Training API, deregistration) returned a failure."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GarminTokenRefreshError(Exception):
    """Raised when a Garmin connection cannot provide a usable access token."""


class AiConfigurationError(Exception):
    """AI provider is not configured (missing key, no model ids)."""


class AiRequestError(Exception):
    """AI completion request failed.

    Attributes:
        status_code: HTTP status from the provider, None for transport failures
        retryable: Whether the same request may succeed if sent again
    """

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class InsufficientCreditsError(Exception):
    """User has no Garmin conversion credit left on their plan."""

    def __init__(self, *, plan_label: str, quota: int | None) -> None:
        self.plan_label = plan_label
        self.quota = quota
        quota_text = "unlimited" if quota is None else str(quota)
        super().__init__(
            f"Your {plan_label} plan includes {quota_text} Garmin conversions per month and none are left. "
            "Upgrade your plan or wait for the monthly reset."
        )


class GarminNotConnectedError(Exception):
    """The user has no Garmin connection."""


class GarminConversionError(Exception):
    """AI output could not be turned into a valid workout.

    Carries what the job record keeps for debugging: the raw AI answer, the
    normalized document that failed and the validation issues.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_response: str | None = None,
        debug_payload: Any = None,
        issues: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.raw_response = raw_response
        self.debug_payload = debug_payload
        self.issues = issues or []
