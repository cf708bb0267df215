"""HMAC verification of Garmin push notifications."""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass

from loguru import logger

from garmin_trainer.config.settings import settings

SIGNATURE_HEADER = "x-garmin-signature"
MISSING_SECRET_REASON = "GARMIN_WEBHOOK_SECRET missing"


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    reason: str | None = None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def verify_garmin_signature(headers: Mapping[str, str], raw_body: bytes, secret: str | None = None) -> SignatureCheck:
    """Check base64(HMAC-SHA256(secret, raw_body)) against X-Garmin-Signature.

    Without a configured secret the check passes with a reason; callers
    decide whether that degraded mode is acceptable.
    """
    secret = secret if secret is not None else settings.garmin_webhook_secret
    if not secret:
        logger.warning(f"[GARMIN_WEBHOOK] {MISSING_SECRET_REASON}, signature not verified")
        return SignatureCheck(valid=True, reason=MISSING_SECRET_REASON)

    provided = _header(headers, SIGNATURE_HEADER)
    if not provided:
        return SignatureCheck(valid=False, reason="signature header missing")

    expected = base64.b64encode(hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()).decode("ascii")
    provided = provided.strip()
    if len(provided) != len(expected):
        return SignatureCheck(valid=False, reason="signature length mismatch")
    if not hmac.compare_digest(provided.encode("ascii", "replace"), expected.encode("ascii")):
        return SignatureCheck(valid=False, reason="signature mismatch")
    return SignatureCheck(valid=True)
