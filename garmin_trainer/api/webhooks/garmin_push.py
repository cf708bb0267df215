"""Garmin push notification endpoints.

The summary type is checked before any secret-dependent work, so an unknown
type is a 404 even when the signature would be wrong.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, HTTPException, Request, status
from loguru import logger

from garmin_trainer.config.settings import settings
from garmin_trainer.integrations.garmin.signature import verify_garmin_signature
from garmin_trainer.integrations.garmin.webhook_ingestion import ingest_garmin_push, normalize_summary_type

router = APIRouter(prefix="/garmin/webhooks", tags=["webhooks", "garmin"])


def _summary_type_or_404(raw_type: str) -> str:
    summary_type = normalize_summary_type(raw_type)
    if summary_type is None:
        logger.info(f"[GARMIN_WEBHOOK] Unsupported summary type {raw_type!r}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unsupported summary type")
    return summary_type


@router.api_route("/push/{summary_type}", methods=["GET", "HEAD"])
def garmin_push_ready(summary_type: str) -> dict:
    canonical = _summary_type_or_404(summary_type)
    return {"status": "ready", "summaryType": canonical}


@router.post("/push/{summary_type}")
async def garmin_push(summary_type: str, request: Request) -> dict:
    canonical = _summary_type_or_404(summary_type)

    if settings.garmin_webhook_require_secret and not settings.garmin_webhook_secret:
        logger.error("[GARMIN_WEBHOOK] GARMIN_WEBHOOK_SECRET is required but not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not configured")

    body = await request.body()
    check = verify_garmin_signature(request.headers, body)
    if not check.valid:
        logger.warning(f"[GARMIN_WEBHOOK] Rejected {canonical} push: {check.reason}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from e

    return ingest_garmin_push(canonical, payload).to_dict()
