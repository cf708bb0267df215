"""Scheduler-triggered endpoints, guarded by CRON_SECRET.

The secret is accepted as `Authorization: Bearer <secret>` or `X-Cron-Secret`.
"""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, status
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from garmin_trainer.ai.model_config import get_ai_model_candidates, set_ai_model
from garmin_trainer.config.settings import settings
from garmin_trainer.services.credits import PLANS, apply_user_plan, reset_monthly_quotas
from garmin_trainer.services.trainer_jobs import process_pending_jobs

router = APIRouter(prefix="/cron", tags=["cron"])


def require_cron_secret(
    authorization: str | None = Header(None),
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
) -> None:
    expected = settings.cron_secret
    if not expected:
        logger.error("[CRON] CRON_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    provided = x_cron_secret
    if authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/garmin-trainer/jobs", dependencies=[Depends(require_cron_secret)])
async def run_garmin_trainer_jobs() -> dict:
    processed = await process_pending_jobs()
    logger.info(f"[CRON] Garmin trainer batch processed {processed} job(s)")
    return {"processed": processed}


@router.post("/quotas/reset", dependencies=[Depends(require_cron_secret)])
def run_quota_reset() -> dict:
    return {"reset": reset_monthly_quotas()}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ModelSelectionRequest(_CamelModel):
    model_id: str = Field(min_length=1)


class PlanChangeRequest(_CamelModel):
    plan_type: str


@router.put("/ai-models/{feature}", dependencies=[Depends(require_cron_secret)])
def select_ai_model(feature: str, body: ModelSelectionRequest) -> dict:
    """Switch the model a feature uses first; takes effect on the next job."""
    set_ai_model(feature, body.model_id.strip())
    return {"feature": feature, "candidates": get_ai_model_candidates(feature)}


@router.put("/users/{user_id}/plan", dependencies=[Depends(require_cron_secret)])
def change_user_plan(user_id: int, body: PlanChangeRequest) -> dict:
    """Billing hook: move a user to a plan and refill their counters."""
    if body.plan_type not in PLANS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown plan: {body.plan_type}")
    try:
        user = apply_user_plan(user_id, body.plan_type)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from e
    return {
        "userId": user.id,
        "planType": user.plan_type,
        "garminConversionsRemaining": user.garmin_conversions_remaining,
        "trainingGenerationsRemaining": user.training_generations_remaining,
    }
