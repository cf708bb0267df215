"""Garmin trainer endpoints: conversion jobs and direct workout push."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from garmin_trainer.api.dependencies.auth import get_current_user_id
from garmin_trainer.core.errors import (
    GarminApiError,
    GarminNotConnectedError,
    GarminTokenRefreshError,
    InsufficientCreditsError,
)
from garmin_trainer.services.trainer_jobs import (
    ESTIMATED_MINUTES,
    create_garmin_trainer_job,
    get_job_for_user,
    process_garmin_trainer_job,
    push_workout_for_user,
    serialize_job,
)
from garmin_trainer.workouts.normalization import normalize_workout
from garmin_trainer.workouts.schema import validate_garmin_workout

router = APIRouter(prefix="/garmin-trainer", tags=["garmin-trainer"])

# Largest id the INTEGER primary key can hold
MAX_JOB_ID = 2**31 - 1


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateJobRequest(_CamelModel):
    plan_markdown: str


class PushWorkoutRequest(_CamelModel):
    workout: dict[str, Any]


@router.post("/jobs")
def create_job(body: CreateJobRequest, background_tasks: BackgroundTasks, user_id: int = Depends(get_current_user_id)) -> dict:
    if not body.plan_markdown.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="planMarkdown must not be empty")

    try:
        job = create_garmin_trainer_job(user_id, body.plan_markdown)
    except GarminNotConnectedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e)) from e

    background_tasks.add_task(process_garmin_trainer_job, job.id)
    return {
        "jobId": job.id,
        "status": job.status,
        "etaMinutes": ESTIMATED_MINUTES,
        "message": "Conversion started. Come back in a couple of minutes.",
    }


@router.get("/jobs/{job_id}")
def read_job(job_id: str, user_id: int = Depends(get_current_user_id)) -> dict:
    if not job_id.isdecimal():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid job id")

    job = get_job_for_user(int(job_id), user_id) if int(job_id) <= MAX_JOB_ID else None
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return serialize_job(job)


@router.post("/push")
async def push_workout(body: PushWorkoutRequest, user_id: int = Depends(get_current_user_id)) -> dict:
    validation = validate_garmin_workout(normalize_workout(body.workout))
    if not validation.success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid workout", "issues": [issue.to_dict() for issue in validation.issues]},
        )

    try:
        result = await push_workout_for_user(user_id, validation.workout.to_payload())
    except GarminNotConnectedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except GarminTokenRefreshError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Garmin authorization failed; reconnect Garmin") from e
    except GarminApiError as e:
        logger.error(f"[GARMIN_TRAINER] Push failed for user_id={user_id}: {e} status={e.status_code}")
        status_code = e.status_code if e.status_code else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=status_code, detail="Garmin rejected the workout") from e

    return {"success": True, **result}
