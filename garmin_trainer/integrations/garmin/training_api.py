"""Garmin Training API and user registration calls."""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
from loguru import logger

from garmin_trainer.core.errors import GarminApiError
from garmin_trainer.integrations.garmin.oauth import http_client

GARMIN_WORKOUT_URL = "https://apis.garmin.com/workoutportal/workout/v2"
GARMIN_SCHEDULE_URL = "https://apis.garmin.com/training-api/schedule/"
GARMIN_REGISTRATION_URL = "https://apis.garmin.com/wellness-api/rest/user/registration"


def _headers(access_token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def _body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


async def _send(method: str, url: str, access_token: str, action: str, payload: Any = None) -> Any:
    async with http_client() as client:
        try:
            resp = await client.request(method, url, headers=_headers(access_token), json=payload)
        except httpx.HTTPError as e:
            logger.error(f"[GARMIN_TRAINER] {action} network error: {type(e).__name__}: {e}")
            raise GarminApiError(f"Garmin {action} request failed") from e

    body = _body(resp)
    if resp.status_code >= 400:
        logger.error(f"[GARMIN_TRAINER] {action} failed: status={resp.status_code} body={str(body)[:500]}")
        raise GarminApiError(f"Garmin {action} failed", status_code=resp.status_code, body=body)
    return body


async def create_workout(access_token: str, workout: dict[str, Any]) -> dict[str, Any]:
    """POST a validated workout; returns Garmin's workout record (with workoutId)."""
    body = await _send("POST", GARMIN_WORKOUT_URL, access_token, "workout creation", workout)
    return body if isinstance(body, dict) else {"raw": body}


async def schedule_workout(access_token: str, workout_id: str | int, on: date | None = None) -> Any:
    on = on or date.today()
    return await _send(
        "POST",
        GARMIN_SCHEDULE_URL,
        access_token,
        "workout scheduling",
        {"workoutId": workout_id, "date": on.isoformat()},
    )


async def push_workout(access_token: str, workout: dict[str, Any]) -> dict[str, Any]:
    """Create the workout and schedule it for today.

    Returns:
        {"workout": <creation response>, "schedule": <schedule response>, "workoutId": str | None}
    """
    created = await create_workout(access_token, workout)
    workout_id = created.get("workoutId")
    schedule = None
    if workout_id is not None:
        schedule = await schedule_workout(access_token, workout_id)
    else:
        logger.warning("[GARMIN_TRAINER] Workout created without workoutId; scheduling skipped")
    return {
        "workout": created,
        "schedule": schedule,
        "workoutId": str(workout_id) if workout_id is not None else None,
    }


async def deregister_user(access_token: str) -> bool:
    """Remove the app registration for the token's user.

    Returns:
        False when Garmin answered 404 (already deregistered), True otherwise
    """
    try:
        await _send("DELETE", GARMIN_REGISTRATION_URL, access_token, "deregistration")
    except GarminApiError as e:
        if e.status_code == 404:
            logger.info("[GARMIN_OAUTH] Garmin user already deregistered")
            return False
        raise
    return True
