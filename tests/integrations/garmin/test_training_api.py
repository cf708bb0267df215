import json
from datetime import date

import httpx
import pytest

from garmin_trainer.core.errors import GarminApiError
from garmin_trainer.integrations.garmin.training_api import (
    GARMIN_REGISTRATION_URL,
    GARMIN_SCHEDULE_URL,
    GARMIN_WORKOUT_URL,
    deregister_user,
    push_workout,
    schedule_workout,
)


def _route(request: httpx.Request) -> httpx.Response:
    if str(request.url) == GARMIN_WORKOUT_URL:
        return httpx.Response(200, json={"workoutId": 987, "workoutName": "VMA"})
    if str(request.url) == GARMIN_SCHEDULE_URL:
        return httpx.Response(200, json={"scheduleId": 1})
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_push_creates_then_schedules(garmin_http):
    requests = garmin_http(_route)

    result = await push_workout("token", {"workoutName": "VMA"})

    assert result["workoutId"] == "987"
    assert result["schedule"] == {"scheduleId": 1}
    assert [str(request.url) for request in requests] == [GARMIN_WORKOUT_URL, GARMIN_SCHEDULE_URL]
    assert json.loads(requests[1].content)["workoutId"] == 987
    assert requests[0].headers["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_push_without_workout_id_skips_schedule(garmin_http):
    requests = garmin_http(lambda request: httpx.Response(200, json={"status": "ok"}))

    result = await push_workout("token", {"workoutName": "VMA"})

    assert result["workoutId"] is None
    assert result["schedule"] is None
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_schedule_date(garmin_http):
    requests = garmin_http(lambda request: httpx.Response(200, json={}))

    await schedule_workout("token", 5, on=date(2025, 3, 1))

    assert json.loads(requests[0].content) == {"workoutId": 5, "date": "2025-03-01"}


@pytest.mark.asyncio
async def test_vendor_rejection_carries_status_and_body(garmin_http):
    garmin_http(lambda request: httpx.Response(422, json={"message": "bad step"}))

    with pytest.raises(GarminApiError) as exc_info:
        await push_workout("token", {})

    assert exc_info.value.status_code == 422
    assert exc_info.value.body == {"message": "bad step"}


@pytest.mark.asyncio
async def test_deregister(garmin_http):
    requests = garmin_http(lambda request: httpx.Response(204))

    assert await deregister_user("token") is True
    assert requests[0].method == "DELETE"
    assert str(requests[0].url) == GARMIN_REGISTRATION_URL


@pytest.mark.asyncio
async def test_deregister_already_gone(garmin_http):
    garmin_http(lambda request: httpx.Response(404))

    assert await deregister_user("token") is False


@pytest.mark.asyncio
async def test_deregister_failure(garmin_http):
    garmin_http(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(GarminApiError):
        await deregister_user("token")
