"""Clean-up applied to AI-generated workouts before schema validation.

Models produce almost-right documents: numbers as strings, "true" as a
string, cadence only mentioned in a description, HR ranges without a value
type. These passes fix what can be fixed mechanically so validation only
reports real problems.
"""

from __future__ import annotations

import copy
import math
import re
from typing import Any

from garmin_trainer.config.settings import settings

NUMERIC_KEYS = frozenset(
    {
        "segmentOrder",
        "stepOrder",
        "repeatValue",
        "durationValue",
        "targetValue",
        "targetValueLow",
        "targetValueHigh",
        "secondaryTargetValue",
        "secondaryTargetValueLow",
        "secondaryTargetValueHigh",
        "estimatedDurationInSecs",
        "estimatedDistanceInMeters",
        "poolLength",
        "weightValue",
    }
)
BOOLEAN_KEYS = ("skipLastRestStep", "isSessionTransitionEnabled")

PRIMARY_TARGET_KEYS = ("targetValue", "targetValueLow", "targetValueHigh", "targetValueType")
SECONDARY_TARGET_KEYS = (
    "secondaryTargetType",
    "secondaryTargetValue",
    "secondaryTargetValueLow",
    "secondaryTargetValueHigh",
    "secondaryTargetValueType",
)

# Only these sports can hold a secondary target on Garmin devices
SECONDARY_TARGET_SPORTS = frozenset({"CYCLING", "LAP_SWIMMING"})
PERCENT_TARGET_TYPES = frozenset({"HEART_RATE", "POWER"})
REPETITION_REST_DURATIONS = frozenset({"REPETITION_SWIM_CSS_OFFSET", "FIXED_REPETITION"})

CADENCE_PATTERN = re.compile(r"cadence[^0-9]*(\d{2,3})(?:\D+(\d{2,3}))?", re.IGNORECASE)
REPETITION_REST_DESCRIPTION = "Repos (envoyer à la prochaine répétition)"
PROVIDER_MAX_LENGTH = 20


def _to_number(value: str) -> int | float | str:
    try:
        number = float(value)
    except ValueError:
        return value
    if not math.isfinite(number):
        return value
    return int(number) if number.is_integer() else number


def sanitize_workout_value(value: Any) -> Any:
    """Recursively trim strings (empty -> None), coerce numeric and boolean strings."""
    if isinstance(value, list):
        return [sanitize_workout_value(item) for item in value]

    if isinstance(value, dict):
        sanitized = {}
        for key, raw in value.items():
            cleaned = sanitize_workout_value(raw)
            if key in NUMERIC_KEYS and isinstance(cleaned, str):
                cleaned = _to_number(cleaned)
            sanitized[key] = cleaned

        if sanitized.get("durationType") == "OPEN":
            sanitized["durationValue"] = None
            sanitized["durationValueType"] = None

        for key in BOOLEAN_KEYS:
            if isinstance(sanitized.get(key), str):
                lowered = sanitized[key].lower()
                if lowered in {"true", "false"}:
                    sanitized[key] = lowered == "true"
        return sanitized

    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None

    return value


def _apply_cadence_from_description(step: dict[str, Any]) -> None:
    description = step.get("description") or ""
    match = CADENCE_PATTERN.search(description)
    if not match:
        return

    low = int(match.group(1))
    high = int(match.group(2)) if match.group(2) else low

    target_type = step.get("targetType")
    if not target_type or target_type in {"OPEN", "CADENCE"}:
        step["targetType"] = "CADENCE"
        step["targetValue"] = None
        step["targetValueType"] = None
        step["targetValueLow"] = low
        step["targetValueHigh"] = high
        for key in SECONDARY_TARGET_KEYS:
            step[key] = None
        return

    if step.get("secondaryTargetType") in {None, "CADENCE"}:
        step["secondaryTargetType"] = "CADENCE"
        step["secondaryTargetValue"] = None
        step["secondaryTargetValueType"] = None
        step["secondaryTargetValueLow"] = low
        step["secondaryTargetValueHigh"] = high


def _apply_percent_default(step: dict[str, Any]) -> None:
    has_range = step.get("targetValueLow") is not None or step.get("targetValueHigh") is not None
    if step.get("targetType") in PERCENT_TARGET_TYPES and has_range and not step.get("targetValueType"):
        step["targetValueType"] = "PERCENT"


def _apply_rest_description(step: dict[str, Any]) -> None:
    if not step.get("durationValue") or step.get("intensity") not in {"REST", "EASY"}:
        return
    if step.get("durationType") in REPETITION_REST_DURATIONS and not step.get("description"):
        step["description"] = REPETITION_REST_DESCRIPTION


def _infer_repeat_intensity(repeat: dict[str, Any]) -> str:
    children = [child for child in repeat.get("steps") or [] if isinstance(child, dict)]
    for child in children:
        if isinstance(child.get("intensity"), str) and child["intensity"].strip():
            return child["intensity"].strip()
    return "ACTIVE"


def _has_exercise(step: dict[str, Any]) -> bool:
    return bool(step.get("exerciseCategory") and step.get("exerciseName"))


def _fill_rest_exercises(steps: list[Any]) -> None:
    """Strength rest steps take the exercise of the previous working step (or the next one when leading)."""
    leaves = [step for step in steps if isinstance(step, dict) and step.get("type") != "WorkoutRepeatStep"]
    working = [index for index, step in enumerate(leaves) if _has_exercise(step)]
    if not working:
        return
    for index, step in enumerate(leaves):
        if step.get("intensity") != "REST" or _has_exercise(step):
            continue
        previous = [position for position in working if position < index]
        source = leaves[previous[-1] if previous else working[0]]
        step["exerciseCategory"] = source["exerciseCategory"]
        step["exerciseName"] = source["exerciseName"]


def _normalize_steps(steps: Any, sport: str | None) -> Any:
    if not isinstance(steps, list):
        return steps

    is_swim = sport == "LAP_SWIMMING"
    normalized = []
    for entry in steps:
        if not isinstance(entry, dict):
            normalized.append(entry)
            continue

        step = dict(entry)
        if step.get("type") == "WorkoutRepeatStep":
            if is_swim:
                step["skipLastRestStep"] = False
            if not step.get("intensity"):
                step["intensity"] = _infer_repeat_intensity(step)
            step["steps"] = _normalize_steps(step.get("steps"), sport)
        else:
            # Swim steps keep targetType null
            if not is_swim:
                _apply_cadence_from_description(step)
            _apply_percent_default(step)
            _apply_rest_description(step)
            if sport not in SECONDARY_TARGET_SPORTS:
                for key in SECONDARY_TARGET_KEYS:
                    step[key] = None
        normalized.append(step)
    if sport == "STRENGTH_TRAINING":
        _fill_rest_exercises(normalized)
    return normalized


def coerce_owner_id(garmin_user_id: str | int | None) -> str | int | None:
    """Numeric vendor ids are sent as integers, anything else unchanged."""
    if isinstance(garmin_user_id, str) and garmin_user_id.strip().isdigit():
        return int(garmin_user_id.strip())
    return garmin_user_id


def _source_field(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()[:PROVIDER_MAX_LENGTH]
    return settings.workout_provider_name[:PROVIDER_MAX_LENGTH]


def enforce_workout_post_processing(workout: dict[str, Any], *, owner_id: str | int | None = None) -> dict[str, Any]:
    """Return a normalized copy of a sanitized workout.

    Args:
        workout: Output of sanitize_workout_value
        owner_id: Garmin user id of the connection; replaces whatever the model wrote
    """
    result = copy.deepcopy(workout)

    segments = result.get("segments")
    if isinstance(segments, list):
        for segment in segments:
            if isinstance(segment, dict):
                segment["steps"] = _normalize_steps(segment.get("steps"), segment.get("sport"))

    result["workoutProvider"] = _source_field(result.get("workoutProvider"))
    result["workoutSourceId"] = _source_field(result.get("workoutSourceId"))
    if owner_id is not None:
        result["ownerId"] = coerce_owner_id(owner_id)
    return result


def normalize_workout(workout: Any, *, owner_id: str | int | None = None) -> Any:
    """sanitize_workout_value followed by enforce_workout_post_processing."""
    sanitized = sanitize_workout_value(workout)
    if not isinstance(sanitized, dict):
        return sanitized
    return enforce_workout_post_processing(sanitized, owner_id=owner_id)
