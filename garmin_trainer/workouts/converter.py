"""Deterministic StructuredPlan -> Garmin workout conversion.

Each section becomes one segment (input order kept). `single` blocks become
a WorkoutStep, `repeat` blocks a WorkoutRepeatStep whose children are
numbered from 1 inside the repeat. Target ranges are copied verbatim.
"""

from __future__ import annotations

from typing import Any

from garmin_trainer.config.settings import settings
from garmin_trainer.workouts.schema import Intensity, SecondaryTargetType, Sport, TargetType
from garmin_trainer.workouts.structured_plan import StructuredPlan, StructuredRepeatBlock, StructuredStep

DEFAULT_WORKOUT_NAME = "Garmin workout"
MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1024
MAX_STEP_DESCRIPTION_LENGTH = 512
MAX_PROVIDER_LENGTH = 20

SPORT_ALIASES = {
    "RUN": "RUNNING",
    "RUNNING": "RUNNING",
    "TRAIL": "RUNNING",
    "BIKE": "CYCLING",
    "CYCLING": "CYCLING",
    "SWIM": "LAP_SWIMMING",
    "SWIMMING": "LAP_SWIMMING",
    "LAP_SWIMMING": "LAP_SWIMMING",
    "STRENGTH": "STRENGTH_TRAINING",
    "STRENGTH_TRAINING": "STRENGTH_TRAINING",
    "CARDIO": "CARDIO_TRAINING",
    "CARDIO_TRAINING": "CARDIO_TRAINING",
    "HIIT": "CARDIO_TRAINING",
    "YOGA": "YOGA",
    "PILATES": "PILATES",
    "GENERIC": "GENERIC",
    "MULTI_SPORT": "MULTI_SPORT",
}

INTENSITY_ALIASES = {
    "EASY": Intensity.RECOVERY,
    "EFFORT": Intensity.INTERVAL,
    "WORK": Intensity.INTERVAL,
    "WARM_UP": Intensity.WARMUP,
    "COOL_DOWN": Intensity.COOLDOWN,
}

PHASE_INTENSITIES = {"WARMUP": Intensity.WARMUP, "COOLDOWN": Intensity.COOLDOWN}


def normalize_sport(value: str | None, fallback: str | None = None) -> str:
    """Map a free-form sport label to a Garmin sport, else the fallback (GENERIC by default)."""
    if value:
        key = value.strip().upper().replace(" ", "_").replace("-", "_")
        if key in SPORT_ALIASES:
            return SPORT_ALIASES[key]
    if fallback:
        return normalize_sport(fallback)
    return Sport.GENERIC.value


def _is_rest_role(role: str | None) -> bool:
    return bool(role) and role.strip().lower() in {"rest", "recovery", "repos", "récup", "recup"}


def _intensity(value: str | None, role: str | None, phase: str) -> str:
    if value:
        key = value.strip().upper()
        if key in Intensity.__members__:
            return key
        if key in INTENSITY_ALIASES:
            return INTENSITY_ALIASES[key].value
        return Intensity.ACTIVE.value
    if _is_rest_role(role):
        return Intensity.REST.value
    return PHASE_INTENSITIES.get(phase, Intensity.ACTIVE).value


def _number(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def _split_description(human_description: str | None) -> tuple[str, str | None]:
    lines = (human_description or "").splitlines()
    for index, line in enumerate(lines):
        title = line.strip().lstrip("#").strip()
        if title:
            rest = "\n".join(lines[index + 1 :]).strip()
            return title[:MAX_NAME_LENGTH], (rest[:MAX_DESCRIPTION_LENGTH] or None)
    return DEFAULT_WORKOUT_NAME, None


def _step_description(label: str | None, notes: str | None) -> str | None:
    text = " - ".join(part.strip() for part in (label, notes) if part and part.strip())
    return text[:MAX_STEP_DESCRIPTION_LENGTH] or None


def _convert_step(step: StructuredStep, order: int, phase: str, inherited_intensity: str | None = None) -> dict[str, Any]:
    value = step.intensity
    if value is None and not _is_rest_role(step.role):
        value = inherited_intensity
    intensity = _intensity(value, step.role, phase)
    duration_type = step.duration.type
    if intensity == Intensity.REST and duration_type == "TIME":
        duration_type = "FIXED_REST"

    converted: dict[str, Any] = {
        "type": "WorkoutStep",
        "stepOrder": order,
        "intensity": intensity,
        "durationType": duration_type,
        "durationValue": _number(step.duration.value),
    }
    description = _step_description(step.label, step.notes)
    if description:
        converted["description"] = description

    if step.targets:
        primary = step.targets[0]
        if primary.type in TargetType.__members__:
            converted["targetType"] = primary.type
            if primary.low is not None:
                converted["targetValueLow"] = _number(primary.low)
            if primary.high is not None:
                converted["targetValueHigh"] = _number(primary.high)
    if len(step.targets) > 1:
        secondary = step.targets[1]
        if secondary.type in SecondaryTargetType.__members__:
            converted["secondaryTargetType"] = secondary.type
            if secondary.low is not None:
                converted["secondaryTargetValueLow"] = _number(secondary.low)
            if secondary.high is not None:
                converted["secondaryTargetValueHigh"] = _number(secondary.high)

    for key, value in (
        ("exerciseCategory", step.exercise_category),
        ("exerciseName", step.exercise_name),
        ("weightValue", step.weight_value),
        ("weightDisplayUnit", step.weight_display_unit),
    ):
        if value is not None:
            converted[key] = value
    return converted


def _step_seconds(step: dict[str, Any]) -> float:
    if step["durationType"] in {"TIME", "FIXED_REST"}:
        return step["durationValue"]
    return 0


def _step_meters(step: dict[str, Any]) -> float:
    return step["durationValue"] if step["durationType"] == "DISTANCE" else 0


def _convert_repeat(block: StructuredRepeatBlock, order: int, phase: str) -> dict[str, Any]:
    children = [_convert_step(child, index, phase, block.intensity) for index, child in enumerate(block.steps, start=1)]
    repeat: dict[str, Any] = {
        "type": "WorkoutRepeatStep",
        "stepOrder": order,
        "intensity": _intensity(block.intensity, None, phase) if block.intensity else Intensity.INTERVAL.value,
        "repeatType": "REPEAT_UNTIL_STEPS_CMPLT",
        "repeatValue": block.repeat_count,
        "steps": children,
    }
    description = _step_description(block.label, block.notes)
    if description:
        repeat["description"] = description
    return repeat


def _totals(steps: list[dict[str, Any]]) -> tuple[float, float]:
    seconds = meters = 0
    for step in steps:
        if step["type"] == "WorkoutRepeatStep":
            child_seconds, child_meters = _totals(step["steps"])
            seconds += step["repeatValue"] * child_seconds
            meters += step["repeatValue"] * child_meters
        else:
            seconds += _step_seconds(step)
            meters += _step_meters(step)
    return seconds, meters


def convert_structured_plan_to_garmin(
    plan: StructuredPlan,
    *,
    owner_id: str | int | None = None,
    human_description: str | None = None,
    sport_fallback: str | None = None,
) -> dict[str, Any]:
    """Convert a structured plan into a Garmin Training API workout document.

    Args:
        plan: Parsed structured plan
        owner_id: Garmin user id stored as ownerId
        human_description: Human markdown; its first non-empty line names the workout
        sport_fallback: Sport used when neither the plan nor a section names one

    Returns:
        Workout dict with camelCase keys, ready for validate_garmin_workout
    """
    plan_sport = normalize_sport(plan.sport, sport_fallback)
    segments: list[dict[str, Any]] = []

    for segment_order, section in enumerate(plan.sections, start=1):
        sport = normalize_sport(section.sport, plan_sport)
        steps = []
        for step_order, block in enumerate(section.blocks, start=1):
            if isinstance(block, StructuredRepeatBlock):
                steps.append(_convert_repeat(block, step_order, section.phase))
            else:
                steps.append(_convert_step(block, step_order, section.phase))

        seconds, meters = _totals(steps)
        segment: dict[str, Any] = {
            "segmentOrder": segment_order,
            "sport": sport,
            "estimatedDurationInSecs": _number(seconds),
            "steps": steps,
        }
        if meters:
            segment["estimatedDistanceInMeters"] = _number(meters)
        if sport == Sport.LAP_SWIMMING and plan.pool_length is not None:
            segment["poolLength"] = _number(plan.pool_length)
            segment["poolLengthUnit"] = plan.pool_length_unit or "METER"
        segments.append(segment)

    segment_sports = {segment["sport"] for segment in segments}
    workout_sport = segment_sports.pop() if len(segment_sports) == 1 else Sport.MULTI_SPORT.value

    name, description = _split_description(human_description)
    provider = settings.workout_provider_name[:MAX_PROVIDER_LENGTH]
    workout: dict[str, Any] = {
        "workoutName": name,
        "description": description,
        "sport": workout_sport,
        "estimatedDurationInSecs": _number(sum(segment["estimatedDurationInSecs"] for segment in segments)),
        "workoutProvider": provider,
        "workoutSourceId": provider,
        "isSessionTransitionEnabled": False,
        "segments": segments,
    }
    total_meters = sum(segment.get("estimatedDistanceInMeters", 0) for segment in segments)
    if total_meters:
        workout["estimatedDistanceInMeters"] = _number(total_meters)
    if workout_sport in {Sport.LAP_SWIMMING, Sport.MULTI_SPORT} and plan.pool_length is not None and Sport.LAP_SWIMMING in {
        segment["sport"] for segment in segments
    }:
        workout["poolLength"] = _number(plan.pool_length)
        workout["poolLengthUnit"] = plan.pool_length_unit or "METER"
    if owner_id is not None:
        workout["ownerId"] = owner_id
    return workout
