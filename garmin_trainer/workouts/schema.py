"""Garmin Training API workout schema and validator.

Validation runs in two passes that report through one issue list:

1. Structural: pydantic models below (types, enums, required keys)
2. Semantic: cross-field refinements, including the per-sport exercise matrix
   (SPORT_FIELD_RULES / REPS_DURATION_SPORTS)

Every issue carries its dotted field path (`segments.0.steps.0.exerciseCategory`)
so the conversion loop can send targeted corrections back to the model.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from garmin_trainer.exercises.catalog import is_exercise_sport, is_known_exercise


class Sport(StrEnum):
    RUNNING = "RUNNING"
    CYCLING = "CYCLING"
    LAP_SWIMMING = "LAP_SWIMMING"
    STRENGTH_TRAINING = "STRENGTH_TRAINING"
    CARDIO_TRAINING = "CARDIO_TRAINING"
    GENERIC = "GENERIC"
    YOGA = "YOGA"
    PILATES = "PILATES"
    MULTI_SPORT = "MULTI_SPORT"


class Intensity(StrEnum):
    REST = "REST"
    WARMUP = "WARMUP"
    COOLDOWN = "COOLDOWN"
    RECOVERY = "RECOVERY"
    ACTIVE = "ACTIVE"
    INTERVAL = "INTERVAL"
    MAIN = "MAIN"


class DurationType(StrEnum):
    TIME = "TIME"
    DISTANCE = "DISTANCE"
    HR_LESS_THAN = "HR_LESS_THAN"
    HR_GREATER_THAN = "HR_GREATER_THAN"
    CALORIES = "CALORIES"
    OPEN = "OPEN"
    POWER_LESS_THAN = "POWER_LESS_THAN"
    POWER_GREATER_THAN = "POWER_GREATER_THAN"
    TIME_AT_VALID_CDA = "TIME_AT_VALID_CDA"
    FIXED_REST = "FIXED_REST"
    REPS = "REPS"
    REPETITION_SWIM_CSS_OFFSET = "REPETITION_SWIM_CSS_OFFSET"
    FIXED_REPETITION = "FIXED_REPETITION"


class RepeatType(StrEnum):
    REPEAT_UNTIL_STEPS_CMPLT = "REPEAT_UNTIL_STEPS_CMPLT"
    REPEAT_UNTIL_TIME = "REPEAT_UNTIL_TIME"
    REPEAT_UNTIL_DISTANCE = "REPEAT_UNTIL_DISTANCE"
    REPEAT_UNTIL_CALORIES = "REPEAT_UNTIL_CALORIES"
    REPEAT_UNTIL_HR_LESS_THAN = "REPEAT_UNTIL_HR_LESS_THAN"
    REPEAT_UNTIL_HR_GREATER_THAN = "REPEAT_UNTIL_HR_GREATER_THAN"
    REPEAT_UNTIL_POWER_LESS_THAN = "REPEAT_UNTIL_POWER_LESS_THAN"
    REPEAT_UNTIL_POWER_GREATER_THAN = "REPEAT_UNTIL_POWER_GREATER_THAN"
    REPEAT_UNTIL_POWER_LAST_LAP_LESS_THAN = "REPEAT_UNTIL_POWER_LAST_LAP_LESS_THAN"
    REPEAT_UNTIL_MAX_POWER_LAST_LAP_LESS_THAN = "REPEAT_UNTIL_MAX_POWER_LAST_LAP_LESS_THAN"


class TargetType(StrEnum):
    SPEED = "SPEED"
    HEART_RATE = "HEART_RATE"
    OPEN = "OPEN"
    CADENCE = "CADENCE"
    POWER = "POWER"
    GRADE = "GRADE"
    RESISTANCE = "RESISTANCE"
    POWER_3S = "POWER_3S"
    POWER_10S = "POWER_10S"
    POWER_30S = "POWER_30S"
    POWER_LAP = "POWER_LAP"
    SPEED_LAP = "SPEED_LAP"
    HEART_RATE_LAP = "HEART_RATE_LAP"
    PACE = "PACE"


class SecondaryTargetType(StrEnum):
    SPEED = "SPEED"
    HEART_RATE = "HEART_RATE"
    OPEN = "OPEN"
    CADENCE = "CADENCE"
    POWER = "POWER"
    GRADE = "GRADE"
    RESISTANCE = "RESISTANCE"
    POWER_3S = "POWER_3S"
    POWER_10S = "POWER_10S"
    POWER_30S = "POWER_30S"
    POWER_LAP = "POWER_LAP"
    SPEED_LAP = "SPEED_LAP"
    HEART_RATE_LAP = "HEART_RATE_LAP"
    PACE = "PACE"
    PACE_ZONE = "PACE_ZONE"
    SWIM_INSTRUCTION = "SWIM_INSTRUCTION"
    SWIM_CSS_OFFSET = "SWIM_CSS_OFFSET"


class StrokeType(StrEnum):
    BACKSTROKE = "BACKSTROKE"
    BREASTSTROKE = "BREASTSTROKE"
    BUTTERFLY = "BUTTERFLY"
    FREESTYLE = "FREESTYLE"
    MIXED = "MIXED"
    IM = "IM"
    RIMO = "RIMO"
    CHOICE = "CHOICE"


class DrillType(StrEnum):
    KICK = "KICK"
    PULL = "PULL"
    DRILL = "DRILL"
    BUTTERFLY = "BUTTERFLY"


class EquipmentType(StrEnum):
    NONE = "NONE"
    SWIM_FINS = "SWIM_FINS"
    SWIM_KICKBOARD = "SWIM_KICKBOARD"
    SWIM_PADDLES = "SWIM_PADDLES"
    SWIM_PULL_BUOY = "SWIM_PULL_BUOY"
    SWIM_SNORKEL = "SWIM_SNORKEL"


class WeightDisplayUnit(StrEnum):
    KILOGRAM = "KILOGRAM"
    POUND = "POUND"


class PoolLengthUnit(StrEnum):
    YARD = "YARD"
    METER = "METER"


class _GarminModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _StepFields(_GarminModel):
    step_id: str | None = None
    step_order: int = Field(gt=0)
    skip_last_rest_step: bool = False
    intensity: Intensity
    description: str | None = Field(default=None, max_length=512)
    duration_value_type: str | None = None

    equipment_type: EquipmentType | None = None
    exercise_category: str | None = None
    exercise_name: str | None = None
    weight_value: float | None = None
    weight_display_unit: WeightDisplayUnit | None = None

    target_type: TargetType | None = None
    target_value: float | None = None
    target_value_low: float | None = None
    target_value_high: float | None = None
    target_value_type: Literal["PERCENT"] | None = None

    secondary_target_type: SecondaryTargetType | None = None
    secondary_target_value: float | None = None
    secondary_target_value_low: float | None = None
    secondary_target_value_high: float | None = None
    secondary_target_value_type: Literal["PERCENT"] | None = None

    stroke_type: StrokeType | None = None
    drill_type: DrillType | None = None


class WorkoutStep(_StepFields):
    type: Literal["WorkoutStep"]
    repeat_type: RepeatType | None = None
    repeat_value: float | None = None
    steps: None = None
    duration_type: DurationType
    duration_value: float


class WorkoutRepeatStep(_StepFields):
    type: Literal["WorkoutRepeatStep"]
    repeat_type: RepeatType
    repeat_value: float = Field(gt=0)
    steps: list[WorkoutStep] = Field(min_length=1)
    duration_type: DurationType | None = None
    duration_value: float | None = None


Step = Annotated[WorkoutStep | WorkoutRepeatStep, Field(discriminator="type")]


class Segment(_GarminModel):
    segment_order: int = Field(gt=0)
    sport: Sport
    estimated_duration_in_secs: float | None = Field(default=None, ge=0)
    estimated_distance_in_meters: float | None = None
    pool_length: float | None = None
    pool_length_unit: PoolLengthUnit | None = None
    steps: list[Step] = Field(min_length=1)


class GarminWorkout(_GarminModel):
    owner_id: str | int | None = None
    workout_name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1024)
    sport: Sport
    estimated_duration_in_secs: float | None = Field(default=None, ge=0)
    estimated_distance_in_meters: float | None = None
    pool_length: float | None = None
    pool_length_unit: PoolLengthUnit | None = None
    workout_provider: str = Field(min_length=1)
    workout_source_id: str = Field(min_length=1)
    is_session_transition_enabled: bool
    segments: list[Segment] = Field(min_length=1)

    def to_payload(self) -> dict[str, Any]:
        """Vendor JSON (camelCase keys, enums as strings, unset fields omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Sport matrix -----------------------------------------------------------

REQUIRED = "required"
FORBIDDEN = "forbidden"
OPTIONAL = "optional"

EXERCISE_FIELDS = ("exerciseCategory", "exerciseName", "weightValue", "weightDisplayUnit")

# One state per (sport, field), applied to every leaf step
SPORT_FIELD_RULES: dict[Sport, dict[str, str]] = {
    Sport.STRENGTH_TRAINING: {
        "exerciseCategory": REQUIRED,
        "exerciseName": REQUIRED,
        "weightValue": OPTIONAL,
        "weightDisplayUnit": OPTIONAL,
    },
    Sport.CARDIO_TRAINING: {
        "exerciseCategory": OPTIONAL,
        "exerciseName": OPTIONAL,
        "weightValue": FORBIDDEN,
        "weightDisplayUnit": FORBIDDEN,
    },
    Sport.YOGA: {
        "exerciseCategory": OPTIONAL,
        "exerciseName": OPTIONAL,
        "weightValue": FORBIDDEN,
        "weightDisplayUnit": FORBIDDEN,
    },
    Sport.PILATES: {
        "exerciseCategory": OPTIONAL,
        "exerciseName": OPTIONAL,
        "weightValue": FORBIDDEN,
        "weightDisplayUnit": FORBIDDEN,
    },
    Sport.GENERIC: {
        "exerciseCategory": OPTIONAL,
        "exerciseName": OPTIONAL,
        "weightValue": OPTIONAL,
        "weightDisplayUnit": OPTIONAL,
    },
    Sport.RUNNING: dict.fromkeys(EXERCISE_FIELDS, FORBIDDEN),
    Sport.CYCLING: dict.fromkeys(EXERCISE_FIELDS, FORBIDDEN),
    Sport.LAP_SWIMMING: dict.fromkeys(EXERCISE_FIELDS, FORBIDDEN),
    Sport.MULTI_SPORT: dict.fromkeys(EXERCISE_FIELDS, FORBIDDEN),
}

# Sports where counted repetitions make sense; yoga holds are timed
REPS_DURATION_SPORTS = frozenset({Sport.STRENGTH_TRAINING, Sport.CARDIO_TRAINING, Sport.PILATES, Sport.GENERIC})

POSITIVE_INTEGER_DURATIONS = frozenset(
    {DurationType.TIME, DurationType.DISTANCE, DurationType.REPS, DurationType.FIXED_REPETITION, DurationType.FIXED_REST}
)

_STEP_FIELD_ATTRS = {
    "exerciseCategory": "exercise_category",
    "exerciseName": "exercise_name",
    "weightValue": "weight_value",
    "weightDisplayUnit": "weight_display_unit",
}

_DISCRIMINATOR_TAGS = {"WorkoutStep", "WorkoutRepeatStep"}


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str
    code: str = "custom"

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class WorkoutValidationResult:
    workout: GarminWorkout | None
    issues: list[ValidationIssue]

    @property
    def success(self) -> bool:
        return self.workout is not None and not self.issues


def _join(*parts: object) -> str:
    return ".".join(str(part) for part in parts if part != "")


class _IssueCollector:
    def __init__(self, check_exercise_catalog: bool) -> None:
        self.issues: list[ValidationIssue] = []
        self.check_exercise_catalog = check_exercise_catalog

    def add(self, path: str, message: str, code: str = "custom") -> None:
        self.issues.append(ValidationIssue(path=path, message=message, code=code))

    # Steps

    def simple_step(self, step: WorkoutStep, sport: Sport, path: str) -> None:
        value = step.duration_value
        if step.duration_type in POSITIVE_INTEGER_DURATIONS and (value <= 0 or not float(value).is_integer()):
            self.add(_join(path, "durationValue"), f"{step.duration_type} requires a positive integer durationValue")
        if step.duration_type == DurationType.REPETITION_SWIM_CSS_OFFSET and not -60 <= value <= 60:
            self.add(_join(path, "durationValue"), "REPETITION_SWIM_CSS_OFFSET requires durationValue between -60 and 60")

        if step.repeat_type is not None or step.repeat_value is not None:
            self.add(_join(path, "repeatType"), "repeatType/repeatValue are only allowed on WorkoutRepeatStep")

        self._targets(step, path)
        self._secondary_targets(step, path)

        if step.drill_type and not step.stroke_type:
            self.add(_join(path, "strokeType"), "strokeType is required when drillType is set")

        self._sport_matrix(step, sport, path)

    def _targets(self, step: WorkoutStep, path: str) -> None:
        has_range = step.target_value_low is not None or step.target_value_high is not None
        if step.target_type == TargetType.OPEN:
            if step.target_value is not None or has_range or step.target_value_type is not None:
                self.add(_join(path, "targetType"), "targetType OPEN requires null targetValue/Low/High/Type")
            return
        if step.target_type is None:
            return
        if step.target_value is not None and has_range:
            self.add(_join(path, "targetValue"), "targetValue and targetValueLow/High cannot be used together")
        if step.target_type in {TargetType.HEART_RATE, TargetType.POWER} and has_range and step.target_value_type != "PERCENT":
            self.add(_join(path, "targetValueType"), "HEART_RATE/POWER ranges require targetValueType PERCENT")

    def _secondary_targets(self, step: WorkoutStep, path: str) -> None:
        if step.secondary_target_type == SecondaryTargetType.SWIM_INSTRUCTION and (
            step.secondary_target_value_low is None
            or step.secondary_target_value_high is not None
            or step.secondary_target_value_type is not None
        ):
            self.add(_join(path, "secondaryTargetValueLow"), "SWIM_INSTRUCTION uses secondaryTargetValueLow (1-10) only")

        if step.secondary_target_type == SecondaryTargetType.SWIM_CSS_OFFSET:
            low = step.secondary_target_value_low
            if low is None or not -60 <= low <= 60:
                self.add(_join(path, "secondaryTargetValueLow"), "SWIM_CSS_OFFSET requires secondaryTargetValueLow between -60 and 60")
            if step.secondary_target_value_high is not None or step.secondary_target_value_type is not None:
                self.add(_join(path, "secondaryTargetValueHigh"), "SWIM_CSS_OFFSET does not use secondaryTargetValueHigh/Type")

    def _sport_matrix(self, step: WorkoutStep, sport: Sport, path: str) -> None:
        rules = SPORT_FIELD_RULES[sport]
        for field_name, rule in rules.items():
            value = getattr(step, _STEP_FIELD_ATTRS[field_name])
            if rule == REQUIRED and value is None:
                self.add(_join(path, field_name), f"{field_name} is required for {sport} steps", code="required")
            elif rule == FORBIDDEN and value is not None:
                self.add(_join(path, field_name), f"{field_name} is not allowed for {sport} steps", code="forbidden")

        if step.duration_type == DurationType.REPS and sport not in REPS_DURATION_SPORTS:
            self.add(_join(path, "durationType"), f"REPS duration is not allowed for {sport}; use TIME or FIXED_REST")

        if (
            self.check_exercise_catalog
            and is_exercise_sport(sport)
            and step.exercise_category
            and step.exercise_name
            and not is_known_exercise(sport, step.exercise_category, step.exercise_name)
        ):
            self.add(
                _join(path, "exerciseName"),
                f"{step.exercise_category}/{step.exercise_name} is not a known {sport} exercise",
                code="unknown_exercise",
            )

    def repeat_step(self, step: WorkoutRepeatStep, sport: Sport, path: str) -> None:
        if step.duration_type is not None or step.duration_value is not None:
            self.add(_join(path, "durationType"), "WorkoutRepeatStep has no duration of its own (durations live in child steps)")

        last_order = 0
        for index, child in enumerate(step.steps):
            child_path = _join(path, "steps", index)
            if child.step_order <= last_order:
                self.add(_join(child_path, "stepOrder"), "stepOrder must be strictly increasing inside a WorkoutRepeatStep")
            last_order = child.step_order
            self.simple_step(child, sport, child_path)

    # Segments and workout

    def segment(self, segment: Segment, workout_sport: Sport, path: str) -> None:
        last_order = 0
        for index, step in enumerate(segment.steps):
            step_path = _join(path, "steps", index)
            if step.step_order <= last_order:
                self.add(_join(step_path, "stepOrder"), "stepOrder must be strictly increasing within a segment")
            last_order = step.step_order

            if isinstance(step, WorkoutRepeatStep):
                self.repeat_step(step, segment.sport, step_path)
            else:
                self.simple_step(step, segment.sport, step_path)

        if segment.sport == Sport.LAP_SWIMMING:
            for index, step in enumerate(segment.steps):
                self._swim_targets(step, _join(path, "steps", index))

        if workout_sport != Sport.MULTI_SPORT and segment.sport != workout_sport:
            self.add(_join(path, "sport"), "segment sport must match the workout sport")

    def _swim_targets(self, step: WorkoutStep | WorkoutRepeatStep, path: str) -> None:
        if isinstance(step, WorkoutRepeatStep):
            for index, child in enumerate(step.steps):
                self._swim_targets(child, _join(path, "steps", index))
        elif step.target_type is not None:
            self.add(_join(path, "targetType"), "swim steps must leave targetType null (use secondary targets)")

    def workout(self, workout: GarminWorkout) -> None:
        last_order = 0
        for index, segment in enumerate(workout.segments):
            segment_path = _join("segments", index)
            if segment.segment_order <= last_order:
                self.add(_join(segment_path, "segmentOrder"), "segmentOrder must be strictly increasing")
            last_order = segment.segment_order
            if workout.sport == Sport.MULTI_SPORT and segment.sport == Sport.MULTI_SPORT:
                self.add(_join(segment_path, "sport"), "segments of a multi-sport workout cannot be MULTI_SPORT")
            self.segment(segment, workout.sport, segment_path)

        if workout.pool_length is None and workout.pool_length_unit is not None:
            self.add("poolLengthUnit", "poolLengthUnit cannot be set without poolLength")

        if workout.sport not in {Sport.LAP_SWIMMING, Sport.MULTI_SPORT} and (
            workout.pool_length is not None or workout.pool_length_unit is not None
        ):
            self.add("poolLength", "poolLength/poolLengthUnit are only valid for pool swimming")

        self._swim_pool_consistency(workout)

    def _swim_pool_consistency(self, workout: GarminWorkout) -> None:
        swim_segments = [(index, segment) for index, segment in enumerate(workout.segments) if segment.sport == Sport.LAP_SWIMMING]
        if not swim_segments:
            return

        first = swim_segments[0][1]
        reference_length = workout.pool_length if workout.pool_length is not None else first.pool_length
        reference_unit = workout.pool_length_unit if workout.pool_length_unit is not None else first.pool_length_unit

        for index, segment in swim_segments:
            path = _join("segments", index)
            if (segment.pool_length is None) != (segment.pool_length_unit is None):
                self.add(_join(path, "poolLength"), "poolLength and poolLengthUnit must be provided together for swimming")
            if reference_length is not None and segment.pool_length is not None and segment.pool_length != reference_length:
                self.add(_join(path, "poolLength"), "poolLength must match between the workout and its swim segments")
            if reference_unit is not None and segment.pool_length_unit is not None and segment.pool_length_unit != reference_unit:
                self.add(_join(path, "poolLengthUnit"), "poolLengthUnit must match between the workout and its swim segments")


def _structural_issues(error: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        # Discriminated unions insert the tag name into the location
        parts = [part for part in detail["loc"] if part not in _DISCRIMINATOR_TAGS]
        issues.append(ValidationIssue(path=_join(*parts), message=detail["msg"], code=detail["type"]))
    return issues


def validate_garmin_workout(data: Any, *, check_exercise_catalog: bool = False) -> WorkoutValidationResult:
    """Validate a workout document against the Garmin Training API contract.

    Args:
        data: Decoded workout JSON (camelCase keys)
        check_exercise_catalog: Also require exercise (category, name) pairs to
            exist in the static catalog for exercise-based sports

    Returns:
        WorkoutValidationResult; `workout` is the parsed model when the
        structural pass succeeded, `issues` lists every problem found
    """
    try:
        workout = GarminWorkout.model_validate(data)
    except PydanticValidationError as e:
        return WorkoutValidationResult(workout=None, issues=_structural_issues(e))

    collector = _IssueCollector(check_exercise_catalog=check_exercise_catalog)
    collector.workout(workout)
    return WorkoutValidationResult(workout=workout, issues=collector.issues)


def format_issues_for_prompt(issues: list[ValidationIssue], limit: int = 20) -> str:
    """Bullet list of `path: message` lines for correction prompts."""
    lines = [f"- {issue.path or '(root)'}: {issue.message}" for issue in issues[:limit]]
    if len(issues) > limit:
        lines.append(f"- … {len(issues) - limit} more issue(s)")
    return "\n".join(lines)
