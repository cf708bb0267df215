"""Tests for the Garmin workout validator and its per-sport exercise matrix."""

import copy

import pytest

from garmin_trainer.workouts.schema import (
    REPS_DURATION_SPORTS,
    SPORT_FIELD_RULES,
    Sport,
    ValidationIssue,
    format_issues_for_prompt,
    validate_garmin_workout,
)


def _workout(sport: str, steps: list[dict], **extra) -> dict:
    workout = {
        "workoutName": "Test",
        "sport": sport,
        "workoutProvider": "Adapt2Life",
        "workoutSourceId": "Adapt2Life",
        "isSessionTransitionEnabled": False,
        "segments": [{"segmentOrder": 1, "sport": sport, "steps": steps}],
    }
    workout.update(extra)
    return workout


def _step(order: int = 1, **fields) -> dict:
    step = {
        "type": "WorkoutStep",
        "stepOrder": order,
        "intensity": "ACTIVE",
        "durationType": "TIME",
        "durationValue": 300,
    }
    step.update(fields)
    return step


def _paths(result) -> set[str]:
    return {issue.path for issue in result.issues}


def test_matrix_covers_every_sport():
    assert set(SPORT_FIELD_RULES) == set(Sport)
    assert Sport.YOGA not in REPS_DURATION_SPORTS


def test_valid_running_workout():
    result = validate_garmin_workout(_workout("RUNNING", [_step(targetType="PACE", targetValueLow=3.2, targetValueHigh=3.5)]))

    assert result.success
    payload = result.workout.to_payload()
    assert payload["segments"][0]["steps"][0]["targetType"] == "PACE"
    assert "workoutName" in payload


def test_payload_omits_unset_fields():
    payload = validate_garmin_workout(_workout("RUNNING", [_step()])).workout.to_payload()

    step = payload["segments"][0]["steps"][0]
    assert "exerciseCategory" not in step
    assert "targetType" not in step
    assert "poolLength" not in payload
    assert None not in step.values()


class TestStructural:
    def test_missing_fields_reported_with_paths(self):
        result = validate_garmin_workout({"sport": "RUNNING", "segments": []})

        assert result.workout is None
        assert {"workoutName", "workoutProvider", "segments"} <= _paths(result)

    def test_unknown_step_type(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step(type="Unknown")]))

        assert not result.success
        assert any(issue.path.startswith("segments.0.steps.0") for issue in result.issues)

    def test_discriminator_tag_not_in_path(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step(intensity="FAST")]))

        assert "segments.0.steps.0.intensity" in _paths(result)


class TestSportMatrix:
    def test_strength_requires_exercise_fields(self):
        result = validate_garmin_workout(_workout("STRENGTH_TRAINING", [_step(durationType="REPS", durationValue=10)]))

        issues = {issue.path: issue.code for issue in result.issues}
        assert issues["segments.0.steps.0.exerciseCategory"] == "required"
        assert issues["segments.0.steps.0.exerciseName"] == "required"

    def test_strength_rest_step_needs_exercise(self):
        result = validate_garmin_workout(_workout("STRENGTH_TRAINING", [_step(intensity="REST", durationType="TIME", durationValue=60)]))

        assert not result.success
        assert {issue.path for issue in result.issues} == {
            "segments.0.steps.0.exerciseCategory",
            "segments.0.steps.0.exerciseName",
        }

    def test_strength_rest_step_with_exercise_passes(self):
        steps = [
            _step(1, durationType="REPS", durationValue=10, exerciseCategory="PUSH_UP", exerciseName="PUSH_UP"),
            _step(2, intensity="REST", durationType="FIXED_REST", durationValue=60, exerciseCategory="PUSH_UP", exerciseName="PUSH_UP"),
        ]

        assert validate_garmin_workout(_workout("STRENGTH_TRAINING", steps)).success

    def test_running_forbids_exercise_category(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step(exerciseCategory="RUN")]))

        assert [(issue.path, issue.code) for issue in result.issues] == [("segments.0.steps.0.exerciseCategory", "forbidden")]

    def test_cardio_forbids_weight(self):
        result = validate_garmin_workout(
            _workout("CARDIO_TRAINING", [_step(exerciseCategory="CARDIO", weightValue=10, weightDisplayUnit="KILOGRAM")])
        )

        assert _paths(result) == {"segments.0.steps.0.weightValue", "segments.0.steps.0.weightDisplayUnit"}

    def test_yoga_rejects_reps(self):
        result = validate_garmin_workout(_workout("YOGA", [_step(durationType="REPS", durationValue=8)]))

        assert _paths(result) == {"segments.0.steps.0.durationType"}

    def test_matrix_applies_inside_repeats(self):
        repeat = {
            "type": "WorkoutRepeatStep",
            "stepOrder": 1,
            "intensity": "INTERVAL",
            "repeatType": "REPEAT_UNTIL_STEPS_CMPLT",
            "repeatValue": 3,
            "steps": [_step(1, durationType="REPS", durationValue=12)],
        }

        result = validate_garmin_workout(_workout("STRENGTH_TRAINING", [repeat]))

        assert "segments.0.steps.0.steps.0.exerciseName" in _paths(result)

    def test_catalog_check_flags_unknown_exercise(self):
        step = _step(durationType="REPS", durationValue=10, exerciseCategory="PUSH_UP", exerciseName="MOONWALK")

        assert validate_garmin_workout(_workout("STRENGTH_TRAINING", [step])).success

        result = validate_garmin_workout(_workout("STRENGTH_TRAINING", [step]), check_exercise_catalog=True)
        assert [issue.code for issue in result.issues] == ["unknown_exercise"]


class TestRefinements:
    def test_open_target_must_have_no_values(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step(targetType="OPEN", targetValueLow=1)]))

        assert _paths(result) == {"segments.0.steps.0.targetType"}

    def test_heart_rate_range_needs_percent(self):
        step = _step(targetType="HEART_RATE", targetValueLow=70, targetValueHigh=80)

        assert _paths(validate_garmin_workout(_workout("RUNNING", [step]))) == {"segments.0.steps.0.targetValueType"}

        step["targetValueType"] = "PERCENT"
        assert validate_garmin_workout(_workout("RUNNING", [step])).success

    def test_non_integer_time_duration(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step(durationValue=12.5)]))

        assert _paths(result) == {"segments.0.steps.0.durationValue"}

    def test_step_order_must_increase(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step(2), _step(1)]))

        assert "segments.0.steps.1.stepOrder" in _paths(result)

    def test_segment_sport_must_match_workout(self):
        workout = _workout("RUNNING", [_step()])
        workout["segments"][0]["sport"] = "CYCLING"

        assert "segments.0.sport" in _paths(validate_garmin_workout(workout))

    def test_pool_length_only_for_swimming(self):
        result = validate_garmin_workout(_workout("RUNNING", [_step()], poolLength=25, poolLengthUnit="METER"))

        assert "poolLength" in _paths(result)

    def test_swim_steps_keep_target_type_null(self):
        workout = _workout("LAP_SWIMMING", [_step(durationType="DISTANCE", durationValue=100, targetType="PACE")], poolLength=25, poolLengthUnit="METER")
        workout["segments"][0].update(poolLength=25, poolLengthUnit="METER")

        assert _paths(validate_garmin_workout(workout)) == {"segments.0.steps.0.targetType"}

    def test_swim_pool_length_mismatch(self):
        workout = _workout("LAP_SWIMMING", [_step(durationType="DISTANCE", durationValue=100)], poolLength=25, poolLengthUnit="METER")
        valid = copy.deepcopy(workout)
        valid["segments"][0].update(poolLength=25, poolLengthUnit="METER")
        assert validate_garmin_workout(valid).success

        workout["segments"][0].update(poolLength=50, poolLengthUnit="METER")
        assert _paths(validate_garmin_workout(workout)) == {"segments.0.poolLength"}


@pytest.mark.parametrize("limit", [1, 20])
def test_format_issues_for_prompt(limit):
    issues = [ValidationIssue(path=f"segments.0.steps.{index}", message="bad") for index in range(3)] + [
        ValidationIssue(path="", message="root problem")
    ]

    text = format_issues_for_prompt(issues, limit=limit)

    assert text.splitlines()[0] == "- segments.0.steps.0: bad"
    if limit == 1:
        assert text.splitlines()[-1] == "- … 3 more issue(s)"
    else:
        assert "- (root): root problem" in text
