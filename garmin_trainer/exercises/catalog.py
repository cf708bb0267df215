"""Static Garmin exercise taxonomy.

Maps each exercise-capable sport to its categories and the exact exercise
names Garmin accepts in `exerciseCategory` / `exerciseName`. Names follow the
FIT SDK exercise enums.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

EXERCISE_SPORTS: tuple[str, ...] = ("STRENGTH_TRAINING", "CARDIO_TRAINING", "YOGA", "PILATES")

_CORE = (
    "ARM_AND_LEG_EXTENSION_ON_KNEES",
    "BICYCLE_CRUNCH",
    "DEAD_BUG",
    "HOLLOW_HOLD",
    "INCHWORM",
    "KNEELING_AB_WHEEL",
    "RUSSIAN_TWIST",
    "SIDE_BEND",
    "SWISS_BALL_PIKE",
    "WINDMILL_SWITCHES",
)

_PLANK = (
    "PLANK",
    "SIDE_PLANK",
    "HIGH_PLANK",
    "PLANK_WITH_LEG_LIFT",
    "PLANK_TO_PIKE",
    "SIDE_PLANK_WITH_LEG_LIFT",
    "MOUNTAIN_CLIMBER",
)

_HIP_RAISE = (
    "GLUTE_BRIDGE",
    "SINGLE_LEG_GLUTE_BRIDGE",
    "HIP_RAISE",
    "BARBELL_HIP_THRUST_ON_FLOOR",
    "CLAMS",
)

GARMIN_EXERCISE_CATALOG: dict[str, dict[str, tuple[str, ...]]] = {
    "STRENGTH_TRAINING": {
        "BANDED_EXERCISES": ("AB_TWIST", "BACK_EXTENSION", "BICYCLE_CRUNCH", "CHEST_PRESS", "LATERAL_WALK", "SQUAT"),
        "BENCH_PRESS": (
            "BARBELL_BENCH_PRESS",
            "DUMBBELL_BENCH_PRESS",
            "INCLINE_DUMBBELL_BENCH_PRESS",
            "CLOSE_GRIP_BARBELL_BENCH_PRESS",
            "SINGLE_ARM_DUMBBELL_BENCH_PRESS",
        ),
        "CALF_RAISE": ("STANDING_CALF_RAISE", "SEATED_CALF_RAISE", "SINGLE_LEG_STANDING_CALF_RAISE"),
        "CARRY": ("FARMERS_WALK", "OVERHEAD_CARRY", "SUITCASE_CARRY"),
        "CORE": _CORE,
        "CRUNCH": ("CRUNCH", "REVERSE_CRUNCH", "CABLE_CRUNCH", "LEG_RAISE_CRUNCH"),
        "CURL": ("BARBELL_BICEPS_CURL", "DUMBBELL_BICEPS_CURL", "DUMBBELL_HAMMER_CURL", "CABLE_BICEPS_CURL"),
        "DEADLIFT": (
            "BARBELL_DEADLIFT",
            "DUMBBELL_DEADLIFT",
            "ROMANIAN_DEADLIFT",
            "SINGLE_LEG_ROMANIAN_DEADLIFT_WITH_DUMBBELL",
            "SUMO_DEADLIFT",
        ),
        "HIP_RAISE": _HIP_RAISE,
        "LATERAL_RAISE": ("DUMBBELL_LATERAL_RAISE", "FRONT_RAISE", "REAR_DELT_FLY"),
        "LUNGE": ("DUMBBELL_LUNGE", "REVERSE_LUNGE", "WALKING_LUNGE", "BULGARIAN_SPLIT_SQUAT", "LATERAL_LUNGE"),
        "OLYMPIC_LIFT": ("BARBELL_HANG_POWER_CLEAN", "BARBELL_POWER_CLEAN", "BARBELL_SNATCH", "KETTLEBELL_SWING"),
        "PLANK": _PLANK,
        "PULL_UP": ("PULL_UP", "CHIN_UP", "LAT_PULLDOWN", "BANDED_PULL_UPS"),
        "PUSH_UP": ("PUSH_UP", "INCLINE_PUSH_UP", "DIAMOND_PUSH_UP", "KNEELING_PUSH_UP", "DECLINE_PUSH_UP"),
        "ROW": ("BARBELL_ROW", "DUMBBELL_ROW", "SEATED_CABLE_ROW", "INVERTED_ROW", "SINGLE_ARM_ROW"),
        "SHOULDER_PRESS": ("BARBELL_SHOULDER_PRESS", "DUMBBELL_SHOULDER_PRESS", "ARNOLD_PRESS", "OVERHEAD_BARBELL_PRESS"),
        "SQUAT": ("BARBELL_BACK_SQUAT", "BARBELL_FRONT_SQUAT", "GOBLET_SQUAT", "BODY_WEIGHT_SQUAT", "JUMP_SQUAT", "SQUAT"),
        "TOTAL_BODY": ("BURPEE", "THRUSTER", "TURKISH_GET_UP", "MAN_MAKER"),
        "TRICEPS_EXTENSION": ("BENCH_DIP", "DIP", "OVERHEAD_DUMBBELL_TRICEPS_EXTENSION", "TRICEPS_PRESSDOWN"),
    },
    "CARDIO_TRAINING": {
        "CARDIO": (
            "JUMP_ROPE",
            "JUMPING_JACKS",
            "HIGH_KNEES",
            "BUTT_KICKS",
            "SKATER",
            "SQUAT_JACKS",
            "TRIPLE_UNDER",
        ),
        "PLYO": ("BOX_JUMP", "JUMP_SQUAT", "LATERAL_PLYO_SQUATS", "TUCK_JUMP", "SPLIT_JUMP"),
        "PLANK": ("MOUNTAIN_CLIMBER", "PLANK_JACKS", "PLANK"),
        "TOTAL_BODY": ("BURPEE", "THRUSTER", "BEAR_CRAWL"),
        "RUN": ("RUN", "SPRINT", "SHUTTLE_RUN"),
        "ROW": ("INDOOR_ROW",),
    },
    "YOGA": {
        "CORE": _CORE,
        "PLANK": _PLANK,
        "HIP_RAISE": _HIP_RAISE,
        "HIP_STABILITY": ("FIRE_HYDRANT", "DONKEY_KICK", "STANDING_HIP_ABDUCTION"),
        "WARM_UP": ("NECK_ROLLS", "ARM_CIRCLES", "CAT_CAMEL", "WORLDS_GREATEST_STRETCH"),
    },
    "PILATES": {
        "CORE": _CORE,
        "CRUNCH": ("CRUNCH", "REVERSE_CRUNCH", "ROLL_UP"),
        "HIP_RAISE": _HIP_RAISE,
        "HIP_STABILITY": ("CLAMSHELL", "SIDE_LYING_LEG_LIFT", "FIRE_HYDRANT"),
        "PLANK": _PLANK,
        "SIT_UP": ("SIT_UP", "V_UP", "JACKKNIFE"),
    },
}


@dataclass(frozen=True)
class ExerciseEntry:
    sport: str
    category: str
    name: str


def iter_exercises(sport: str | None = None) -> Iterator[ExerciseEntry]:
    """Yield every catalog entry, optionally restricted to one sport."""
    for catalog_sport, categories in GARMIN_EXERCISE_CATALOG.items():
        if sport is not None and catalog_sport != sport.upper():
            continue
        for category, names in categories.items():
            for name in names:
                yield ExerciseEntry(sport=catalog_sport, category=category, name=name)


def is_exercise_sport(sport: str | None) -> bool:
    return bool(sport) and sport.upper() in GARMIN_EXERCISE_CATALOG


def is_known_exercise(sport: str, category: str | None, name: str | None) -> bool:
    """Whether (category, name) is a catalog pair for this sport."""
    if not category or not name:
        return False
    categories = GARMIN_EXERCISE_CATALOG.get(sport.upper())
    if not categories:
        return False
    return name in categories.get(category, ())


def build_exercise_catalog_snippet(sports: list[str] | None = None, max_chars: int = 6000) -> str:
    """Render the catalog as prompt text, one `SPORT X` section per sport.

    Output is cut at max_chars and marked as truncated.
    """
    selected = [sport.upper() for sport in sports] if sports else list(EXERCISE_SPORTS)
    lines: list[str] = []
    for sport in selected:
        categories = GARMIN_EXERCISE_CATALOG.get(sport)
        if not categories:
            continue
        lines.append(f"SPORT {sport}")
        for category, names in categories.items():
            lines.append(f"- {category}: {', '.join(names)}")

    snippet = "\n".join(lines)
    if len(snippet) <= max_chars:
        return snippet

    marker = "\n…catalog truncated"
    return snippet[: max(0, max_chars - len(marker))].rstrip() + marker
