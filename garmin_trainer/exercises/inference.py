"""Keyword heuristics guessing which sports a markdown plan is about.

Used to pick the AI strategy (exercise tool vs. catalog snippet) and the
fallback sport of structured plans.
"""

from __future__ import annotations

import re

from garmin_trainer.config.settings import settings

FALLBACK_EXERCISE_SPORTS: tuple[str, ...] = ("STRENGTH_TRAINING", "CARDIO_TRAINING", "YOGA", "PILATES")

TOOL_SUPPORTED_SPORTS = frozenset(FALLBACK_EXERCISE_SPORTS)


def _patterns(*expressions: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


EXERCISE_SPORT_HINTS: dict[str, tuple[re.Pattern[str], ...]] = {
    "STRENGTH_TRAINING": _patterns(
        r"muscu", r"force", r"full\s*body", r"halt[eè]re", r"renfo", r"strength", r"crossfit", r"wod", r"hiit", "💪", "🏋"
    ),
    "CARDIO_TRAINING": _patterns(r"hiit", r"cardio", r"metcon", r"circuit", r"interval", r"tabata", "🔥"),
    "YOGA": _patterns(r"yoga", "🧘", r"flow"),
    "PILATES": _patterns(r"pilates"),
}

# Checked in order: endurance sports first so "course + renfo" stays a run
PRIMARY_SPORT_HINTS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = (
    ("LAP_SWIMMING", _patterns("🏊", r"natation", r"swim", r"piscine", r"palme", r"crawl")),
    ("CYCLING", _patterns("🚴", r"vélo", r"velo", r"bike", r"cycling", r"p[eé]dal", r"gravel")),
    ("RUNNING", _patterns("🏃", r"course", r"running", r"\brun\b", r"footing", r"trail", r"fractionn[eé]")),
    ("STRENGTH_TRAINING", EXERCISE_SPORT_HINTS["STRENGTH_TRAINING"]),
    ("CARDIO_TRAINING", EXERCISE_SPORT_HINTS["CARDIO_TRAINING"]),
    ("YOGA", EXERCISE_SPORT_HINTS["YOGA"]),
    ("PILATES", EXERCISE_SPORT_HINTS["PILATES"]),
)


def infer_exercise_sports(markdown: str | None) -> list[str]:
    """Exercise-catalog sports mentioned by the plan, or the full fallback list."""
    text = markdown or ""
    matches = [sport for sport, patterns in EXERCISE_SPORT_HINTS.items() if any(p.search(text) for p in patterns)]
    return matches or list(FALLBACK_EXERCISE_SPORTS)


def is_fallback_sports_list(sports: list[str] | None) -> bool:
    return not sports or set(sports) == set(FALLBACK_EXERCISE_SPORTS)


def infer_primary_sport(markdown: str | None) -> str | None:
    """Best-guess Garmin sport for the whole plan, None when nothing matches."""
    if not markdown:
        return None
    for sport, patterns in PRIMARY_SPORT_HINTS:
        if any(pattern.search(markdown) for pattern in patterns):
            return sport
    return None


def should_use_exercise_tool(primary_sport: str | None) -> bool:
    """Tool-augmented generation is only worth it for exercise-based sports."""
    if not settings.garmin_exercise_tool_enabled or not primary_sport:
        return False
    return primary_sport.upper() in TOOL_SUPPORTED_SPORTS


def exercise_tool_policy(markdown: str | None) -> tuple[bool, list[str]]:
    """Decide whether a plan goes through the exercise tool.

    Returns:
        (use_tool, sports); the tool is used only when every inferred sport
        is tool-supported and the inference did not fall back to the default list
    """
    sports = infer_exercise_sports(markdown)
    primary = infer_primary_sport(markdown)
    primary_supported = should_use_exercise_tool(primary) if primary else True
    use_tool = (
        settings.garmin_exercise_tool_enabled
        and not is_fallback_sports_list(sports)
        and all(should_use_exercise_tool(sport) for sport in sports)
        and primary_supported
    )
    return use_tool, sports
