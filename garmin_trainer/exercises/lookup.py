"""Fuzzy search over the Garmin exercise catalog.

Exposed to the AI agent as the `exercise_lookup` tool so generated workouts
reference exact catalog identifiers. Matching is two-stage:

1. Substring match of the accent-folded query against "category name" and the
   localized labels (confidence 1.0)
2. rapidfuzz token_set_ratio scoring for the rest, kept above FUZZY_MIN_SCORE and
   scaled by FUZZY_WEIGHT so a fuzzy hit never outranks a substring hit
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from functools import lru_cache

from loguru import logger
from rapidfuzz import fuzz

from garmin_trainer.exercises.catalog import ExerciseEntry, iter_exercises
from garmin_trainer.exercises.labels import describe_exercise, get_exercise_label

DEFAULT_LIMIT = 10
FUZZY_MIN_SCORE = 0.6
FUZZY_WEIGHT = 0.95

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


@dataclass(frozen=True)
class ExerciseLookupResult:
    sport: str
    exercise_category: str
    exercise_name: str
    label: str
    description: str | None
    score: float

    def to_dict(self) -> dict:
        return {
            "sport": self.sport,
            "exerciseCategory": self.exercise_category,
            "exerciseName": self.exercise_name,
            "label": self.label,
            "description": self.description,
            "score": round(self.score, 3),
        }


def normalize_text(value: str | None) -> str:
    """Lower-case, strip accents, collapse punctuation and underscores to spaces."""
    decomposed = unicodedata.normalize("NFD", value or "")
    without_marks = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_ALNUM.sub(" ", without_marks.lower()).strip()


@lru_cache(maxsize=1)
def _search_index() -> tuple[tuple[ExerciseEntry, tuple[str, ...]], ...]:
    """Catalog entries with their searchable haystacks (identifiers + fr/en labels)."""
    index = []
    for entry in iter_exercises():
        haystacks = {
            normalize_text(f"{entry.category} {entry.name}"),
            normalize_text(get_exercise_label(entry.name, "fr")),
            normalize_text(get_exercise_label(entry.name, "en")),
        }
        index.append((entry, tuple(sorted(haystacks))))
    return tuple(index)


def search_garmin_exercises(query: str, sport: str | None = None, limit: int = DEFAULT_LIMIT) -> list[ExerciseLookupResult]:
    """Find catalog exercises matching a free-text description.

    Args:
        query: Human description in any supported language ("pompes", "goblet squat")
        sport: Optional sport filter (STRENGTH_TRAINING, CARDIO_TRAINING, ...)
        limit: Maximum number of results (at least 1)

    Returns:
        Results ordered by confidence, substring hits first
    """
    normalized_query = normalize_text(query)
    if not normalized_query:
        return []

    limit = max(1, limit)
    sport_filter = normalize_text(sport) if sport else None
    scored: list[ExerciseLookupResult] = []

    for entry, haystacks in _search_index():
        if sport_filter and normalize_text(entry.sport) != sport_filter:
            continue

        if any(normalized_query in haystack for haystack in haystacks):
            score = 1.0
        else:
            ratio = max(fuzz.token_set_ratio(normalized_query, haystack) for haystack in haystacks) / 100.0
            if ratio < FUZZY_MIN_SCORE:
                continue
            score = ratio * FUZZY_WEIGHT

        scored.append(
            ExerciseLookupResult(
                sport=entry.sport,
                exercise_category=entry.category,
                exercise_name=entry.name,
                label=f"{entry.sport} • {entry.category} • {entry.name}",
                description=describe_exercise(entry.category, entry.name),
                score=score,
            )
        )

    # Stable sort keeps catalog order among equal scores
    scored.sort(key=lambda result: result.score, reverse=True)
    results = scored[:limit]
    logger.info(f"[EXERCISES] lookup query={query!r} sport={sport} hits={len(results)}")
    return results


def exercise_lookup(query: str, sport: str | None = None) -> list[dict]:
    """Tool entrypoint: look up exact Garmin exercise identifiers for a description.

    Args:
        query: Free-text exercise description (any language)
        sport: Optional target sport (STRENGTH_TRAINING, CARDIO_TRAINING, YOGA, PILATES)
    """
    return [result.to_dict() for result in search_garmin_exercises(query, sport=sport, limit=DEFAULT_LIMIT)]
