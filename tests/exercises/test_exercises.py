import pytest

from garmin_trainer.exercises.catalog import build_exercise_catalog_snippet, is_known_exercise, iter_exercises
from garmin_trainer.exercises.inference import (
    FALLBACK_EXERCISE_SPORTS,
    exercise_tool_policy,
    infer_exercise_sports,
    infer_primary_sport,
)
from garmin_trainer.exercises.labels import describe_exercise, get_exercise_label
from garmin_trainer.exercises.lookup import FUZZY_WEIGHT, exercise_lookup, normalize_text, search_garmin_exercises


class TestCatalog:
    def test_known_exercise_is_per_sport(self):
        assert is_known_exercise("strength_training", "PUSH_UP", "PUSH_UP")
        assert not is_known_exercise("YOGA", "PUSH_UP", "PUSH_UP")
        assert not is_known_exercise("STRENGTH_TRAINING", "PUSH_UP", None)

    def test_iter_exercises_filters_sport(self):
        assert {entry.sport for entry in iter_exercises("PILATES")} == {"PILATES"}

    def test_snippet_sections(self):
        snippet = build_exercise_catalog_snippet(["yoga"])

        assert snippet.startswith("SPORT YOGA\n")
        assert "SPORT STRENGTH_TRAINING" not in snippet

    def test_snippet_truncation(self):
        snippet = build_exercise_catalog_snippet(max_chars=80)

        assert len(snippet) <= 80
        assert snippet.endswith("…catalog truncated")


class TestLabels:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("PUSH_UP", "Pompe"),
            ("JUMP_ROPE", "Corde à sauter"),
            ("BARBELL_BENCH_PRESS", "Développé couché barre"),
        ],
    )
    def test_french_labels(self, value, expected):
        assert get_exercise_label(value) == expected

    def test_english_and_unknown_locale(self):
        assert get_exercise_label("barbell_bench_press", "en") == "Barbell Bench Press"
        assert get_exercise_label("GOBLET_SQUAT", "de") == "Goblet Squat"

    def test_empty_value(self):
        assert get_exercise_label("  ") is None
        assert describe_exercise(None, None) is None

    def test_describe_exercise(self):
        assert describe_exercise("BENCH_PRESS", "BARBELL_BENCH_PRESS") == "Développé couché barre — développé couché"
        assert describe_exercise("PUSH_UP", None) == "Pompe"


class TestLookup:
    def test_normalize_text(self):
        assert normalize_text("Développé_Couché!") == "developpe couche"

    def test_exact_identifier_query(self):
        results = search_garmin_exercises("goblet squat", sport="STRENGTH_TRAINING")

        assert (results[0].exercise_category, results[0].exercise_name) == ("SQUAT", "GOBLET_SQUAT")
        assert results[0].score == 1.0

    def test_fuzzy_hits_rank_below_substring_hits(self):
        results = search_garmin_exercises("heavy squat", sport="STRENGTH_TRAINING")

        assert results
        assert all(result.score <= FUZZY_WEIGHT for result in results)

        exact = search_garmin_exercises("goblet squat", sport="STRENGTH_TRAINING")
        assert [result.score for result in exact] == sorted((result.score for result in exact), reverse=True)
        assert exact[1].score < 1.0

    def test_french_label_query(self):
        results = search_garmin_exercises("Corde à sauter")

        assert results[0].exercise_name == "JUMP_ROPE"
        assert results[0].sport == "CARDIO_TRAINING"

    def test_sport_filter_and_limit(self):
        results = search_garmin_exercises("plank", sport="pilates", limit=2)

        assert len(results) == 2
        assert {result.sport for result in results} == {"PILATES"}

    def test_empty_query(self):
        assert search_garmin_exercises("  ") == []

    def test_tool_entrypoint_returns_dicts(self):
        hits = exercise_lookup("burpee", sport="CARDIO_TRAINING")

        assert hits[0]["exerciseName"] == "BURPEE"
        assert set(hits[0]) == {"sport", "exerciseCategory", "exerciseName", "label", "description", "score"}
        assert hits[0]["description"].startswith("Burpee — ")


class TestInference:
    def test_exercise_sports(self):
        assert infer_exercise_sports("Séance muscu full body") == ["STRENGTH_TRAINING"]
        assert infer_exercise_sports("Repos") == list(FALLBACK_EXERCISE_SPORTS)

    def test_primary_sport_prefers_endurance(self):
        assert infer_primary_sport("Footing 45 min puis renfo") == "RUNNING"
        assert infer_primary_sport("Natation 2 km") == "LAP_SWIMMING"
        assert infer_primary_sport(None) is None

    def test_policy_uses_tool_for_exercise_plans(self):
        assert exercise_tool_policy("Séance muscu full body") == (True, ["STRENGTH_TRAINING"])
        assert exercise_tool_policy("Yoga du soir")[0] is True

    def test_policy_skips_tool_for_endurance_or_unknown(self):
        assert exercise_tool_policy("Footing 45 min puis renfo")[0] is False
        assert exercise_tool_policy("Séance du jour") == (False, list(FALLBACK_EXERCISE_SPORTS))

    def test_policy_respects_setting(self, configured_settings, monkeypatch):
        monkeypatch.setattr(configured_settings, "garmin_exercise_tool_enabled", False)

        assert exercise_tool_policy("Séance muscu")[0] is False
