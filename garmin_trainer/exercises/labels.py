"""Human labels for Garmin exercise identifiers (fr, en).

English labels are the identifier in title case. French labels are built from
whole-name translations first, then multi-token phrases (up to 3 tokens),
then single tokens; unknown tokens are kept lower-cased.
"""

from __future__ import annotations

from typing import Literal

Locale = Literal["fr", "en"]

SUPPORTED_LOCALES = frozenset({"fr", "en"})

_SPECIAL_NAMES_FR = {
    "PUSH_UP": "Pompe",
    "PUSH_UPS": "Pompes",
    "PULL_UP": "Traction",
    "PULL_UPS": "Tractions",
    "JUMPING_JACKS": "Jumping jacks",
    "BURPEE": "Burpee",
    "BURPEES": "Burpees",
    "DEADLIFT": "Soulevé de terre",
    "SQUAT": "Squat",
    "LUNGE": "Fente",
    "JUMP_SQUAT": "Squat sauté",
    "JUMP_ROPE": "Corde à sauter",
}

_PHRASES_FR = {
    "SINGLE_LEG": "une jambe",
    "SINGLE_ARM": "un bras",
    "SIDE_PLANK": "gainage latéral",
    "HIGH_PLANK": "gainage haut",
    "ROMANIAN_DEADLIFT": "soulevé de terre roumain",
    "GLUTE_BRIDGE": "pont fessier",
    "RUSSIAN_TWIST": "twist russe",
    "BANDED_EXERCISES": "exercices avec élastique",
    "BENCH_PRESS": "développé couché",
    "BARBELL_BENCH_PRESS": "développé couché barre",
    "DUMBBELL_BENCH_PRESS": "développé couché haltères",
    "MOUNTAIN_CLIMBER": "grimpeur",
    "CALF_RAISE": "élévation mollets",
}

_TOKENS_FR = {
    "AB": "abdos",
    "ABS": "abdos",
    "CORE": "gainage",
    "TWIST": "rotation",
    "BACK": "dos",
    "BICYCLE": "vélo",
    "CRUNCH": "crunch",
    "EXERCISES": "exercices",
    "CALF": "mollet",
    "RAISE": "élévation",
    "FRONT": "avant",
    "REAR": "arrière",
    "LATERAL": "latéral",
    "SIDE": "côté",
    "BRIDGE": "pont",
    "HIP": "hanche",
    "PRESS": "développé",
    "BENCH": "banc",
    "ROW": "tirage",
    "PULL": "tirage",
    "PUSH": "poussée",
    "JUMP": "saut",
    "HOLD": "maintien",
    "WALK": "marche",
    "WALKING": "marche",
    "PLANK": "gainage",
    "KNEE": "genou",
    "KNEES": "genoux",
    "LEG": "jambe",
    "LEGS": "jambes",
    "ARM": "bras",
    "SHOULDER": "épaule",
    "CHEST": "poitrine",
    "DUMBBELL": "haltère",
    "BARBELL": "barre",
    "BAND": "élastique",
    "BANDED": "avec élastique",
    "ROPE": "corde",
    "SEATED": "assis",
    "STANDING": "debout",
    "OVERHEAD": "au-dessus de la tête",
    "DIP": "dips",
    "ON": "sur",
    "AND": "et",
    "WITH": "avec",
    "EXTENSION": "extension",
}


def _title_case(value: str) -> str:
    return " ".join(word.capitalize() for word in value.lower().replace("_", " ").split())


def _to_french(value: str) -> str | None:
    special = _SPECIAL_NAMES_FR.get(value)
    if special:
        return special

    tokens = [token for token in value.split("_") if token]
    words: list[str] = []
    index = 0
    while index < len(tokens):
        for span in range(min(3, len(tokens) - index), 1, -1):
            phrase = _PHRASES_FR.get("_".join(tokens[index : index + span]))
            if phrase:
                words.append(phrase)
                index += span
                break
        else:
            token = tokens[index]
            words.append(_TOKENS_FR.get(token, token.lower()))
            index += 1

    sentence = " ".join(words).strip()
    return sentence[:1].upper() + sentence[1:] if sentence else None


def get_exercise_label(value: str | None, locale: str = "fr") -> str | None:
    """Label an exercise name or category identifier.

    Unsupported locales fall back to English.
    """
    if not value or not value.strip():
        return None
    normalized = value.strip().upper()
    if locale not in SUPPORTED_LOCALES or locale == "en":
        return _title_case(normalized)
    return _to_french(normalized)


def describe_exercise(category: str | None, name: str | None, locale: str = "fr") -> str | None:
    """`<name label> — <category label>` or whichever label is available."""
    name_label = get_exercise_label(name, locale)
    category_label = get_exercise_label(category, locale)
    if name_label and category_label:
        return f"{name_label} — {category_label.lower()}"
    return name_label or category_label
