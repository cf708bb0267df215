"""Prompt template loading and rendering for Garmin conversions."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from garmin_trainer.config.settings import settings
from garmin_trainer.core.errors import ConfigurationError

PROMPTS_DIR = Path(__file__).parent
GARMIN_TRAINER_PROMPT_FILE = "garmin_trainer.txt"

DEFAULT_SYSTEM_PROMPT = (
    "You prepare Garmin workouts for Adapt2Life. Follow the user prompt exactly and answer with JSON only."
)


@lru_cache(maxsize=1)
def _load_packaged_prompt() -> str:
    prompt_path = PROMPTS_DIR / GARMIN_TRAINER_PROMPT_FILE
    if not prompt_path.exists():
        raise ConfigurationError(f"Prompt file not found: {prompt_path}")
    return prompt_path.read_text(encoding="utf-8").strip()


def load_prompt_template() -> str:
    """GARMIN_TRAINER_PROMPT when set, else the packaged template."""
    if settings.garmin_trainer_prompt and settings.garmin_trainer_prompt.strip():
        return settings.garmin_trainer_prompt
    return _load_packaged_prompt()


def build_final_prompt(template: str, plan_markdown: str, structured_plan_json: str | None = None) -> str:
    """Fill the template placeholders.

    {{STRUCTURED_PLAN_JSON}} falls back to the markdown when no structured
    plan is available. A template without any placeholder gets the plan
    appended.
    """
    prompt = template
    has_placeholder = any(
        token in prompt for token in ("{{HUMAN_PLAN_MARKDOWN}}", "{{STRUCTURED_PLAN_JSON}}", "{{EXAMPLE_MARKDOWN}}")
    )
    prompt = prompt.replace("{{STRUCTURED_PLAN_JSON}}", structured_plan_json or plan_markdown)
    prompt = prompt.replace("{{HUMAN_PLAN_MARKDOWN}}", plan_markdown)
    prompt = prompt.replace("{{EXAMPLE_MARKDOWN}}", plan_markdown)
    if not has_placeholder:
        prompt = f"{prompt.strip()}\n\n---\nTraining session (markdown):\n{plan_markdown}"
    return prompt


def owner_instruction(garmin_user_id: str | None) -> str:
    if garmin_user_id:
        return f'Use exactly "ownerId": "{garmin_user_id}" (first field of the JSON) and never change this value.'
    return 'No user identified: set "ownerId": null.'


def correction_prompt(base_prompt: str, previous_answer: str, issues_text: str) -> str:
    """Re-prompt listing the validation issues of the previous answer."""
    return (
        f"{base_prompt}\n\n---\nYour previous answer was rejected by the Garmin workout validator.\n"
        f"Previous answer:\n{previous_answer}\n\n"
        f"Issues (path: problem):\n{issues_text}\n\n"
        "Return the corrected JSON document only."
    )
