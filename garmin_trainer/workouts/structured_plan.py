"""Structured plan intermediate representation.

A structured plan is what the plan generator embeds under its
"Plan structuré" / "Structured plan" heading: ordered sections (WARMUP, MAIN,
COOLDOWN), each holding `single` blocks or `repeat` blocks of sub-steps.
Semantic consistency with the sport is checked later by the workout
validator, not here.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError, field_validator
from pydantic.alias_generators import to_camel

STRUCTURED_SECTION_PATTERN = re.compile(
    r"#{1,6}[^\n]*?(?:plan\s+structur[ée]|structured\s+plan)[^\n]*\n\s*```json\s*(.*?)```",
    re.IGNORECASE | re.DOTALL,
)


class _PlanModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StructuredDuration(_PlanModel):
    type: Literal["TIME", "REPS", "DISTANCE", "FIXED_REST"]
    value: float = Field(gt=0)

    @field_validator("type", mode="before")
    @classmethod
    def upper_type(cls, value):
        return value.upper() if isinstance(value, str) else value


class StructuredTarget(_PlanModel):
    type: str
    low: float | None = None
    high: float | None = None

    @field_validator("type")
    @classmethod
    def canonical_type(cls, value: str) -> str:
        upper = value.strip().upper()
        return {"HR": "HEART_RATE", "FC": "HEART_RATE"}.get(upper, upper)


class StructuredStep(_PlanModel):
    type: Literal["single"] = "single"
    role: str | None = None
    label: str | None = None
    intensity: str | None = None
    duration: StructuredDuration
    targets: list[StructuredTarget] = Field(default_factory=list)
    notes: str | None = None
    exercise_category: str | None = None
    exercise_name: str | None = None
    weight_value: float | None = None
    weight_display_unit: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def lower_type(cls, value):
        return value.lower() if isinstance(value, str) else value


class StructuredRepeatBlock(_PlanModel):
    type: Literal["repeat"]
    label: str | None = None
    intensity: str | None = None
    repeat_count: int = Field(ge=1)
    steps: list[StructuredStep] = Field(min_length=1)
    notes: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def lower_type(cls, value):
        return value.lower() if isinstance(value, str) else value


def _block_kind(value: Any) -> str:
    """Blocks without a `type` are single steps."""
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind.lower() if isinstance(kind, str) else "single"


StructuredBlock = Annotated[
    Union[Annotated[StructuredStep, Tag("single")], Annotated[StructuredRepeatBlock, Tag("repeat")]],
    Discriminator(_block_kind),
]


class StructuredSection(_PlanModel):
    phase: str
    sport: str | None = None
    blocks: list[StructuredBlock] = Field(min_length=1)

    @field_validator("phase")
    @classmethod
    def upper_phase(cls, value: str) -> str:
        return value.strip().upper()


class StructuredPlan(_PlanModel):
    structured_plan_version: str = "1.0"
    sport: str | None = None
    pool_length: float | None = None
    pool_length_unit: Literal["METER", "YARD"] | None = None
    sections: list[StructuredSection] = Field(min_length=1)


def split_plan_markdown(markdown: str | None) -> tuple[str, str | None]:
    """Separate the human markdown from an embedded structured-plan JSON block.

    Returns:
        (human_markdown, structured_plan_json); the JSON is None when the
        markdown has no structured section or the block is empty
    """
    if not isinstance(markdown, str):
        return "", None

    match = STRUCTURED_SECTION_PATTERN.search(markdown)
    if not match:
        return markdown.strip(), None

    human = (markdown[: match.start()] + markdown[match.end() :]).strip()
    payload = match.group(1).strip()
    return human, payload or None


def is_structured_plan_document(data: object) -> bool:
    """Heuristic for AI output: a structured plan rather than a Garmin workout."""
    return isinstance(data, dict) and "sections" in data and "segments" not in data


def parse_structured_plan(data: str | dict | None) -> StructuredPlan | None:
    """Parse JSON text or a decoded dict into a StructuredPlan.

    Returns None for missing or invalid input; the caller falls back to AI
    conversion in that case.
    """
    if data is None:
        return None
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"[GARMIN_TRAINER] Structured plan block is not valid JSON: {e}")
            return None
    try:
        return StructuredPlan.model_validate(data)
    except ValidationError as e:
        logger.warning(f"[GARMIN_TRAINER] Structured plan block does not match the expected shape: {e.error_count()} error(s)")
        return None
