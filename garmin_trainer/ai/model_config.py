"""Per-feature AI model selection.

The selected model lives in `ai_model_configs` so it can be changed without a
deploy. Candidates are cached process-wide with a TTL checked on every read.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import select

from garmin_trainer.config.settings import settings
from garmin_trainer.db.models import AiModelConfig
from garmin_trainer.db.session import get_session
from garmin_trainer.utils.timezone import utcnow

GARMIN_TRAINER_FEATURE = "garmin-trainer"


@dataclass
class _CacheEntry:
    candidates: list[str]
    expires_at: float


_cache: dict[str, _CacheEntry] = {}


def invalidate_ai_model_cache(feature: str | None = None) -> None:
    if feature is None:
        _cache.clear()
    else:
        _cache.pop(feature, None)


def _dedupe(model_ids: list[str]) -> list[str]:
    seen: list[str] = []
    for model_id in model_ids:
        model_id = model_id.strip()
        if model_id and model_id not in seen:
            seen.append(model_id)
    return seen


def _load_selected_model(feature: str) -> str | None:
    with get_session() as session:
        return session.execute(select(AiModelConfig.model_id).where(AiModelConfig.feature == feature)).scalar_one_or_none()


def get_ai_model_candidates(feature: str = GARMIN_TRAINER_FEATURE) -> list[str]:
    """Selected model first, then the configured fallbacks, without duplicates."""
    entry = _cache.get(feature)
    if entry is not None and entry.expires_at > time.monotonic():
        return list(entry.candidates)

    selected = _load_selected_model(feature) or settings.garmin_trainer_model
    candidates = _dedupe([selected, *settings.fallback_model_ids()])
    _cache[feature] = _CacheEntry(candidates=candidates, expires_at=time.monotonic() + settings.ai_model_cache_ttl_seconds)
    logger.debug(f"[AI] Model candidates for {feature}: {candidates}")
    return list(candidates)


def set_ai_model(feature: str, model_id: str) -> None:
    with get_session() as session:
        config = session.get(AiModelConfig, feature)
        if config is None:
            session.add(AiModelConfig(feature=feature, model_id=model_id, updated_at=utcnow()))
        else:
            config.model_id = model_id
            config.updated_at = utcnow()
    invalidate_ai_model_cache(feature)
    logger.info(f"[AI] Model for {feature} set to {model_id}")
