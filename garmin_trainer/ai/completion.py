"""OpenRouter-compatible chat completion client.

Retries are an explicit loop: an attempt counter, a retryable predicate
(status set or timeout) and a wall-clock budget, whichever runs out first.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from garmin_trainer.config.settings import settings
from garmin_trainer.core.errors import AiConfigurationError, AiRequestError

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
BACKOFF_BASE_SECONDS = 0.5
BACKOFF_MAX_SECONDS = 5.0


@dataclass(frozen=True)
class ChatCompletionRequest:
    model_id: str
    user_prompt: str
    system_prompt: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    referer: str | None = None


def is_retryable(error: AiRequestError) -> bool:
    return error.retryable or error.status_code in RETRYABLE_STATUS_CODES


def backoff_delay(attempt: int) -> float:
    return min(BACKOFF_BASE_SECONDS * (2**attempt), BACKOFF_MAX_SECONDS)


def http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.ai_request_timeout_seconds)


def extract_message_text(data: Any) -> str:
    """Text of the first choice; handles string content and content-part lists."""
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise AiRequestError("AI response has no choices") from e

    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    raise AiRequestError("AI response message has no text content")


def _build_payload(request: ChatCompletionRequest) -> dict[str, Any]:
    messages = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.user_prompt})

    payload: dict[str, Any] = {"model": request.model_id, "messages": messages}
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if request.max_output_tokens is not None:
        payload["max_tokens"] = request.max_output_tokens
    return payload


async def _send_once(client: httpx.AsyncClient, request: ChatCompletionRequest) -> str:
    headers = {
        "Authorization": f"Bearer {settings.openrouter_api_key}",
        "Content-Type": "application/json",
        "X-Title": settings.ai_app_title,
    }
    if request.referer:
        headers["HTTP-Referer"] = request.referer

    url = f"{settings.openrouter_base_url.rstrip('/')}/chat/completions"
    try:
        resp = await client.post(url, headers=headers, json=_build_payload(request))
    except httpx.TimeoutException as e:
        raise AiRequestError(f"AI request timed out for {request.model_id}", retryable=True) from e
    except httpx.HTTPError as e:
        raise AiRequestError(f"AI request failed for {request.model_id}: {type(e).__name__}", retryable=True) from e

    if resp.status_code >= 400:
        logger.warning(f"[AI] {request.model_id} answered {resp.status_code}: {resp.text[:300]}")
        raise AiRequestError(
            f"AI provider returned {resp.status_code} for {request.model_id}",
            status_code=resp.status_code,
            retryable=resp.status_code in RETRYABLE_STATUS_CODES,
        )

    try:
        data = resp.json()
    except ValueError as e:
        raise AiRequestError(f"AI provider returned invalid JSON for {request.model_id}") from e
    return extract_message_text(data)


async def request_chat_completion(
    request: ChatCompletionRequest,
    *,
    max_retries: int | None = None,
    max_retry_seconds: float | None = None,
) -> str:
    """Send one completion request with bounded retries.

    Raises:
        AiConfigurationError: No API key configured
        AiRequestError: Non-retryable failure, or retries exhausted
    """
    if not settings.openrouter_api_key:
        raise AiConfigurationError("OPENROUTER_API_KEY is not set")

    max_retries = settings.ai_max_retries if max_retries is None else max_retries
    max_retry_seconds = settings.ai_max_retry_seconds if max_retry_seconds is None else max_retry_seconds
    started = time.monotonic()
    attempt = 0

    async with http_client() as client:
        while True:
            try:
                return await _send_once(client, request)
            except AiRequestError as e:
                if not is_retryable(e) or attempt >= max_retries:
                    raise
                delay = backoff_delay(attempt)
                if time.monotonic() - started + delay > max_retry_seconds:
                    logger.warning(f"[AI] Retry budget of {max_retry_seconds}s exhausted for {request.model_id}")
                    raise
                logger.info(f"[AI] Retrying {request.model_id} in {delay:.1f}s (attempt {attempt + 1}/{max_retries}): {e}")
                attempt += 1
                await asyncio.sleep(delay)
