"""AI generation strategies for Garmin conversions.

Both strategies take the same GenerationRequest and return a GenerationResult
(raw text, parsed JSON, parse error, model used). The job engine picks one
through get_garmin_ai_client(use_exercise_tool=...) and never branches on the
strategy itself.

- ClassicGarminAiClient: plain chat completion over OpenRouter, with the
  exercise catalog pasted into the prompt by the caller
- ToolAugmentedGarminAiClient: pydantic_ai Agent exposing `exercise_lookup`
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import openai
from loguru import logger
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, ModelHTTPError
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from garmin_trainer.ai.completion import RETRYABLE_STATUS_CODES, ChatCompletionRequest, request_chat_completion
from garmin_trainer.config.settings import settings
from garmin_trainer.core.errors import AiConfigurationError, AiRequestError
from garmin_trainer.exercises.lookup import exercise_lookup
from garmin_trainer.workouts.json_cleanup import parse_json_with_code_fence

TOOL_SYSTEM_SUFFIX = (
    "Before writing exerciseCategory/exerciseName, call the exercise_lookup tool with a short description "
    "of the exercise and copy the identifiers it returns. If nothing fits, answer "
    '{"error": "<explanation>"} instead of inventing identifiers.'
)


@dataclass
class GenerationRequest:
    base_prompt: str
    model_ids: list[str]
    system_prompt: str | None = None
    referer: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None


@dataclass
class GenerationResult:
    raw_text: str
    data: Any
    parse_error: str | None
    model_id: str
    tool_calls: list[dict] = field(default_factory=list)


def _result(raw_text: str, model_id: str, tool_calls: list[dict] | None = None) -> GenerationResult:
    data, parse_error = parse_json_with_code_fence(raw_text)
    return GenerationResult(raw_text=raw_text, data=data, parse_error=parse_error, model_id=model_id, tool_calls=tool_calls or [])


class GarminAiClient(ABC):
    """Try each candidate model until one answers."""

    name = "base"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if not request.model_ids:
            raise AiConfigurationError("No AI model configured for Garmin conversions")

        *fallbacks, last_model_id = request.model_ids
        for model_id in fallbacks:
            try:
                return await self._attempt(request, model_id)
            except AiRequestError as e:
                logger.warning(f"[AI] {model_id} failed ({e}); trying next model")
        return await self._attempt(request, last_model_id)

    async def _attempt(self, request: GenerationRequest, model_id: str) -> GenerationResult:
        logger.info(f"[AI] {self.name} generation with {model_id}")
        return await self._generate_with_model(request, model_id)

    @abstractmethod
    async def _generate_with_model(self, request: GenerationRequest, model_id: str) -> GenerationResult:
        raise NotImplementedError


class ClassicGarminAiClient(GarminAiClient):
    name = "classic"

    async def _generate_with_model(self, request: GenerationRequest, model_id: str) -> GenerationResult:
        raw_text = await request_chat_completion(
            ChatCompletionRequest(
                model_id=model_id,
                user_prompt=request.base_prompt,
                system_prompt=request.system_prompt,
                temperature=request.temperature,
                max_output_tokens=request.max_output_tokens,
                referer=request.referer,
            )
        )
        return _result(raw_text, model_id)


class ToolAugmentedGarminAiClient(GarminAiClient):
    name = "tool"

    def __init__(self, tools: list[Callable[..., Any]] | None = None) -> None:
        self.tools = tools if tools is not None else [exercise_lookup]

    def _model(self, model_id: str) -> OpenAIChatModel:
        if not settings.openrouter_api_key:
            raise AiConfigurationError("OPENROUTER_API_KEY is not set")
        provider = OpenAIProvider(base_url=settings.openrouter_base_url, api_key=settings.openrouter_api_key)
        return OpenAIChatModel(model_id, provider=provider)

    def build_agent(self, request: GenerationRequest, model_id: str) -> Agent:
        system_prompt = "\n\n".join(part for part in (request.system_prompt, TOOL_SYSTEM_SUFFIX) if part)
        return Agent(
            model=self._model(model_id),
            system_prompt=system_prompt,
            tools=self.tools,
            retries=1,
        )

    async def _generate_with_model(self, request: GenerationRequest, model_id: str) -> GenerationResult:
        agent = self.build_agent(request, model_id)
        model_settings: dict[str, Any] = {"timeout": settings.ai_request_timeout_seconds}
        if request.temperature is not None:
            model_settings["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            model_settings["max_tokens"] = request.max_output_tokens

        try:
            result = await agent.run(request.base_prompt, model_settings=model_settings)
        except ModelHTTPError as e:
            raise AiRequestError(
                f"AI provider returned {e.status_code} for {model_id}",
                status_code=e.status_code,
                retryable=e.status_code in RETRYABLE_STATUS_CODES,
            ) from e
        except (httpx.HTTPError, openai.APIConnectionError) as e:
            raise AiRequestError(f"AI provider unreachable for {model_id}: {e}", retryable=True) from e
        except AgentRunError as e:
            raise AiRequestError(f"Tool-augmented generation failed for {model_id}: {e}") from e

        tool_calls = [
            {"tool": part.tool_name, "args": part.args}
            for message in result.all_messages()
            for part in getattr(message, "parts", [])
            if getattr(part, "part_kind", None) == "tool-call"
        ]
        logger.info(f"[AI] {model_id} answered after {len(tool_calls)} tool call(s)")
        return _result(str(result.output), model_id, tool_calls)


_override: GarminAiClient | None = None


def set_garmin_ai_client_override(client: GarminAiClient | None) -> None:
    """Force one client for every request (tests, local experiments)."""
    global _override
    _override = client


def get_garmin_ai_client(*, use_exercise_tool: bool) -> GarminAiClient:
    if _override is not None:
        return _override
    return ToolAugmentedGarminAiClient() if use_exercise_tool else ClassicGarminAiClient()
