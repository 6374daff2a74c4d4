"""OpenAI chat-completions client for structured JSON output.

Also used for OpenAI-compatible providers (Groq, OpenRouter, NVIDIA NIM)
via a custom base_url.
"""

import json
from typing import Any

import openai
import structlog

from train_log.clients.base import FinishReason, StructuredResult, parse_date_header
from train_log.config import get_settings
from train_log.exceptions import ExternalServiceError, MalformedResponseError, RateLimitError

logger = structlog.get_logger(__name__)

FINISH_REASON_MAP = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}


class OpenAIClient:
    """Client for OpenAI's API, or any API compatible with it."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        provider: str = "openai",
    ):
        settings = get_settings()
        if api_key is None and settings.openai_api_key is not None:
            api_key = settings.openai_api_key.get_secret_value()
        self._api_key = api_key
        self._base_url = base_url  # None means use OpenAI's default
        self._model = model or settings.gpt_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        # None leaves the provider default, which some reasoning models require
        self._temperature = temperature
        self._provider = provider

        client_kwargs: dict[str, Any] = {"api_key": self._api_key}
        if self._base_url:
            client_kwargs["base_url"] = self._base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._logger = logger.bind(client=provider, model=self._model)

    def _build_messages(
        self, system_prompt: str, messages: list[dict[str, str]]
    ) -> list[dict[str, str]]:
        return [{"role": "system", "content": system_prompt}] + [
            {"role": msg["role"], "content": msg["content"]} for msg in messages
        ]

    def _parse_response(self, response: Any) -> StructuredResult:
        """Parse a chat completion into a structured result."""
        usage = {"input_tokens": 0, "output_tokens": 0}
        if response.usage:
            usage["input_tokens"] = response.usage.prompt_tokens or 0
            usage["output_tokens"] = response.usage.completion_tokens or 0

        if not response.choices:
            return StructuredResult(object=None, finish_reason=FinishReason.ERROR, usage=usage)

        choice = response.choices[0]
        finish_reason = FINISH_REASON_MAP.get(choice.finish_reason or "", FinishReason.OTHER)
        message = choice.message
        if getattr(message, "refusal", None):
            finish_reason = FinishReason.CONTENT_FILTER
        if finish_reason in (FinishReason.CONTENT_FILTER, FinishReason.TOOL_CALLS):
            return StructuredResult(object=None, finish_reason=finish_reason, usage=usage)

        content = message.content or ""
        try:
            obj = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                "The model did not return valid JSON.", details=content
            ) from e
        return StructuredResult(object=obj, finish_reason=finish_reason, usage=usage)

    async def generate_structured(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
    ) -> StructuredResult:
        """Generate a JSON object matching ``schema``.

        Raises:
            RateLimitError: The provider answered with HTTP 429.
            ExternalServiceError: Any other API failure.
            MalformedResponseError: The output was not JSON.
        """
        self._logger.debug("generating_response", message_count=len(messages))

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._build_messages(system_prompt, messages),
            "max_completion_tokens": self._max_tokens,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": schema, "strict": False},
            },
        }
        if self._temperature is not None:
            kwargs["temperature"] = self._temperature

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.RateLimitError as e:
            self._logger.warning("rate_limited")
            raise RateLimitError(
                str(e),
                provider=self._provider,
                server_time=parse_date_header(e.response.headers),
            ) from e
        except openai.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise ExternalServiceError(str(e), provider=self._provider) from e

        parsed = self._parse_response(response)
        self._logger.info(
            "response_generated",
            finish_reason=parsed.finish_reason.value,
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
