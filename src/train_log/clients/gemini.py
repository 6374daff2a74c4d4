"""Google Gemini client for structured JSON output.

Uses the google-genai SDK's async surface with a response JSON schema.
"""

import json
from typing import Any, cast

import structlog
from google import genai
from google.genai import errors, types

from train_log.clients.base import FinishReason, StructuredResult, parse_date_header
from train_log.config import get_settings
from train_log.exceptions import ExternalServiceError, MalformedResponseError, RateLimitError

logger = structlog.get_logger(__name__)

FINISH_REASON_MAP = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
    "IMAGE_SAFETY": FinishReason.CONTENT_FILTER,
    "MALFORMED_FUNCTION_CALL": FinishReason.TOOL_CALLS,
    "UNEXPECTED_TOOL_CALL": FinishReason.TOOL_CALLS,
}


class GeminiClient:
    """Client for Google's Gemini API returning schema-constrained JSON."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.5-flash",
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        if api_key is None and settings.google_ai_api_key is not None:
            api_key = settings.google_ai_api_key.get_secret_value()
        self._api_key = api_key
        self._model_name = model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = genai.Client(api_key=self._api_key)

        self._logger = logger.bind(client="gemini", model=self._model_name)

    def _convert_messages_to_gemini_format(
        self, messages: list[dict[str, str]]
    ) -> list[types.Content]:
        """Convert conversation history to Gemini's content format."""
        return [
            types.Content(
                role="model" if msg["role"] == "assistant" else "user",
                parts=[types.Part(text=msg["content"])],
            )
            for msg in messages
        ]

    def _parse_response(self, response: Any) -> StructuredResult:
        """Parse a Gemini response into a structured result."""
        finish_reason = FinishReason.OTHER
        text = ""

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            finish_reason = FinishReason.CONTENT_FILTER
        elif response.candidates:
            candidate = response.candidates[0]
            reason = candidate.finish_reason
            reason_name = getattr(reason, "name", None) or str(reason or "")
            finish_reason = FINISH_REASON_MAP.get(reason_name, FinishReason.OTHER)
            if candidate.content and candidate.content.parts:
                text = "".join(part.text for part in candidate.content.parts if part.text)

        usage = {"input_tokens": 0, "output_tokens": 0}
        if getattr(response, "usage_metadata", None):
            usage["input_tokens"] = (
                getattr(response.usage_metadata, "prompt_token_count", 0) or 0
            )
            usage["output_tokens"] = (
                getattr(response.usage_metadata, "candidates_token_count", 0) or 0
            )

        obj: Any = None
        if finish_reason not in (FinishReason.CONTENT_FILTER, FinishReason.TOOL_CALLS):
            try:
                obj = json.loads(text)
            except json.JSONDecodeError as e:
                raise MalformedResponseError(
                    "The model did not return valid JSON.", details=text
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
            RateLimitError: Gemini answered with HTTP 429.
            ExternalServiceError: Any other API failure.
            MalformedResponseError: The output was not JSON.
        """
        self._logger.debug("generating_response", message_count=len(messages))

        config = types.GenerateContentConfig(
            max_output_tokens=self._max_tokens,
            temperature=self._temperature,
            system_instruction=system_prompt,
            response_mime_type="application/json",
            response_json_schema=schema,
        )
        contents_payload = cast(list[Any], self._convert_messages_to_gemini_format(messages))

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model_name,
                contents=contents_payload,
                config=config,
            )
        except errors.APIError as e:
            if e.code == 429:
                self._logger.warning("rate_limited")
                headers = getattr(getattr(e, "response", None), "headers", None)
                raise RateLimitError(
                    str(e), provider="gemini", server_time=parse_date_header(headers)
                ) from e
            self._logger.error("api_error", error=str(e), code=e.code)
            raise ExternalServiceError(str(e), provider="gemini") from e

        parsed = self._parse_response(response)
        self._logger.info(
            "response_generated",
            finish_reason=parsed.finish_reason.value,
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
