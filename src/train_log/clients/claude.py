"""Claude (Anthropic) client for structured JSON output.

Claude has no JSON response mode here, so the schema is offered as the
input of a single tool and the model is forced to call it.
"""

from typing import Any

import anthropic
import structlog

from train_log.clients.base import FinishReason, StructuredResult, parse_date_header
from train_log.config import get_settings
from train_log.exceptions import ExternalServiceError, MalformedResponseError, RateLimitError

logger = structlog.get_logger(__name__)

RESPOND_TOOL = "respond"

STOP_REASON_MAP = {
    "end_turn": FinishReason.STOP,
    "tool_use": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "refusal": FinishReason.CONTENT_FILTER,
}


class ClaudeClient:
    """Client for Anthropic's Claude API returning schema-shaped objects."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        if api_key is None and settings.anthropic_api_key is not None:
            api_key = settings.anthropic_api_key.get_secret_value()
        self._api_key = api_key
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._logger = logger.bind(client="claude", model=self._model)

    def _respond_tool(self, schema: dict[str, Any]) -> dict[str, Any]:
        # Tool inputs must be plain objects, so the schema is nested under one key
        return {
            "name": RESPOND_TOOL,
            "description": "Send your response to the user.",
            "input_schema": {
                "type": "object",
                "properties": {"response": schema},
                "required": ["response"],
            },
        }

    def _parse_response(self, response: anthropic.types.Message) -> StructuredResult:
        """Parse an Anthropic message into a structured result."""
        usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }
        finish_reason = STOP_REASON_MAP.get(response.stop_reason or "", FinishReason.OTHER)
        if finish_reason is FinishReason.CONTENT_FILTER:
            return StructuredResult(object=None, finish_reason=finish_reason, usage=usage)

        for block in response.content:
            if block.type == "tool_use" and block.name == RESPOND_TOOL:
                tool_input = block.input if isinstance(block.input, dict) else {}
                return StructuredResult(
                    object=tool_input.get("response"), finish_reason=finish_reason, usage=usage
                )
            if block.type == "tool_use":
                return StructuredResult(
                    object=None, finish_reason=FinishReason.TOOL_CALLS, usage=usage
                )

        raise MalformedResponseError("The model did not call the response tool.")

    async def generate_structured(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
    ) -> StructuredResult:
        """Generate an object matching ``schema`` through a forced tool call.

        Raises:
            RateLimitError: Anthropic answered with HTTP 429.
            ExternalServiceError: Any other API failure.
            MalformedResponseError: The model answered without calling the tool.
        """
        self._logger.debug("generating_response", message_count=len(messages))

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                system=system_prompt,
                messages=[{"role": msg["role"], "content": msg["content"]} for msg in messages],
                tools=[self._respond_tool(schema)],
                tool_choice={"type": "tool", "name": RESPOND_TOOL},
            )
        except anthropic.RateLimitError as e:
            self._logger.warning("rate_limited")
            raise RateLimitError(
                str(e), provider="anthropic", server_time=parse_date_header(e.response.headers)
            ) from e
        except anthropic.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise ExternalServiceError(str(e), provider="anthropic") from e

        parsed = self._parse_response(response)
        self._logger.info(
            "response_generated",
            finish_reason=parsed.finish_reason.value,
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
