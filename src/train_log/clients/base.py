"""Shared types for structured-generation clients."""

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Protocol


class FinishReason(str, Enum):
    """Why a model stopped generating, normalized across providers."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"
    OTHER = "other"


@dataclass
class StructuredResult:
    """A JSON object generated against a schema."""

    object: Any
    finish_reason: FinishReason
    usage: dict[str, int] = field(default_factory=dict)


class StructuredModelClient(Protocol):
    async def generate_structured(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
    ) -> StructuredResult: ...


def parse_date_header(headers: Any) -> datetime | None:
    """Read the server's clock from an HTTP ``Date`` header, if there is one."""
    if headers is None:
        return None
    value = headers.get("date") or headers.get("Date")
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
