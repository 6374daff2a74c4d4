"""Structured-generation clients for the NLP pipeline."""

from train_log.clients.base import (
    FinishReason,
    StructuredModelClient,
    StructuredResult,
    parse_date_header,
)
from train_log.clients.claude import ClaudeClient
from train_log.clients.gemini import GeminiClient
from train_log.clients.openai_client import OpenAIClient

__all__ = [
    "ClaudeClient",
    "FinishReason",
    "GeminiClient",
    "OpenAIClient",
    "StructuredModelClient",
    "StructuredResult",
    "parse_date_header",
]
