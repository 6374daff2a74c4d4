"""The configured model tiers, best first."""

import structlog

from train_log.clients import ClaudeClient, GeminiClient, OpenAIClient
from train_log.config.settings import FlatSettings
from train_log.nlp.fallback import ModelTier

logger = structlog.get_logger(__name__)

GEMINI_MODELS = [
    ("Gemini 2.5 Flash", "gemini-2.5-flash"),
    ("Gemini 2.5 Flash Lite", "gemini-2.5-flash-lite"),
    ("Gemini 2.0 Flash", "gemini-2.0-flash"),
]

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
NVIDIA_NIM_BASE_URL = "https://integrate.api.nvidia.com/v1"


def build_model_tiers(settings: FlatSettings) -> list[ModelTier]:
    """Build a tier for every model whose provider has an API key set."""
    tiers: list[ModelTier] = []

    if settings.google_ai_api_key is not None:
        api_key = settings.google_ai_api_key.get_secret_value()
        for name, model in GEMINI_MODELS:
            tiers.append(ModelTier(name, GeminiClient(api_key=api_key, model=model)))

    compatible = [
        (settings.groq_api_key, "groq", GROQ_BASE_URL, "openai/gpt-oss-120b", "Groq"),
        (
            settings.openrouter_api_key,
            "openrouter",
            OPENROUTER_BASE_URL,
            "openai/gpt-oss-120b:free",
            "OpenRouter",
        ),
        (settings.nvidia_nim_api_key, "nim", NVIDIA_NIM_BASE_URL, "openai/gpt-oss-120b", "NVIDIA NIM"),
    ]
    for secret, provider, base_url, model, label in compatible:
        if secret is None:
            continue
        tiers.append(
            ModelTier(
                f"gpt-oss-120b via {label}",
                OpenAIClient(
                    api_key=secret.get_secret_value(),
                    base_url=base_url,
                    model=model,
                    temperature=settings.llm_temperature,
                    provider=provider,
                ),
            )
        )

    if settings.anthropic_api_key is not None:
        tiers.append(
            ModelTier(
                settings.claude_model,
                ClaudeClient(api_key=settings.anthropic_api_key.get_secret_value()),
            )
        )
    if settings.openai_api_key is not None:
        tiers.append(
            ModelTier(
                settings.gpt_model,
                OpenAIClient(api_key=settings.openai_api_key.get_secret_value()),
            )
        )

    if not tiers:
        logger.warning("no_models_configured")
    else:
        logger.info("models_configured", tiers=[tier.name for tier in tiers])
    return tiers
