"""Natural-language logging: prompts, response validation and model fallback."""

from train_log.nlp.fallback import FallbackState, ModelTier
from train_log.nlp.models import build_model_tiers
from train_log.nlp.orchestrator import NlpOrchestrator
from train_log.nlp.validation import parse_response
from train_log.nlp.wiki import UnitStatusDirectory

__all__ = [
    "FallbackState",
    "ModelTier",
    "NlpOrchestrator",
    "UnitStatusDirectory",
    "build_model_tiers",
    "parse_response",
]
