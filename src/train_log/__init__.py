"""Train log - a chat bot that keeps the daily log of Metro train allocations."""

__version__ = "0.1.0"

from train_log.bot import TrainLogBot
from train_log.clients import ClaudeClient, GeminiClient, OpenAIClient
from train_log.config import configure_logging, get_settings
from train_log.display import LogRenderer
from train_log.events import AuditEvent, AuditFeed
from train_log.nlp import NlpOrchestrator
from train_log.scheduler import RolloverScheduler
from train_log.storage import LogStore
from train_log.workflow import SubmissionWorkflow

__all__ = [
    # Version
    "__version__",
    # Bot
    "TrainLogBot",
    "SubmissionWorkflow",
    "LogStore",
    "LogRenderer",
    # Audit feed
    "AuditEvent",
    "AuditFeed",
    # LLM Clients
    "ClaudeClient",
    "OpenAIClient",
    "GeminiClient",
    "NlpOrchestrator",
    # Scheduler
    "RolloverScheduler",
    # Config
    "get_settings",
    "configure_logging",
]
