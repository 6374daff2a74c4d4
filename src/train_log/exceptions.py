"""Typed errors raised by the train log engine.

Every error carries a short, human-readable message that is safe to show to
the requester. The bot turns any ``TrainLogError`` into a ``❌`` reply; nothing
here is meant to terminate the process.
"""

from datetime import datetime
from typing import Any


class TrainLogError(Exception):
    """Base exception for all train log errors."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TrainLogError):
    """Malformed or redundant user input, rejected before reaching the store."""

    pass


class PermissionDeniedError(TrainLogError):
    """The user does not hold the role required for this action."""

    pass


class ConflictError(TrainLogError):
    """A proposed entry collides with an existing key or index.

    Not raised by the bot itself: ``SubmissionWorkflow.prepare_allocation``
    turns both collisions into confirmation prompts. Kept so adapters and
    callers can report a collision they detect in the same taxonomy.
    """

    pass


class ApplyError(TrainLogError):
    """The persistence layer failed to apply a batch.

    The in-memory log is guaranteed unchanged, so the action can be retried.
    """

    pass


class ExpiredStateError(TrainLogError):
    """A referenced submission, prompt or form no longer exists."""

    pass


class ExternalServiceError(TrainLogError):
    """A generative model provider failed."""

    def __init__(self, message: str, provider: str = "", details: Any = None):
        super().__init__(message, details)
        self.provider = provider


class RateLimitError(ExternalServiceError):
    """A generative model provider rejected the call for rate limiting."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        server_time: datetime | None = None,
        details: Any = None,
    ):
        super().__init__(message, provider, details)
        self.server_time = server_time


class MalformedResponseError(TrainLogError):
    """A model's structured output failed validation."""

    pass


class DisplayError(TrainLogError):
    """The chat platform refused a display operation."""

    pass


class MessageNotFoundError(DisplayError):
    """The message being edited or deleted no longer exists."""

    pass
