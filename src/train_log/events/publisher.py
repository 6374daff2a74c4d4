"""Publisher for the transaction feed.

Every change to the log is recorded here: kept in a short in-memory buffer and
posted to the feed channel when one is configured. Delivery failures are
logged and never reach the caller.
"""

from collections import deque

import structlog

from train_log.display.components import OutgoingMessage
from train_log.display.surface import MessageChannel
from train_log.events.types import AuditEvent

logger = structlog.get_logger(__name__)


class AuditFeed:
    """Side channel recording every applied, approved, denied or undone batch.

    Usage:
        feed = AuditFeed(channel)
        await feed.publish(AuditEvent(AuditAction.LOGGED, actor_id="42"))
    """

    def __init__(
        self,
        channel: MessageChannel | None = None,
        buffer_size: int = 100,
        character_limit: int = 2000,
    ):
        self._channel = channel
        self._character_limit = character_limit
        self._event_buffer: deque[AuditEvent] = deque(maxlen=buffer_size)
        self._logger = logger.bind(component="audit_feed")

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Get recently published events."""
        return list(self._event_buffer)

    async def publish(self, event: AuditEvent) -> None:
        """Record an event and post it to the feed channel."""
        self._event_buffer.append(event)
        self._logger.info(
            "audit_event",
            action=event.action.value,
            actor_id=event.actor_id,
            reference=event.reference,
        )

        if self._channel is None:
            return

        line = event.to_line()
        if len(line) > self._character_limit:
            line = line[: self._character_limit - 1] + "…"
        try:
            await self._channel.send(OutgoingMessage(content=line))
        except Exception as e:
            self._logger.error("feed_send_error", action=event.action.value, error=str(e))
