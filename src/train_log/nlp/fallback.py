"""Rate-limit fallback across the model tiers.

Tiers are ordered best first. Two disablement markers are kept, one lasting
until the next whole minute and one lasting until the providers' daily quota
resets. Each marker means "this tier and every better one is unusable", so
a request starts just past the higher of the two.

The state is shared by every request: a rate limit hit while serving one
user makes the next user's request start further down the list.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from train_log.clients.base import StructuredModelClient

logger = structlog.get_logger(__name__)

# Daily quotas reset at midnight US Pacific, approximated as 08:00 UTC
DAILY_RESET_HOUR_UTC = 8

NONE_DISABLED = -1


@dataclass
class ModelTier:
    name: str
    client: StructuredModelClient


def next_daily_reset(reference: datetime) -> datetime:
    reference = reference.astimezone(UTC)
    reset = reference.replace(hour=DAILY_RESET_HOUR_UTC, minute=0, second=0, microsecond=0)
    if reset <= reference:
        reset += timedelta(days=1)
    return reset


def next_minute(reference: datetime) -> datetime:
    return reference.replace(second=0, microsecond=0) + timedelta(minutes=1)


@dataclass
class FallbackState:
    minute_index: int = NONE_DISABLED
    minute_expiry: datetime | None = None
    day_index: int = NONE_DISABLED
    day_expiry: datetime | None = None

    def start_index(self, now: datetime) -> int:
        """Index of the best tier that may be tried at ``now``."""
        if self.day_expiry is not None and now >= self.day_expiry:
            self.day_index = NONE_DISABLED
            self.day_expiry = None
        effective_minute = (
            self.minute_index
            if self.minute_expiry is not None and now < self.minute_expiry
            else NONE_DISABLED
        )
        return max(effective_minute, self.day_index) + 1

    def record_rate_limit(
        self, index: int, now: datetime, server_time: datetime | None = None
    ) -> str:
        """Disable tier ``index`` and everything better.

        A tier rate limited again after already being disabled for the
        minute is out of daily quota, so it is disabled for the day instead.

        Returns:
            "day" or "minute", whichever marker was moved.
        """
        if index <= self.minute_index:
            self.day_index = index
            self.day_expiry = next_daily_reset(server_time or now)
            logger.warning(
                "model_disabled_for_day", index=index, until=self.day_expiry.isoformat()
            )
            return "day"
        self.minute_index = index
        self.minute_expiry = next_minute(now)
        logger.warning(
            "model_disabled_for_minute", index=index, until=self.minute_expiry.isoformat()
        )
        return "minute"

    def record_success(self, index: int) -> None:
        if index == self.minute_index:
            self.minute_index = NONE_DISABLED
            self.minute_expiry = None
