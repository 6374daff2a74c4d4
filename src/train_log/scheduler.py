"""Timer that starts a new operating day at a fixed local hour."""

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, tzinfo
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

RolloverHandler = Callable[[], Awaitable[Any] | Any]


def next_rollover(now: datetime, new_day_hour: int) -> datetime:
    """The next time the local clock reads ``new_day_hour``:00 after ``now``."""
    candidate = now.replace(hour=new_day_hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class RolloverScheduler:
    """Runs registered handlers each time a new operating day starts.

    The timer is a one-shot sleep recomputed after every firing, so clock
    changes and DST shifts are picked up on the next day.

    Usage:
        scheduler = RolloverScheduler(new_day_hour=3)
        scheduler.register_handler(bot.start_new_day)
        scheduler.start()
    """

    def __init__(
        self,
        new_day_hour: int = 3,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._new_day_hour = new_day_hour
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz).astimezone(self._tz))
        self._sleep = sleep
        self._handlers: list[RolloverHandler] = []
        self._task: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="scheduler")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def register_handler(self, handler: RolloverHandler) -> None:
        self._handlers.append(handler)
        self._logger.debug("handler_registered", handler=getattr(handler, "__name__", repr(handler)))

    def next_rollover(self) -> datetime:
        return next_rollover(self._clock(), self._new_day_hour)

    async def run_rollover(self) -> list[Any]:
        """Run every handler once; a failing handler does not stop the others.

        Returns:
            List of results from handlers that completed.
        """
        results = []
        self._logger.info("rollover_starting", handlers=len(self._handlers))
        for handler in self._handlers:
            try:
                result = handler()
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as e:
                self._logger.exception("handler_error", error=str(e))
        self._logger.info("rollover_completed", results=len(results))
        return results

    async def _loop(self) -> None:
        while True:
            now = self._clock()
            target = next_rollover(now, self._new_day_hour)
            delay = (target - now).total_seconds()
            self._logger.info("rollover_scheduled", at=target.isoformat(), seconds=round(delay))
            await self._sleep(delay)
            await self.run_rollover()

    def start(self) -> None:
        if self.is_running:
            self._logger.warning("scheduler_already_running")
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._logger.info("scheduler_stopped")
