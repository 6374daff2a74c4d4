"""Tests for the day rollover scheduler."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from train_log.scheduler import RolloverScheduler, next_rollover


class TestNextRollover:
    """Tests for computing the next rollover time."""

    def test_later_today(self):
        """Test a rollover hour still ahead today."""
        assert next_rollover(datetime(2025, 6, 2, 1, 30), 3) == datetime(2025, 6, 2, 3, 0)

    def test_tomorrow(self):
        """Test a rollover hour already passed today."""
        assert next_rollover(datetime(2025, 6, 2, 12, 0), 3) == datetime(2025, 6, 3, 3, 0)

    def test_exactly_at_rollover(self):
        """Test the current instant never counts as the next rollover."""
        assert next_rollover(datetime(2025, 6, 2, 3, 0), 3) == datetime(2025, 6, 3, 3, 0)


class TestRolloverScheduler:
    """Tests for RolloverScheduler."""

    def test_next_rollover_uses_clock(self):
        """Test the scheduler's next rollover comes from its clock and hour."""
        scheduler = RolloverScheduler(new_day_hour=4, clock=lambda: datetime(2025, 6, 2, 12, 0))

        assert scheduler.next_rollover() == datetime(2025, 6, 3, 4, 0)
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_run_rollover_executes_handlers(self):
        """Test sync and async handlers are both run."""
        scheduler = RolloverScheduler()
        async_handler = AsyncMock(return_value="async_result")
        sync_handler = MagicMock(return_value="sync_result")
        scheduler.register_handler(async_handler)
        scheduler.register_handler(sync_handler)

        results = await scheduler.run_rollover()

        async_handler.assert_awaited_once()
        sync_handler.assert_called_once()
        assert results == ["async_result", "sync_result"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        """Test handler errors are logged, not raised."""
        scheduler = RolloverScheduler()
        after = AsyncMock(return_value="ok")
        scheduler.register_handler(AsyncMock(side_effect=RuntimeError("boom")))
        scheduler.register_handler(after)

        results = await scheduler.run_rollover()

        after.assert_awaited_once()
        assert results == ["ok"]

    @pytest.mark.asyncio
    async def test_loop_sleeps_until_rollover(self):
        """Test the loop waits the right time, runs handlers and recomputes."""
        delays: list[float] = []
        fired = asyncio.Event()
        handler = AsyncMock(side_effect=lambda: fired.set())

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)
            if len(delays) > 1:
                await asyncio.Event().wait()

        scheduler = RolloverScheduler(
            new_day_hour=3,
            clock=lambda: datetime(2025, 6, 2, 2, 0),
            sleep=fake_sleep,
        )
        scheduler.register_handler(handler)

        scheduler.start()
        await asyncio.wait_for(fired.wait(), timeout=1)
        await asyncio.sleep(0)
        assert scheduler.is_running
        await scheduler.stop()

        assert delays[0] == 3600
        assert len(delays) == 2
        handler.assert_awaited_once()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        """Test stopping an idle scheduler is harmless."""
        scheduler = RolloverScheduler()

        await scheduler.stop()

        assert scheduler.is_running is False
