"""Tests for the database-backed log store."""

import asyncio
import threading
from datetime import date, datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from train_log.exceptions import ApplyError, TrainLogError
from train_log.storage import LogStore, operating_date
from train_log.types import AddTransaction, AllocationDetails, RemoveTransaction

DETAILS = AllocationDetails(sources="@alice", notes="seen at Haymarket", index=1, withdrawn=True)


class TestOperatingDate:
    """Tests for working out which operating day a time belongs to."""

    def test_before_new_day_hour_is_previous_day(self):
        """Test 2am still belongs to yesterday's log."""
        assert operating_date(datetime(2025, 6, 2, 2, 59), 3) == date(2025, 6, 1)

    def test_at_new_day_hour_is_today(self):
        """Test the day starts exactly at the configured hour."""
        assert operating_date(datetime(2025, 6, 2, 3, 0), 3) == date(2025, 6, 2)


class TestLogStore:
    """Tests for LogStore."""

    @pytest.mark.asyncio
    async def test_requires_loaded_period(self, session_factory, clock):
        """Test writes fail before a period is loaded."""
        store = LogStore(session_factory, clock=clock)

        with pytest.raises(TrainLogError):
            await store.apply_batch([AddTransaction("T101", "4073", DETAILS)])

    @pytest.mark.asyncio
    async def test_new_period_starts_empty(self, store):
        """Test a freshly created period has no entries."""
        assert store.snapshot() == {}
        assert store.period_date == date(2025, 6, 2)

    @pytest.mark.asyncio
    async def test_apply_and_reload(self, store, session_factory, clock):
        """Test applied batches survive a restart, details included."""
        await store.apply_batch(
            [
                AddTransaction("T101", "4073+4081", DETAILS),
                AddTransaction("T121", "4040", AllocationDetails(sources="@bob")),
                RemoveTransaction("T121", "4040"),
            ]
        )

        reloaded = LogStore(session_factory, clock=clock)
        await reloaded.load_current_period()

        assert reloaded.snapshot() == {"T101": {"4073+4081": DETAILS}}
        assert reloaded.snapshot() == store.snapshot()

    @pytest.mark.asyncio
    async def test_overwrite_same_key(self, store, session_factory, clock):
        """Test re-adding a key replaces the stored row."""
        await store.apply_batch([AddTransaction("T101", "4073", DETAILS)])
        updated = AllocationDetails(sources="@carol")

        await store.apply_batch([AddTransaction("T101", "4073", updated)])

        reloaded = LogStore(session_factory, clock=clock)
        await reloaded.load_current_period()
        assert reloaded.get("T101", "4073") == updated

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self, store):
        """Test mutating a snapshot doesn't touch the store."""
        await store.apply_batch([AddTransaction("T101", "4073", DETAILS)])

        snapshot = store.snapshot()
        snapshot["T101"].clear()

        assert store.get("T101", "4073") == DETAILS

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_log_unchanged(self, store):
        """Test a database failure raises ApplyError and changes nothing."""
        await store.apply_batch([AddTransaction("T101", "4073", DETAILS)])
        before = store.snapshot()

        with patch(
            "sqlalchemy.orm.Session.commit",
            side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(ApplyError):
                await store.apply_batch(
                    [
                        AddTransaction("T102", "4001", DETAILS),
                        RemoveTransaction("T101", "4073"),
                    ]
                )

        assert store.snapshot() == before

    @pytest.mark.asyncio
    async def test_display_messages_in_position_order(self, store, session_factory, clock):
        """Test recorded message handles come back ordered by position."""
        await store.record_display_message("msg-c", 2)
        await store.record_display_message("msg-a", 0)
        await store.record_display_message("msg-b", 1)
        await store.forget_display_message("msg-b")

        reloaded = LogStore(session_factory, clock=clock)
        handles = await reloaded.load_current_period()

        assert handles == ["msg-a", "msg-c"]

    @pytest.mark.asyncio
    async def test_rollover_starts_new_period(self, session_factory):
        """Test the next operating day gets its own empty log."""
        now = [datetime(2025, 6, 2, 12, 0)]
        store = LogStore(session_factory, clock=lambda: now[0])
        await store.load_current_period()
        await store.apply_batch([AddTransaction("T101", "4073", DETAILS)])
        await store.record_display_message("msg-1", 0)

        now[0] = datetime(2025, 6, 3, 3, 0)
        handles = await store.load_current_period()

        assert handles == []
        assert store.snapshot() == {}
        assert store.period_date == date(2025, 6, 3)

    @pytest.mark.asyncio
    async def test_database_work_runs_off_the_event_loop(self, store):
        """Test saving happens in a worker thread, not the loop's thread."""
        threads: list[int] = []
        persist = store._persist

        def recording_persist(*args):
            threads.append(threading.get_ident())
            persist(*args)

        with patch.object(store, "_persist", recording_persist):
            await store.apply_batch([AddTransaction("T101", "4073", DETAILS)])

        assert threads and threads[0] != threading.get_ident()
        assert store.get("T101", "4073") == DETAILS

    @pytest.mark.asyncio
    async def test_concurrent_batches_apply_in_order(self, store, session_factory, clock):
        """Test overlapping batches are saved and applied in the order issued."""
        await asyncio.gather(
            store.apply_batch([AddTransaction("T101", "4073", DETAILS)]),
            store.apply_batch([RemoveTransaction("T101", "4073")]),
            store.apply_batch([AddTransaction("T102", "4001", DETAILS)]),
        )

        reloaded = LogStore(session_factory, clock=clock)
        await reloaded.load_current_period()
        assert store.snapshot() == {"T102": {"4001": DETAILS}}
        assert reloaded.snapshot() == store.snapshot()
