"""The authoritative daily log: an in-memory snapshot backed by the database.

Writes go to the database first; the in-memory snapshot only changes once a
commit has succeeded, so a failed batch never leaves the two out of step.

The SQLAlchemy calls are synchronous, so each one runs in a worker thread
via ``asyncio.to_thread``. A lock keeps them one at a time, in the order the
event loop issued them.
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timedelta, tzinfo

import structlog
from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from train_log.exceptions import ApplyError, TrainLogError
from train_log.storage.database import session_scope
from train_log.storage.models import AllocationModel, DisplayMessageModel, PeriodModel
from train_log.transactions import apply_transactions, copy_log, net_effect
from train_log.types import (
    TRN,
    AddTransaction,
    AllocationDetails,
    Batch,
    DailyLog,
    Transaction,
    UnitSet,
)

logger = structlog.get_logger(__name__)


def operating_date(now: datetime, new_day_hour: int) -> date:
    """The operating day ``now`` falls in; it starts at ``new_day_hour`` local time."""
    if now.hour < new_day_hour:
        return (now - timedelta(days=1)).date()
    return now.date()


class LogStore:
    """Holds the current period's log and its display message handles."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        new_day_hour: int = 3,
        clock: Callable[[], datetime] | None = None,
        tz: tzinfo | None = None,
    ):
        self._session_factory = session_factory
        self._new_day_hour = new_day_hour
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz).astimezone(self._tz))
        self._log: DailyLog = {}
        self._period_id: int | None = None
        self._period_date: date | None = None
        self._db_lock = asyncio.Lock()
        self._logger = logger.bind(component="log_store")

    @property
    def period_date(self) -> date | None:
        return self._period_date

    def _require_period(self) -> int:
        if self._period_id is None:
            raise TrainLogError("No operating day has been loaded yet.")
        return self._period_id

    async def _run(self, func: Callable[..., object], *args: object):
        async with self._db_lock:
            return await asyncio.to_thread(func, *args)

    # --- Blocking database work ---

    def _load_period(self, today: date) -> tuple[int, DailyLog, list[str], bool]:
        with session_scope(self._session_factory) as session:
            period = session.scalars(select(PeriodModel).where(PeriodModel.date == today)).first()
            if period is None:
                period = PeriodModel(date=today)
                session.add(period)
                session.flush()
                return period.id, {}, [], True
            log: DailyLog = {}
            rows = session.scalars(
                select(AllocationModel).where(AllocationModel.period_id == period.id)
            )
            for row in rows:
                log.setdefault(row.service_id, {})[row.unit_set_id] = row.to_details()
            handles = list(
                session.scalars(
                    select(DisplayMessageModel.id)
                    .where(DisplayMessageModel.period_id == period.id)
                    .order_by(DisplayMessageModel.position)
                )
            )
            return period.id, log, handles, False

    def _persist(self, period_id: int, final: dict[tuple[TRN, UnitSet], Transaction]) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                delete(AllocationModel).where(
                    AllocationModel.period_id == period_id,
                    or_(
                        *(
                            and_(
                                AllocationModel.service_id == service_id,
                                AllocationModel.unit_set_id == unit_set_id,
                            )
                            for service_id, unit_set_id in final
                        )
                    ),
                )
            )
            for transaction in final.values():
                if not isinstance(transaction, AddTransaction):
                    continue
                details = transaction.details
                session.add(
                    AllocationModel(
                        period_id=period_id,
                        service_id=transaction.service_id,
                        unit_set_id=transaction.unit_set_id,
                        sources=details.sources,
                        notes=details.notes,
                        sort_index=details.index,
                        withdrawn=details.withdrawn,
                    )
                )

    def _merge_display(self, handle: str, period_id: int, position: int) -> None:
        with session_scope(self._session_factory) as session:
            session.merge(DisplayMessageModel(id=handle, period_id=period_id, position=position))

    def _delete_display(self, handle: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(DisplayMessageModel).where(DisplayMessageModel.id == handle))

    # --- Public API ---

    async def load_current_period(self) -> list[str]:
        """Load (or start) the current operating day.

        Returns:
            Handles of the messages displaying this day's log, in position order.
            Empty when the day has just been created.
        """
        today = operating_date(self._clock(), self._new_day_hour)
        period_id, log, handles, created = await self._run(self._load_period, today)
        if created:
            self._logger.info("period_created", date=today.isoformat())
        else:
            self._logger.info(
                "period_loaded",
                date=today.isoformat(),
                services=len(log),
                display_messages=len(handles),
            )
        self._period_id = period_id
        self._period_date = today
        self._log = log
        return handles

    def snapshot(self) -> DailyLog:
        return copy_log(self._log)

    def get(self, service_id: TRN, unit_set_id: UnitSet) -> AllocationDetails | None:
        return self._log.get(service_id, {}).get(unit_set_id)

    async def apply_batch(self, batch: Batch) -> None:
        """Persist a batch atomically, then apply it to the snapshot.

        Raises:
            ApplyError: The database rejected the batch. Nothing changed.
        """
        if not batch:
            return
        period_id = self._require_period()
        final = net_effect(batch)
        try:
            await self._run(self._persist, period_id, final)
        except SQLAlchemyError as e:
            self._logger.error("apply_failed", error=str(e), transactions=len(batch))
            raise ApplyError(
                "Something went wrong while saving these changes. Nothing was changed.",
                details=str(e),
            ) from e

        apply_transactions(self._log, batch)
        self._logger.debug("batch_applied", transactions=len(batch), keys=len(final))

    async def record_display_message(self, handle: str, position: int) -> None:
        await self._run(self._merge_display, handle, self._require_period(), position)

    async def forget_display_message(self, handle: str) -> None:
        await self._run(self._delete_display, handle)
