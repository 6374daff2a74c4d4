"""SQLAlchemy models for the durable form of each operating day's log."""

import datetime as dt

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from train_log.types import AllocationDetails


class Base(DeclarativeBase):
    pass


class PeriodModel(Base):
    """One operating day."""

    __tablename__ = "periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, unique=True, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class AllocationModel(Base):
    """One (TRN, unit set) entry of a period's log."""

    __tablename__ = "allocations"
    __table_args__ = (
        UniqueConstraint("period_id", "service_id", "unit_set_id", name="uq_allocation_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id"), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_set_id: Mapped[str] = mapped_column(String(256), nullable=False)
    sources: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_index: Mapped[int | None] = mapped_column("index", Integer, nullable=True)
    withdrawn: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def to_details(self) -> AllocationDetails:
        return AllocationDetails(
            sources=self.sources,
            notes=self.notes,
            index=self.sort_index,
            withdrawn=self.withdrawn,
        )


class DisplayMessageModel(Base):
    """A message in the log channel currently showing (part of) a period's log."""

    __tablename__ = "display_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
