# app/modules/time_slots/models.py
from __future__ import annotations

import uuid
import datetime as dt
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Time,
    UniqueConstraint,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.config import settings
from app.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class SlotAvailability(PyEnum):
    AVAILABLE = "AVAILABLE"
    FILLING_FAST = "FILLING_FAST"
    FULL = "FULL"


class TimeSlot(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    One doctor session on one date with a fixed number of bookable places.

    current_bookings is only ever changed through the conditional updates in
    app.modules.time_slots.repository; `version` is bumped on each of them.
    """

    __tablename__ = "time_slots"

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctors.id", ondelete="RESTRICT"),
        nullable=False,
    )

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)

    max_appointments: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    current_bookings: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    consultation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true(), default=True
    )
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
        CheckConstraint("max_appointments >= 1", name="ck_slot_capacity_positive"),
        CheckConstraint(
            "current_bookings >= 0 AND current_bookings <= max_appointments",
            name="ck_slot_bookings_within_capacity",
        ),
        UniqueConstraint(
            "doctor_id", "date", "start_time",
            name="uq_slot_doctor_date_start",
        ),
        Index("ix_slot_date_active", "date", "is_active"),
    )

    @property
    def available_slots(self) -> int:
        return self.max_appointments - self.current_bookings

    @property
    def has_capacity(self) -> bool:
        return self.current_bookings < self.max_appointments

    @property
    def availability(self) -> str:
        if not self.has_capacity:
            return SlotAvailability.FULL.value
        if self.current_bookings / self.max_appointments >= settings.FILLING_FAST_RATIO:
            return SlotAvailability.FILLING_FAST.value
        return SlotAvailability.AVAILABLE.value
