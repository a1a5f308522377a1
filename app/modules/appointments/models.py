# app/modules/appointments/models.py
from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class ApptStatus(PyEnum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class PaymentStatus(PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


# Statuses in which an appointment holds one unit of its slot's capacity
CAPACITY_HOLDING = frozenset({ApptStatus.CONFIRMED.value, ApptStatus.COMPLETED.value})

APPT_TRANSITIONS: dict[str, frozenset[str]] = {
    ApptStatus.CONFIRMED.value: frozenset({
        ApptStatus.CANCELLED.value,
        ApptStatus.COMPLETED.value,
        ApptStatus.NO_SHOW.value,
        ApptStatus.RESCHEDULED.value,
    }),
    ApptStatus.CANCELLED.value: frozenset(),
    ApptStatus.COMPLETED.value: frozenset(),
    ApptStatus.NO_SHOW.value: frozenset(),
    ApptStatus.RESCHEDULED.value: frozenset(),
}


class Appointment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    An appointment booked by an agent for a patient on one time slot.
    Rows are never deleted; they end in a terminal status.
    """

    __tablename__ = "appointments"

    appointment_number: Mapped[str] = mapped_column(String(32), nullable=False)

    patient_name: Mapped[str] = mapped_column(String(120), nullable=False)
    patient_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    patient_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    patient_nic: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctors.id", ondelete="RESTRICT"), nullable=False
    )
    hospital_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("hospitals.id", ondelete="RESTRICT"), nullable=False
    )
    time_slot_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("time_slots.id", ondelete="RESTRICT"), nullable=False
    )
    booked_by_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    rescheduled_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("appointments.id", ondelete="RESTRICT"), nullable=True
    )
    # Shared by every appointment created in one multi-patient booking
    bulk_booking_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[time] = mapped_column(Time, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApptStatus.CONFIRMED.value,
        server_default=ApptStatus.CONFIRMED.value,
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        server_default=PaymentStatus.PENDING.value,
    )

    consultation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("appointment_number", name="uq_appt_number"),
        CheckConstraint(
            "status IN ('CONFIRMED', 'CANCELLED', 'COMPLETED', 'NO_SHOW', 'RESCHEDULED')",
            name="ck_appt_status_valid",
        ),
        CheckConstraint(
            "payment_status IN ('PENDING', 'COMPLETED', 'FAILED', 'REFUNDED', 'CANCELLED')",
            name="ck_appt_payment_status_valid",
        ),
        CheckConstraint("total_amount >= consultation_fee", name="ck_appt_total_covers_fee"),
        Index("ix_appt_slot_status", "time_slot_id", "status"),
        Index("ix_appt_agent_date", "booked_by_id", "appointment_date"),
        Index("ix_appt_doctor_date", "doctor_id", "appointment_date"),
        Index("ix_appt_bulk_booking", "bulk_booking_id"),
    )

    @property
    def holds_capacity(self) -> bool:
        return self.status in CAPACITY_HOLDING
