# app/modules/appointments/repository.py
from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.appointments.models import Appointment, ApptStatus, PaymentStatus


def new_appointment_number(appointment_date: date) -> str:
    """APT-YYYYMMDD-XXXXXXXX; the suffix is random so numbers are not guessable."""
    return f"APT-{appointment_date:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def new_bulk_booking_id() -> str:
    return f"BULK-{datetime.now(timezone.utc):%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8].upper()}"


async def insert_appointment(
    db: AsyncSession,
    *,
    time_slot_id: UUID,
    doctor_id: UUID,
    hospital_id: UUID,
    booked_by_id: UUID,
    appointment_date: date,
    appointment_time: time,
    patient_name: str,
    patient_phone: Optional[str],
    patient_email: Optional[str],
    patient_nic: Optional[str],
    notes: Optional[str],
    consultation_fee: Decimal,
    total_amount: Decimal,
    rescheduled_from_id: Optional[UUID] = None,
    bulk_booking_id: Optional[str] = None,
) -> Appointment:
    appt = Appointment(
        appointment_number=new_appointment_number(appointment_date),
        time_slot_id=time_slot_id,
        doctor_id=doctor_id,
        hospital_id=hospital_id,
        booked_by_id=booked_by_id,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        patient_name=patient_name,
        patient_phone=patient_phone,
        patient_email=patient_email,
        patient_nic=patient_nic,
        notes=notes,
        consultation_fee=consultation_fee,
        total_amount=total_amount,
        status=ApptStatus.CONFIRMED.value,
        payment_status=PaymentStatus.PENDING.value,
        rescheduled_from_id=rescheduled_from_id,
        bulk_booking_id=bulk_booking_id,
    )
    db.add(appt)
    await db.flush()
    await db.refresh(appt)
    return appt


async def get_appointment(
    db: AsyncSession, appointment_id: UUID, *, for_update: bool = False
) -> Optional[Appointment]:
    stmt = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_by_number(db: AsyncSession, appointment_number: str) -> Optional[Appointment]:
    stmt = select(Appointment).where(Appointment.appointment_number == appointment_number)
    return (await db.execute(stmt)).scalar_one_or_none()


async def update_appointment_status(
    db: AsyncSession,
    appointment_id: UUID,
    *,
    expected_status: str,
    status: str,
    **values,
) -> bool:
    """
    Compare-and-set on status: the row only moves if it is still in
    `expected_status`, so two concurrent cancels cannot both succeed.
    """
    stmt = (
        update(Appointment)
        .where(Appointment.id == appointment_id, Appointment.status == expected_status)
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return (res.rowcount or 0) == 1  # type: ignore


async def set_payment_status(db: AsyncSession, appointment_id: UUID, payment_status: str) -> None:
    stmt = (
        update(Appointment)
        .where(Appointment.id == appointment_id)
        .values(payment_status=payment_status)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)


async def list_active_on_slot(db: AsyncSession, time_slot_id: UUID) -> Sequence[Appointment]:
    stmt = (
        select(Appointment)
        .where(
            Appointment.time_slot_id == time_slot_id,
            Appointment.status == ApptStatus.CONFIRMED.value,
        )
        .order_by(Appointment.created_at, Appointment.id)
        .with_for_update()
    )
    return (await db.execute(stmt)).scalars().all()


async def count_on_slot(db: AsyncSession, time_slot_id: UUID) -> int:
    stmt = select(func.count()).select_from(Appointment).where(Appointment.time_slot_id == time_slot_id)
    return (await db.execute(stmt)).scalar_one()


async def list_appointments(
    db: AsyncSession,
    *,
    booked_by_id: Optional[UUID] = None,
    doctor_id: Optional[UUID] = None,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    bulk_booking_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[Sequence[Appointment], int]:
    conditions = []
    if booked_by_id is not None:
        conditions.append(Appointment.booked_by_id == booked_by_id)
    if doctor_id is not None:
        conditions.append(Appointment.doctor_id == doctor_id)
    if status is not None:
        conditions.append(Appointment.status == status)
    if payment_status is not None:
        conditions.append(Appointment.payment_status == payment_status)
    if date_from is not None:
        conditions.append(Appointment.appointment_date >= date_from)
    if date_to is not None:
        conditions.append(Appointment.appointment_date <= date_to)
    if bulk_booking_id is not None:
        conditions.append(Appointment.bulk_booking_id == bulk_booking_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        conditions.append(
            func.lower(Appointment.patient_name).like(pattern)
            | func.lower(Appointment.appointment_number).like(pattern)
        )

    total_stmt = select(func.count()).select_from(Appointment).where(*conditions)
    total = (await db.execute(total_stmt)).scalar_one()

    stmt = (
        select(Appointment)
        .where(*conditions)
        .order_by(
            Appointment.appointment_date.desc(),
            Appointment.appointment_time.desc(),
            Appointment.id,
        )
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return rows, total
