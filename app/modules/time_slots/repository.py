# app/modules/time_slots/repository.py
from __future__ import annotations

import logging
from datetime import date, time
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.time_slots.models import TimeSlot

logger = logging.getLogger(__name__)


async def get_slot(db: AsyncSession, slot_id: UUID) -> Optional[TimeSlot]:
    return await db.get(TimeSlot, slot_id)


async def get_slot_for_update(db: AsyncSession, slot_id: UUID) -> Optional[TimeSlot]:
    """
    Read the slot with a write-intent row lock (FOR UPDATE where the backend
    supports it) and fresh column values, including the version token.
    """
    stmt = (
        select(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def increment_booking(db: AsyncSession, slot_id: UUID, expected_version: int) -> bool:
    """
    Claim one unit of capacity. False when the version moved or the slot is
    already full; the row is untouched in that case.
    """
    stmt = (
        update(TimeSlot)
        .where(
            TimeSlot.id == slot_id,
            TimeSlot.version == expected_version,
            TimeSlot.current_bookings < TimeSlot.max_appointments,
        )
        .values(
            current_bookings=TimeSlot.current_bookings + 1,
            version=TimeSlot.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return (res.rowcount or 0) == 1  # type: ignore


async def decrement_booking(db: AsyncSession, slot_id: UUID) -> bool:
    """
    Release one unit of capacity. False (and no write) when the counter is
    already zero.
    """
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.current_bookings > 0)
        .values(
            current_bookings=TimeSlot.current_bookings - 1,
            version=TimeSlot.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return (res.rowcount or 0) == 1  # type: ignore


async def set_capacity(db: AsyncSession, slot_id: UUID, max_appointments: int) -> bool:
    """Change capacity, refusing to go below the bookings already held."""
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.current_bookings <= max_appointments)
        .values(max_appointments=max_appointments, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return (res.rowcount or 0) == 1  # type: ignore


async def set_active(db: AsyncSession, slot_id: UUID, is_active: bool) -> int:
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .values(is_active=is_active)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount or 0  # type: ignore


async def create_slot(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    slot_date: date,
    start_time: time,
    end_time: time,
    max_appointments: int,
    consultation_fee: Decimal,
    is_active: bool = True,
) -> TimeSlot:
    slot = TimeSlot(
        doctor_id=doctor_id,
        date=slot_date,
        start_time=start_time,
        end_time=end_time,
        max_appointments=max_appointments,
        current_bookings=0,
        consultation_fee=consultation_fee,
        is_active=is_active,
        version=0,
    )
    db.add(slot)
    await db.flush()
    await db.refresh(slot)
    return slot


async def find_overlapping(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    slot_date: date,
    start_time: time,
    end_time: time,
    exclude_id: Optional[UUID] = None,
) -> Optional[TimeSlot]:
    """First slot of the doctor on that date whose [start, end) overlaps the range."""
    conditions = [
        TimeSlot.doctor_id == doctor_id,
        TimeSlot.date == slot_date,
        TimeSlot.start_time < end_time,
        TimeSlot.end_time > start_time,
    ]
    if exclude_id is not None:
        conditions.append(TimeSlot.id != exclude_id)
    stmt = select(TimeSlot).where(and_(*conditions)).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_slots(
    db: AsyncSession,
    *,
    doctor_id: Optional[UUID] = None,
    slot_date: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    is_active: Optional[bool] = None,
    has_availability: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[TimeSlot], int]:
    conditions = []
    if doctor_id is not None:
        conditions.append(TimeSlot.doctor_id == doctor_id)
    if slot_date is not None:
        conditions.append(TimeSlot.date == slot_date)
    else:
        if date_from is not None:
            conditions.append(TimeSlot.date >= date_from)
        if date_to is not None:
            conditions.append(TimeSlot.date <= date_to)
    if is_active is not None:
        conditions.append(TimeSlot.is_active == is_active)
    if has_availability:
        conditions.append(TimeSlot.current_bookings < TimeSlot.max_appointments)

    total_stmt = select(func.count()).select_from(TimeSlot).where(*conditions)
    total = (await db.execute(total_stmt)).scalar_one()

    stmt = (
        select(TimeSlot)
        .where(*conditions)
        .order_by(TimeSlot.date, TimeSlot.start_time, TimeSlot.id)
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return rows, total


async def delete_slot(db: AsyncSession, slot_id: UUID) -> int:
    res = await db.execute(delete(TimeSlot).where(TimeSlot.id == slot_id))
    return res.rowcount or 0  # type: ignore
