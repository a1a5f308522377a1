# app/modules/doctors/repository.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.doctors.models import Doctor, Hospital
from app.modules.time_slots.models import TimeSlot


async def get_doctor(db: AsyncSession, doctor_id: UUID) -> Optional[Doctor]:
    return await db.get(Doctor, doctor_id)


async def get_hospital(db: AsyncSession, hospital_id: UUID) -> Optional[Hospital]:
    return await db.get(Hospital, hospital_id)


async def create_hospital(
    db: AsyncSession,
    *,
    name: str,
    address: str,
    city: str,
    phone: Optional[str] = None,
) -> Hospital:
    hospital = Hospital(name=name.strip(), address=address.strip(), city=city.strip(), phone=phone)
    db.add(hospital)
    await db.flush()
    await db.refresh(hospital)
    return hospital


async def create_doctor(
    db: AsyncSession,
    *,
    hospital_id: UUID,
    name: str,
    email: str,
    specialization: str,
    qualification: str,
    consultation_fee: Decimal,
    experience_years: int = 0,
    rating: Optional[Decimal] = None,
) -> Doctor:
    doctor = Doctor(
        hospital_id=hospital_id,
        name=name.strip(),
        email=email.strip().lower(),
        specialization=specialization.strip(),
        qualification=qualification.strip(),
        consultation_fee=consultation_fee,
        experience_years=experience_years,
        rating=rating,
    )
    db.add(doctor)
    await db.flush()
    await db.refresh(doctor)
    return doctor


async def list_hospitals(
    db: AsyncSession, *, city: Optional[str] = None, active_only: bool = True
) -> Sequence[Hospital]:
    stmt = select(Hospital)
    if city:
        stmt = stmt.where(func.lower(Hospital.city) == city.strip().lower())
    if active_only:
        stmt = stmt.where(Hospital.is_active.is_(True))
    rows = await db.execute(stmt.order_by(Hospital.name))
    return rows.scalars().all()


async def search_doctors(
    db: AsyncSession,
    *,
    q: Optional[str] = None,
    specialization: Optional[str] = None,
    hospital_id: Optional[UUID] = None,
    city: Optional[str] = None,
    min_fee: Optional[Decimal] = None,
    max_fee: Optional[Decimal] = None,
    available_on: Optional[date] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[Sequence[Doctor], int]:
    conditions = [Doctor.is_active.is_(True)]
    if q:
        pattern = f"%{q.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(Doctor.name).like(pattern),
                func.lower(Doctor.specialization).like(pattern),
            )
        )
    if specialization:
        conditions.append(func.lower(Doctor.specialization) == specialization.strip().lower())
    if hospital_id is not None:
        conditions.append(Doctor.hospital_id == hospital_id)
    if city:
        city_match = select(Hospital.id).where(func.lower(Hospital.city) == city.strip().lower())
        conditions.append(Doctor.hospital_id.in_(city_match))
    if min_fee is not None:
        conditions.append(Doctor.consultation_fee >= min_fee)
    if max_fee is not None:
        conditions.append(Doctor.consultation_fee <= max_fee)
    if available_on is not None:
        open_slots = select(TimeSlot.doctor_id).where(
            TimeSlot.date == available_on,
            TimeSlot.is_active.is_(True),
            TimeSlot.current_bookings < TimeSlot.max_appointments,
        )
        conditions.append(Doctor.id.in_(open_slots))

    total_stmt = select(func.count()).select_from(Doctor).where(*conditions)
    total = (await db.execute(total_stmt)).scalar_one()

    stmt = (
        select(Doctor)
        .where(*conditions)
        .order_by(Doctor.name, Doctor.id)
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).unique().scalars().all()
    return rows, total
