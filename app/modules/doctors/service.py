# app/modules/doctors/service.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.db.transaction import unit_of_work
from app.modules.doctors import repository as repo
from app.modules.doctors.schemas import (
    DoctorCreate,
    DoctorListPage,
    DoctorPublic,
    HospitalCreate,
    HospitalPublic,
)
from app.modules.users.models import User


async def search_doctors_svc(
    session: AsyncSession,
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
) -> DoctorListPage:
    """
    Case-insensitive search on name/specialization. `available_on` keeps only
    doctors that still have an active slot with spare capacity on that day.
    """
    if min_fee is not None and max_fee is not None and min_fee > max_fee:
        raise ValidationError("min_fee must not exceed max_fee")

    rows, total = await repo.search_doctors(
        session,
        q=q,
        specialization=specialization,
        hospital_id=hospital_id,
        city=city,
        min_fee=min_fee,
        max_fee=max_fee,
        available_on=available_on,
        limit=limit,
        offset=offset,
    )
    return DoctorListPage(
        items=[DoctorPublic.model_validate(d) for d in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )


async def get_doctor_svc(session: AsyncSession, doctor_id: UUID) -> DoctorPublic:
    doctor = await repo.get_doctor(session, doctor_id)
    if doctor is None:
        raise NotFoundError("doctor_not_found")
    return DoctorPublic.model_validate(doctor)


async def list_hospitals_svc(session: AsyncSession, city: Optional[str] = None) -> List[HospitalPublic]:
    rows = await repo.list_hospitals(session, city=city)
    return [HospitalPublic.model_validate(h) for h in rows]


async def create_hospital_svc(
    session: AsyncSession, payload: HospitalCreate, actor: User
) -> HospitalPublic:
    async with unit_of_work(session, action="CREATE_HOSPITAL", user_id=actor.id) as uow:
        hospital = await repo.create_hospital(
            session,
            name=payload.name,
            address=payload.address,
            city=payload.city,
            phone=payload.phone,
        )
        uow.details = f"hospital={hospital.id}"
        result = HospitalPublic.model_validate(hospital)
    return result


async def create_doctor_svc(
    session: AsyncSession, payload: DoctorCreate, actor: User
) -> DoctorPublic:
    async with unit_of_work(session, action="CREATE_DOCTOR", user_id=actor.id) as uow:
        hospital = await repo.get_hospital(session, payload.hospital_id)
        if hospital is None:
            raise NotFoundError("hospital_not_found")
        doctor = await repo.create_doctor(
            session,
            hospital_id=hospital.id,
            name=payload.name,
            email=str(payload.email),
            specialization=payload.specialization,
            qualification=payload.qualification,
            consultation_fee=payload.consultation_fee,
            experience_years=payload.experience_years,
            rating=payload.rating,
        )
        uow.details = f"doctor={doctor.id}"
        result = DoctorPublic.model_validate(doctor)
    return result
