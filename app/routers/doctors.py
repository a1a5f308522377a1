# app/routers/doctors.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql import get_session
from app.dependencies import get_current_user, require_roles
from app.modules.users.models import User

from app.modules.doctors.schemas import (
    DoctorCreate,
    DoctorListPage,
    DoctorPublic,
    HospitalCreate,
    HospitalPublic,
)
from app.modules.doctors.service import (
    create_doctor_svc,
    create_hospital_svc,
    get_doctor_svc,
    list_hospitals_svc,
    search_doctors_svc,
)

router = APIRouter(tags=["doctors"])


@router.get("/doctors", response_model=DoctorListPage, summary="Search doctors")
async def doctors_search(
    q: Optional[str] = Query(None, max_length=120, description="Name or specialization"),
    specialization: Optional[str] = Query(None, max_length=120),
    hospital_id: Optional[UUID] = Query(None),
    city: Optional[str] = Query(None, max_length=80),
    min_fee: Optional[Decimal] = Query(None, ge=0),
    max_fee: Optional[Decimal] = Query(None, ge=0),
    available_on: Optional[date] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await search_doctors_svc(
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


@router.get("/doctors/{doctor_id}", response_model=DoctorPublic)
async def doctors_get(
    doctor_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await get_doctor_svc(session, doctor_id)


@router.post("/doctors", response_model=DoctorPublic, status_code=status.HTTP_201_CREATED)
async def doctors_create(
    payload: DoctorCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin")),
):
    return await create_doctor_svc(session, payload, current_user)


@router.get("/hospitals", response_model=List[HospitalPublic])
async def hospitals_list(
    city: Optional[str] = Query(None, max_length=80),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await list_hospitals_svc(session, city=city)


@router.post("/hospitals", response_model=HospitalPublic, status_code=status.HTTP_201_CREATED)
async def hospitals_create(
    payload: HospitalCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin")),
):
    return await create_hospital_svc(session, payload, current_user)
