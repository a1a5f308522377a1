# app/routers/appointments.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql import get_session
from app.dependencies import get_current_user
from app.modules.appointments.models import ApptStatus, PaymentStatus
from app.modules.users.models import User

from app.modules.appointments.schemas import (
    AppointmentCancelRequest,
    AppointmentCreateRequest,
    AppointmentListPage,
    AppointmentPublic,
    AppointmentRescheduleRequest,
    AppointmentStatusRequest,
    BookingResult,
    BulkBookingRequest,
    BulkBookingResult,
    RescheduleResult,
)
from app.modules.appointments.service import (
    book_appointment_svc,
    bulk_book_appointments_svc,
    cancel_appointment_svc,
    get_appointment_by_number_svc,
    get_appointment_svc,
    list_appointments_svc,
    reschedule_appointment_svc,
    update_appointment_status_svc,
)

router = APIRouter(tags=["appointments"])


# Implement /appointments (POST)
@router.post(
    "/appointments",
    response_model=BookingResult,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment on a time slot (atomic capacity claim)",
)
async def appointments_book(
    payload: AppointmentCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),  # Bearer required
):
    return await book_appointment_svc(session, payload, current_user)


# Implement /appointments/bulk (POST)
@router.post(
    "/appointments/bulk",
    response_model=BulkBookingResult,
    status_code=status.HTTP_201_CREATED,
    summary="Book several patients at once (all or nothing)",
)
async def appointments_bulk_book(
    payload: BulkBookingRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await bulk_book_appointments_svc(session, payload, current_user)


# Implement /appointments (GET)
@router.get(
    "/appointments",
    response_model=AppointmentListPage,
    summary="List appointments (agents see their own bookings)",
)
async def appointments_list(
    status_: Optional[ApptStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    doctor_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None, max_length=120),
    bulk_booking_id: Optional[str] = Query(None, max_length=40),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await list_appointments_svc(
        session,
        current_user,
        status=status_.value if status_ else None,
        payment_status=payment_status.value if payment_status else None,
        doctor_id=doctor_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
        bulk_booking_id=bulk_booking_id,
        limit=limit,
        offset=offset,
    )


# Implement /appointments/number/{appointment_number} (GET)
@router.get(
    "/appointments/number/{appointment_number}",
    response_model=AppointmentPublic,
    summary="Look up an appointment by its APT- number",
)
async def appointments_by_number(
    appointment_number: str,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await get_appointment_by_number_svc(session, appointment_number, current_user)


# Implement /appointments/{id} (GET)
@router.get(
    "/appointments/{appointment_id}",
    response_model=AppointmentPublic,
    summary="Read one appointment",
)
async def appointments_get(
    appointment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await get_appointment_svc(session, appointment_id, current_user)


# Implement /appointments/{id}/cancel (PATCH)
@router.patch(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentPublic,
    summary="Cancel an appointment and release its place",
)
async def appointments_cancel(
    appointment_id: UUID,
    payload: AppointmentCancelRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await cancel_appointment_svc(session, appointment_id, payload.reason, current_user)


# Implement /appointments/{id}/reschedule (PATCH)
@router.patch(
    "/appointments/{appointment_id}/reschedule",
    response_model=RescheduleResult,
    summary="Move an appointment to another slot (all or nothing)",
)
async def appointments_reschedule(
    appointment_id: UUID,
    payload: AppointmentRescheduleRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await reschedule_appointment_svc(
        session,
        appointment_id,
        payload.new_time_slot_id,
        current_user,
        reason=payload.reason,
    )


# Implement /appointments/{id}/status (PATCH)
@router.patch(
    "/appointments/{appointment_id}/status",
    response_model=AppointmentPublic,
    summary="Mark an appointment COMPLETED or NO_SHOW",
)
async def appointments_status(
    appointment_id: UUID,
    payload: AppointmentStatusRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await update_appointment_status_svc(
        session, appointment_id, payload.status.value, current_user
    )
