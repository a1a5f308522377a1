# app/routers/time_slots.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql import get_session
from app.dependencies import get_current_user, require_roles
from app.modules.users.models import User

from app.modules.time_slots.schemas import (
    ActiveUpdateRequest,
    CapacityUpdateRequest,
    SlotCancelRequest,
    SlotCancelResult,
    TimeSlotBulkCreateRequest,
    TimeSlotBulkResult,
    TimeSlotCreateRequest,
    TimeSlotListPage,
    TimeSlotPublic,
)
from app.modules.time_slots.service import (
    bulk_create_slots_svc,
    cancel_slot_svc,
    create_slot_svc,
    delete_slot_svc,
    get_slot_svc,
    list_slots_svc,
    set_active_svc,
    update_capacity_svc,
)

router = APIRouter(tags=["time-slots"])

# Slot management is for supervisors and admins only
slot_managers = require_roles("admin", "supervisor")


@router.get("/time-slots", response_model=TimeSlotListPage, summary="List time slots with availability")
async def time_slots_list(
    doctor_id: Optional[UUID] = Query(None),
    date_: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    is_active: Optional[bool] = Query(True),
    has_availability: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await list_slots_svc(
        session,
        doctor_id=doctor_id,
        slot_date=date_,
        date_from=date_from,
        date_to=date_to,
        is_active=is_active,
        has_availability=has_availability,
        limit=limit,
        offset=offset,
    )


@router.get("/time-slots/{slot_id}", response_model=TimeSlotPublic)
async def time_slots_get(
    slot_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await get_slot_svc(session, slot_id)


@router.post(
    "/time-slots",
    response_model=TimeSlotPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Open a time slot for a doctor",
)
async def time_slots_create(
    payload: TimeSlotCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(slot_managers),
):
    return await create_slot_svc(session, payload, current_user)


@router.post(
    "/time-slots/bulk",
    response_model=TimeSlotBulkResult,
    status_code=status.HTTP_201_CREATED,
    summary="Open slots for every date in a range",
)
async def time_slots_bulk_create(
    payload: TimeSlotBulkCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(slot_managers),
):
    return await bulk_create_slots_svc(session, payload, current_user)


@router.patch("/time-slots/{slot_id}/capacity", response_model=TimeSlotPublic)
async def time_slots_capacity(
    slot_id: UUID,
    payload: CapacityUpdateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(slot_managers),
):
    return await update_capacity_svc(session, slot_id, payload.max_appointments, current_user)


@router.patch("/time-slots/{slot_id}/active", response_model=TimeSlotPublic)
async def time_slots_active(
    slot_id: UUID,
    payload: ActiveUpdateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(slot_managers),
):
    return await set_active_svc(session, slot_id, payload.is_active, current_user)


@router.post(
    "/time-slots/{slot_id}/cancel",
    response_model=SlotCancelResult,
    summary="Cancel a session and every confirmed appointment on it",
)
async def time_slots_cancel(
    slot_id: UUID,
    payload: SlotCancelRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(slot_managers),
):
    return await cancel_slot_svc(session, slot_id, payload.reason, current_user)


@router.delete("/time-slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def time_slots_delete(
    slot_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(slot_managers),
):
    await delete_slot_svc(session, slot_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
