# app/modules/time_slots/service.py
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, SlotConflictError, ValidationError
from app.db.transaction import unit_of_work
from app.modules.appointments import repository as appt_repo
from app.modules.appointments.models import ApptStatus
from app.modules.appointments.service import terminate_appointment
from app.modules.doctors import repository as doctor_repo
from app.modules.notifications import repository as note_repo
from app.modules.notifications.models import NotificationType
from app.modules.notifications.relay import EventType, RelayEvent
from app.modules.time_slots import repository as repo
from app.modules.time_slots.models import TimeSlot
from app.modules.time_slots.schemas import (
    SlotCancelResult,
    TimeSlotBulkCreateRequest,
    TimeSlotBulkResult,
    TimeSlotCreateRequest,
    TimeSlotListPage,
    TimeSlotPublic,
)
from app.modules.users.models import User

logger = logging.getLogger(__name__)


def _to_public(slot: TimeSlot) -> TimeSlotPublic:
    return TimeSlotPublic.model_validate(slot)


def _capacity_event(slot: TimeSlot, **extra) -> RelayEvent:
    # Capacity changes that are not a booking reuse slot:released so
    # availability widgets re-sync the same way.
    return RelayEvent(
        type=EventType.SLOT_RELEASED,
        payload={
            "time_slot_id": str(slot.id),
            "current_bookings": slot.current_bookings,
            "max_appointments": slot.max_appointments,
            "available_slots": slot.available_slots,
            "availability": slot.availability,
            "is_active": slot.is_active,
            **extra,
        },
        doctor_id=str(slot.doctor_id),
        date=slot.date.isoformat(),
    )


async def create_slot_svc(
    session: AsyncSession, payload: TimeSlotCreateRequest, actor: User
) -> TimeSlotPublic:
    async with unit_of_work(session, action="CREATE_TIME_SLOT", user_id=actor.id) as uow:
        doctor = await doctor_repo.get_doctor(session, payload.doctor_id)
        if doctor is None:
            raise NotFoundError("doctor_not_found")

        clash = await repo.find_overlapping(
            session,
            doctor_id=doctor.id,
            slot_date=payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
        )
        if clash is not None:
            raise SlotConflictError(
                f"overlaps slot {clash.id} ({clash.start_time:%H:%M}-{clash.end_time:%H:%M})"
            )

        slot = await repo.create_slot(
            session,
            doctor_id=doctor.id,
            slot_date=payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            max_appointments=payload.max_appointments,
            consultation_fee=(
                payload.consultation_fee
                if payload.consultation_fee is not None
                else doctor.consultation_fee
            ),
        )
        uow.details = f"slot={slot.id}"
        result = _to_public(slot)
    return result


async def bulk_create_slots_svc(
    session: AsyncSession, payload: TimeSlotBulkCreateRequest, actor: User
) -> TimeSlotBulkResult:
    """
    Every time range on every date of the range, in one unit of work.
    Ranges that overlap an existing (or just created) slot are skipped.
    """
    created: list[TimeSlotPublic] = []
    skipped = 0
    async with unit_of_work(session, action="BULK_CREATE_TIME_SLOTS", user_id=actor.id) as uow:
        doctor = await doctor_repo.get_doctor(session, payload.doctor_id)
        if doctor is None:
            raise NotFoundError("doctor_not_found")
        fee = payload.consultation_fee if payload.consultation_fee is not None else doctor.consultation_fee

        day = payload.date_from
        while day <= payload.date_to:
            for rng in payload.time_ranges:
                clash = await repo.find_overlapping(
                    session,
                    doctor_id=doctor.id,
                    slot_date=day,
                    start_time=rng.start_time,
                    end_time=rng.end_time,
                )
                if clash is not None:
                    skipped += 1
                    continue
                slot = await repo.create_slot(
                    session,
                    doctor_id=doctor.id,
                    slot_date=day,
                    start_time=rng.start_time,
                    end_time=rng.end_time,
                    max_appointments=rng.max_appointments,
                    consultation_fee=fee,
                )
                created.append(_to_public(slot))
            day += timedelta(days=1)
        uow.details = f"doctor={doctor.id} created={len(created)} skipped={skipped}"

    logger.info("Bulk slot creation for doctor %s: %d created, %d skipped", payload.doctor_id, len(created), skipped)
    return TimeSlotBulkResult(created=len(created), skipped=skipped, slots=created)


async def get_slot_svc(session: AsyncSession, slot_id: UUID) -> TimeSlotPublic:
    slot = await repo.get_slot(session, slot_id)
    if slot is None:
        raise NotFoundError("time_slot_not_found")
    return _to_public(slot)


async def list_slots_svc(
    session: AsyncSession,
    *,
    doctor_id: Optional[UUID] = None,
    slot_date: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    is_active: Optional[bool] = True,
    has_availability: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> TimeSlotListPage:
    rows, total = await repo.list_slots(
        session,
        doctor_id=doctor_id,
        slot_date=slot_date,
        date_from=date_from,
        date_to=date_to,
        is_active=is_active,
        has_availability=has_availability,
        limit=limit,
        offset=offset,
    )
    return TimeSlotListPage(
        items=[_to_public(s) for s in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )


async def update_capacity_svc(
    session: AsyncSession, slot_id: UUID, max_appointments: int, actor: User
) -> TimeSlotPublic:
    async with unit_of_work(session, action="UPDATE_SLOT_CAPACITY", user_id=actor.id) as uow:
        slot = await repo.get_slot_for_update(session, slot_id)
        if slot is None:
            raise NotFoundError("time_slot_not_found")
        previous = slot.max_appointments
        if not await repo.set_capacity(session, slot.id, max_appointments):
            await session.refresh(slot)
            raise ValidationError(
                f"max_appointments {max_appointments} is below current bookings {slot.current_bookings}"
            )
        await session.refresh(slot)
        uow.emit(_capacity_event(slot))
        uow.details = f"slot={slot.id} capacity {previous}->{max_appointments}"
        result = _to_public(slot)
    return result


async def set_active_svc(
    session: AsyncSession, slot_id: UUID, is_active: bool, actor: User
) -> TimeSlotPublic:
    """
    Deactivating only stops new bookings; appointments already on the slot
    are untouched.
    """
    async with unit_of_work(session, action="SET_SLOT_ACTIVE", user_id=actor.id) as uow:
        slot = await repo.get_slot_for_update(session, slot_id)
        if slot is None:
            raise NotFoundError("time_slot_not_found")
        await repo.set_active(session, slot.id, is_active)
        await session.refresh(slot)
        uow.emit(_capacity_event(slot))
        uow.details = f"slot={slot.id} is_active={is_active}"
        result = _to_public(slot)
    return result


async def cancel_slot_svc(
    session: AsyncSession, slot_id: UUID, reason: str, actor: User
) -> SlotCancelResult:
    """
    Doctor unavailable: deactivate the slot and cancel every CONFIRMED
    appointment on it through the normal cancellation path, all or nothing.
    """
    async with unit_of_work(session, action="CANCEL_TIME_SLOT", user_id=actor.id) as uow:
        slot = await repo.get_slot_for_update(session, slot_id)
        if slot is None:
            raise NotFoundError("time_slot_not_found")
        await repo.set_active(session, slot.id, False)

        appts = await appt_repo.list_active_on_slot(session, slot.id)
        for appt in appts:
            await terminate_appointment(session, uow, appt, ApptStatus.CANCELLED.value, reason=reason)
            uow.emit(
                RelayEvent(
                    type=EventType.APPOINTMENT_CANCELLED,
                    payload={
                        "appointment_id": str(appt.id),
                        "appointment_number": appt.appointment_number,
                        "time_slot_id": str(slot.id),
                        "reason": reason,
                    },
                    doctor_id=str(appt.doctor_id),
                    date=appt.appointment_date.isoformat(),
                    appointment_id=str(appt.id),
                )
            )
            await note_repo.add_notification(
                session,
                user_id=appt.booked_by_id,
                type=NotificationType.APPOINTMENT_CANCELLED,
                title="Session cancelled",
                message=f"{appt.appointment_number} for {appt.patient_name} was cancelled: {reason}",
                data={"appointment_id": str(appt.id), "time_slot_id": str(slot.id)},
            )
        uow.details = f"slot={slot.id} cancelled={len(appts)}"

    logger.info("Cancelled slot %s with %d appointment(s)", slot_id, len(appts))
    return SlotCancelResult(slot_id=slot_id, cancelled_appointments=len(appts))


async def delete_slot_svc(session: AsyncSession, slot_id: UUID, actor: User) -> None:
    """
    Only slots that never carried an appointment can go; anything else is
    part of the booking history and is deactivated instead.
    """
    async with unit_of_work(session, action="DELETE_TIME_SLOT", user_id=actor.id) as uow:
        slot = await repo.get_slot_for_update(session, slot_id)
        if slot is None:
            raise NotFoundError("time_slot_not_found")
        if await appt_repo.count_on_slot(session, slot.id) > 0:
            raise ValidationError("slot has appointments; deactivate it instead")
        await repo.delete_slot(session, slot.id)
        uow.details = f"slot={slot_id}"
