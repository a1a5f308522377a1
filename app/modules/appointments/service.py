# app/modules/appointments/service.py
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InvalidTransitionError,
    LedgerInvariantError,
    LockTimeoutError,
    NotFoundError,
    SlotFullError,
    ValidationError,
)
from app.core.permission import ensure_owner_or_supervisor, is_privileged
from app.db.transaction import UnitOfWork, unit_of_work
from app.modules.appointments import repository as repo
from app.modules.appointments.models import (
    APPT_TRANSITIONS,
    Appointment,
    ApptStatus,
    PaymentStatus,
)
from app.modules.appointments.schemas import (
    AppointmentCreateRequest,
    AppointmentListItem,
    AppointmentListPage,
    AppointmentPublic,
    BookingResult,
    BulkBookingRequest,
    BulkBookingResult,
    PatientDetails,
    RescheduleResult,
)
from app.modules.doctors import repository as doctor_repo
from app.modules.notifications import repository as note_repo
from app.modules.notifications.models import NotificationType
from app.modules.notifications.relay import EventType, RelayEvent
from app.modules.payments import repository as pay_repo
from app.modules.payments.models import Payment, PaymentMethod
from app.modules.payments.service import mark_refund, transition_payment
from app.modules.time_slots import repository as slot_repo
from app.modules.time_slots.models import TimeSlot
from app.modules.users.models import User

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def _to_public(appt: Appointment) -> AppointmentPublic:
    return AppointmentPublic.model_validate(appt)


def _to_list_item(appt: Appointment) -> AppointmentListItem:
    return AppointmentListItem.model_validate(appt)


def _booking_result(appt: Appointment, payment: Payment) -> BookingResult:
    return BookingResult(
        appointment=_to_public(appt),
        payment_id=payment.id,
        payment_status=payment.status,
        amount=payment.amount,
        currency=payment.currency,
    )


def check_appointment_transition(current: str, target: str) -> None:
    if target not in APPT_TRANSITIONS.get(current, frozenset()):
        logger.warning("Rejected appointment transition %s -> %s", current, target)
        raise InvalidTransitionError("appointment", current, target)


def validate_patient(patient: PatientDetails) -> None:
    if not patient.name:
        raise ValidationError("patient name is required")
    if not patient.phone and not patient.email:
        raise ValidationError("patient phone or email is required")


def _slot_event(kind: str, slot: TimeSlot, appt: Appointment) -> RelayEvent:
    return RelayEvent(
        type=kind,
        payload={
            "time_slot_id": str(slot.id),
            "appointment_id": str(appt.id),
            "current_bookings": slot.current_bookings,
            "max_appointments": slot.max_appointments,
            "available_slots": slot.available_slots,
            "availability": slot.availability,
        },
        doctor_id=str(slot.doctor_id),
        date=slot.date.isoformat(),
        appointment_id=str(appt.id),
    )


# Capacity primitives. Both must run inside a unit of work.

async def claim_capacity(session: AsyncSession, time_slot_id: UUID) -> TimeSlot:
    """
    Take one unit of the slot's capacity, retrying on version conflicts.

    Raises NotFoundError / ValidationError (inactive) / SlotFullError, or
    LockTimeoutError once BOOKING_MAX_RETRIES conflicting attempts are spent.
    """
    for attempt in range(1, settings.BOOKING_MAX_RETRIES + 1):
        slot = await slot_repo.get_slot_for_update(session, time_slot_id)
        if slot is None:
            raise NotFoundError("time_slot_not_found")
        if not slot.is_active:
            raise ValidationError("time_slot_inactive")
        if not slot.has_capacity:
            raise SlotFullError(f"time slot {slot.id} is full")

        if await slot_repo.increment_booking(session, slot.id, slot.version):
            await session.refresh(slot)
            return slot

        logger.warning(
            "Version conflict claiming slot %s (attempt %d/%d)",
            time_slot_id, attempt, settings.BOOKING_MAX_RETRIES,
        )

    raise LockTimeoutError("booking_retries_exhausted")


async def release_capacity(session: AsyncSession, time_slot_id: UUID) -> TimeSlot:
    """Give back one unit. Going below zero is a ledger bug and aborts the unit of work."""
    if not await slot_repo.decrement_booking(session, time_slot_id):
        logger.critical(
            "Refusing to release capacity on slot %s: current_bookings already 0",
            time_slot_id,
        )
        raise LedgerInvariantError(f"current_bookings would go negative on slot {time_slot_id}")
    return await slot_repo.get_slot_for_update(session, time_slot_id)


async def _create_booking(
    session: AsyncSession,
    uow: UnitOfWork,
    slot: TimeSlot,
    *,
    agent: User,
    patient_name: str,
    patient_phone: Optional[str],
    patient_email: Optional[str],
    patient_nic: Optional[str],
    notes: Optional[str],
    payment_method: str,
    currency: str,
    rescheduled_from_id: Optional[UUID] = None,
    bulk_booking_id: Optional[str] = None,
) -> tuple[Appointment, Payment]:
    """Appointment + pending payment + agent notification on an already-claimed slot."""
    doctor = await doctor_repo.get_doctor(session, slot.doctor_id)
    if doctor is None:
        raise NotFoundError("doctor_not_found")

    total = slot.consultation_fee + settings.BOOKING_SERVICE_CHARGE
    appt = await repo.insert_appointment(
        session,
        time_slot_id=slot.id,
        doctor_id=slot.doctor_id,
        hospital_id=doctor.hospital_id,
        booked_by_id=agent.id,
        appointment_date=slot.date,
        appointment_time=slot.start_time,
        patient_name=patient_name,
        patient_phone=patient_phone,
        patient_email=patient_email,
        patient_nic=patient_nic,
        notes=notes,
        consultation_fee=slot.consultation_fee,
        total_amount=total,
        rescheduled_from_id=rescheduled_from_id,
        bulk_booking_id=bulk_booking_id,
    )
    payment = await pay_repo.insert_payment(
        session,
        appointment_id=appt.id,
        amount=appt.total_amount,
        currency=currency,
        payment_method=payment_method,
    )
    await note_repo.add_notification(
        session,
        user_id=agent.id,
        type=NotificationType.APPOINTMENT_CONFIRMED,
        title="Appointment confirmed",
        message=(
            f"{appt.appointment_number} for {patient_name} with Dr. {doctor.name} "
            f"on {slot.date:%Y-%m-%d} at {slot.start_time:%H:%M}."
        ),
        data={"appointment_id": str(appt.id), "time_slot_id": str(slot.id)},
    )
    uow.emit(_slot_event(EventType.SLOT_BOOKED, slot, appt))
    return appt, payment


async def terminate_appointment(
    session: AsyncSession,
    uow: UnitOfWork,
    appt: Appointment,
    target: str,
    *,
    reason: Optional[str] = None,
) -> Appointment:
    """
    Move a CONFIRMED appointment to CANCELLED / RESCHEDULED: release its
    capacity and settle its payment (pending -> cancelled, paid -> refund).
    """
    current = appt.status
    check_appointment_transition(current, target)

    values = {}
    if target == ApptStatus.CANCELLED.value:
        values = {"cancellation_reason": reason, "cancellation_date": _utcnow()}
    if not await repo.update_appointment_status(
        session, appt.id, expected_status=current, status=target, **values
    ):
        # Lost a race with another terminal move on the same row
        await session.refresh(appt)
        check_appointment_transition(appt.status, target)
        raise LockTimeoutError("appointment_changed_concurrently")

    slot = await release_capacity(session, appt.time_slot_id)
    await session.refresh(appt)
    uow.emit(_slot_event(EventType.SLOT_RELEASED, slot, appt))

    payment = await pay_repo.get_active_payment(session, appt.id)
    if payment is not None:
        if payment.status == PaymentStatus.PENDING.value:
            await transition_payment(session, uow, payment, PaymentStatus.CANCELLED.value)
        elif payment.status == PaymentStatus.COMPLETED.value and not payment.refund_pending:
            await mark_refund(
                session, uow, payment,
                reason=reason or f"Appointment {target.lower()}",
            )

    await session.refresh(appt)
    return appt


async def _load_owned(
    session: AsyncSession, appointment_id: UUID, actor: User, *, for_update: bool = False
) -> Appointment:
    appt = await repo.get_appointment(session, appointment_id, for_update=for_update)
    if appt is None:
        raise NotFoundError("appointment_not_found")
    ensure_owner_or_supervisor(actor, appt.booked_by_id)
    return appt


# BOOK
async def book_appointment_svc(
    session: AsyncSession,
    payload: AppointmentCreateRequest,
    agent: User,
) -> BookingResult:
    """
    Book one place on a time slot for a patient.

    One unit of work: claim capacity (row lock + version check), insert the
    CONFIRMED appointment, insert its PENDING payment, notify the agent.
    Any failure leaves no trace except the ROLLBACK audit row; the
    slot:booked event goes out only after the commit.
    """
    validate_patient(payload.patient)

    async with unit_of_work(session, action="BOOK_APPOINTMENT", user_id=agent.id) as uow:
        slot = await claim_capacity(session, payload.time_slot_id)
        appt, payment = await _create_booking(
            session,
            uow,
            slot,
            agent=agent,
            patient_name=payload.patient.name,
            patient_phone=payload.patient.phone,
            patient_email=str(payload.patient.email) if payload.patient.email else None,
            patient_nic=payload.patient.nic,
            notes=payload.notes,
            payment_method=payload.payment_method.value,
            currency=settings.DEFAULT_CURRENCY,
        )
        uow.details = f"{appt.appointment_number} slot={slot.id}"
        result = _booking_result(appt, payment)

    logger.info(
        "Booked %s on slot %s (%d/%d)",
        result.appointment.appointment_number, slot.id,
        slot.current_bookings, slot.max_appointments,
    )
    return result


# BULK BOOK
async def bulk_book_appointments_svc(
    session: AsyncSession,
    payload: BulkBookingRequest,
    agent: User,
) -> BulkBookingResult:
    """
    Book several patients for one agent as a single unit of work. Every
    appointment shares one bulk_booking_id; if any entry cannot be booked
    (full or inactive slot, contention) none of them is.
    """
    for entry in payload.appointments:
        validate_patient(entry.patient)

    bulk_booking_id = repo.new_bulk_booking_id()
    entries = payload.appointments
    results: dict[int, BookingResult] = {}

    async with unit_of_work(session, action="BULK_BOOK_APPOINTMENTS", user_id=agent.id) as uow:
        # Claim in slot id order, same as reschedule, so concurrent batches
        # lock rows in a consistent order.
        for i in sorted(range(len(entries)), key=lambda i: str(entries[i].time_slot_id)):
            entry = entries[i]
            slot = await claim_capacity(session, entry.time_slot_id)
            appt, payment = await _create_booking(
                session,
                uow,
                slot,
                agent=agent,
                patient_name=entry.patient.name,
                patient_phone=entry.patient.phone,
                patient_email=str(entry.patient.email) if entry.patient.email else None,
                patient_nic=entry.patient.nic,
                notes=entry.notes,
                payment_method=entry.payment_method.value,
                currency=settings.DEFAULT_CURRENCY,
                bulk_booking_id=bulk_booking_id,
            )
            results[i] = _booking_result(appt, payment)

        bookings = [results[i] for i in range(len(entries))]
        total_amount = sum((b.amount for b in bookings), Decimal("0"))
        uow.details = f"{bulk_booking_id} count={len(bookings)} total={total_amount}"

    logger.info("Bulk booking %s: %d appointments, total %s", bulk_booking_id, len(bookings), total_amount)
    return BulkBookingResult(
        bulk_booking_id=bulk_booking_id,
        bookings=bookings,
        total_amount=total_amount,
        currency=settings.DEFAULT_CURRENCY,
    )


# CANCEL
async def cancel_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    reason: str,
    current_user: User,
) -> AppointmentPublic:
    """
    Cancel a CONFIRMED appointment: frees its place, cancels a pending
    payment or requests a refund of a completed one. Cancelling twice is an
    InvalidTransitionError, never a second release.
    """
    async with unit_of_work(session, action="CANCEL_APPOINTMENT", user_id=current_user.id) as uow:
        appt = await _load_owned(session, appointment_id, current_user, for_update=True)
        await terminate_appointment(session, uow, appt, ApptStatus.CANCELLED.value, reason=reason)
        uow.emit(
            RelayEvent(
                type=EventType.APPOINTMENT_CANCELLED,
                payload={
                    "appointment_id": str(appt.id),
                    "appointment_number": appt.appointment_number,
                    "time_slot_id": str(appt.time_slot_id),
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
            title="Appointment cancelled",
            message=f"{appt.appointment_number} for {appt.patient_name} was cancelled: {reason}",
            data={"appointment_id": str(appt.id)},
        )
        uow.details = appt.appointment_number
        result = _to_public(appt)

    logger.info("Cancelled %s", result.appointment_number)
    return result


# RESCHEDULE
async def reschedule_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    new_time_slot_id: UUID,
    current_user: User,
    reason: Optional[str] = None,
) -> RescheduleResult:
    """
    Move a booking to another slot as one unit of work: the old appointment
    becomes RESCHEDULED and a new CONFIRMED one (rescheduled_from_id set)
    takes a place on the new slot. If the new slot cannot be claimed nothing
    changes and the original stays CONFIRMED.
    """
    async with unit_of_work(session, action="RESCHEDULE_APPOINTMENT", user_id=current_user.id) as uow:
        old = await _load_owned(session, appointment_id, current_user, for_update=True)
        check_appointment_transition(old.status, ApptStatus.RESCHEDULED.value)
        if old.time_slot_id == new_time_slot_id:
            raise ValidationError("new time slot must differ from the current one")

        old_payment = await pay_repo.get_active_payment(session, old.id)
        payment_method = old_payment.payment_method if old_payment else PaymentMethod.CREDIT_CARD.value
        currency = old_payment.currency if old_payment else settings.DEFAULT_CURRENCY
        agent = current_user if old.booked_by_id == current_user.id else None

        # Slot rows are always locked in id order so two crossing reschedules
        # cannot deadlock each other.
        if str(new_time_slot_id) < str(old.time_slot_id):
            new_slot = await claim_capacity(session, new_time_slot_id)
            await terminate_appointment(session, uow, old, ApptStatus.RESCHEDULED.value, reason=reason)
        else:
            await terminate_appointment(session, uow, old, ApptStatus.RESCHEDULED.value, reason=reason)
            new_slot = await claim_capacity(session, new_time_slot_id)

        if agent is None:
            agent = await session.get(User, old.booked_by_id)
        new_appt, new_payment = await _create_booking(
            session,
            uow,
            new_slot,
            agent=agent,
            patient_name=old.patient_name,
            patient_phone=old.patient_phone,
            patient_email=old.patient_email,
            patient_nic=old.patient_nic,
            notes=old.notes,
            payment_method=payment_method,
            currency=currency,
            rescheduled_from_id=old.id,
        )
        uow.emit(
            RelayEvent(
                type=EventType.APPOINTMENT_STATUS_CHANGED,
                payload={
                    "appointment_id": str(old.id),
                    "from": ApptStatus.CONFIRMED.value,
                    "to": ApptStatus.RESCHEDULED.value,
                    "rescheduled_to": str(new_appt.id),
                },
                doctor_id=str(old.doctor_id),
                date=old.appointment_date.isoformat(),
                appointment_id=str(old.id),
            )
        )
        uow.details = f"{old.appointment_number} -> {new_appt.appointment_number}"
        result = RescheduleResult(
            previous=_to_public(old),
            appointment=_to_public(new_appt),
            payment_id=new_payment.id,
        )

    logger.info(
        "Rescheduled %s to %s", result.previous.appointment_number, result.appointment.appointment_number
    )
    return result


# STATUS (COMPLETED / NO_SHOW)
async def update_appointment_status_svc(
    session: AsyncSession,
    appointment_id: UUID,
    status: str,
    current_user: User,
) -> AppointmentPublic:
    """
    CONFIRMED -> COMPLETED keeps the place; CONFIRMED -> NO_SHOW gives it
    back. Cancellation and rescheduling have their own operations.
    """
    if status not in (ApptStatus.COMPLETED.value, ApptStatus.NO_SHOW.value):
        raise ValidationError("status must be COMPLETED or NO_SHOW")

    async with unit_of_work(session, action="UPDATE_APPOINTMENT_STATUS", user_id=current_user.id) as uow:
        appt = await _load_owned(session, appointment_id, current_user, for_update=True)
        current = appt.status
        check_appointment_transition(current, status)

        if not await repo.update_appointment_status(
            session, appt.id, expected_status=current, status=status
        ):
            raise LockTimeoutError("appointment_changed_concurrently")

        if status == ApptStatus.NO_SHOW.value:
            slot = await release_capacity(session, appt.time_slot_id)
            await session.refresh(appt)
            uow.emit(_slot_event(EventType.SLOT_RELEASED, slot, appt))

        await session.refresh(appt)
        uow.emit(
            RelayEvent(
                type=EventType.APPOINTMENT_STATUS_CHANGED,
                payload={"appointment_id": str(appt.id), "from": current, "to": status},
                doctor_id=str(appt.doctor_id),
                date=appt.appointment_date.isoformat(),
                appointment_id=str(appt.id),
            )
        )
        uow.details = f"{appt.appointment_number} {current}->{status}"
        result = _to_public(appt)
    return result


# READ
async def get_appointment_svc(
    session: AsyncSession, appointment_id: UUID, current_user: User
) -> AppointmentPublic:
    appt = await _load_owned(session, appointment_id, current_user)
    return _to_public(appt)


async def get_appointment_by_number_svc(
    session: AsyncSession, appointment_number: str, current_user: User
) -> AppointmentPublic:
    appt = await repo.get_by_number(session, appointment_number.strip().upper())
    if appt is None:
        raise NotFoundError("appointment_not_found")
    ensure_owner_or_supervisor(current_user, appt.booked_by_id)
    return _to_public(appt)


async def list_appointments_svc(
    session: AsyncSession,
    current_user: User,
    *,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    doctor_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    bulk_booking_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> AppointmentListPage:
    """
    Agents see the appointments they booked; supervisors and admins see all.
    """
    rows, total = await repo.list_appointments(
        session,
        booked_by_id=None if is_privileged(current_user) else current_user.id,
        doctor_id=doctor_id,
        status=status,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
        bulk_booking_id=bulk_booking_id,
        limit=limit,
        offset=offset,
    )
    return AppointmentListPage(
        items=[_to_list_item(a) for a in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )
