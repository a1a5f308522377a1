from datetime import time, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaValidationError

from app.core.exceptions import NotFoundError, SlotConflictError, ValidationError
from app.modules.appointments import service as appt_service
from app.modules.appointments.models import Appointment, ApptStatus
from app.modules.notifications.relay import EventType
from app.modules.time_slots import service as slot_service
from app.modules.time_slots.models import SlotAvailability, TimeSlot
from app.modules.time_slots.schemas import (
    TimeRange,
    TimeSlotBulkCreateRequest,
    TimeSlotCreateRequest,
)

from tests.helpers import booking_request, drain


async def _book(session_factory, slot_id, agent, name="Patient"):
    async with session_factory() as s:
        return await appt_service.book_appointment_svc(s, booking_request(slot_id, name=name), agent)


class TestSlotCreation:

    async def test_create_uses_doctor_fee_by_default(self, session, seed):
        payload = TimeSlotCreateRequest(
            doctor_id=seed.doctor.id,
            date=seed.slot.date + timedelta(days=1),
            start_time=time(9, 0),
            end_time=time(11, 0),
            max_appointments=10,
        )

        slot = await slot_service.create_slot_svc(session, payload, seed.admin)

        assert slot.consultation_fee == Decimal("2500.00")
        assert slot.current_bookings == 0
        assert slot.available_slots == 10
        assert slot.availability == SlotAvailability.AVAILABLE.value

    async def test_overlap_is_rejected(self, session, seed):
        payload = TimeSlotCreateRequest(
            doctor_id=seed.doctor.id,
            date=seed.slot.date,
            start_time=time(11, 0),
            end_time=time(13, 0),
        )

        with pytest.raises(SlotConflictError):
            await slot_service.create_slot_svc(session, payload, seed.admin)

    async def test_back_to_back_is_fine(self, session, seed):
        payload = TimeSlotCreateRequest(
            doctor_id=seed.doctor.id,
            date=seed.slot.date,
            start_time=time(12, 0),
            end_time=time(13, 0),
        )

        slot = await slot_service.create_slot_svc(session, payload, seed.admin)

        assert slot.start_time == time(12, 0)

    async def test_unknown_doctor(self, session, seed):
        from uuid import uuid4

        payload = TimeSlotCreateRequest(
            doctor_id=uuid4(), date=seed.slot.date, start_time=time(6, 0), end_time=time(7, 0)
        )

        with pytest.raises(NotFoundError):
            await slot_service.create_slot_svc(session, payload, seed.admin)

    def test_end_before_start_is_rejected(self, seed):
        with pytest.raises(SchemaValidationError):
            TimeSlotCreateRequest(
                doctor_id=seed.doctor.id, date=seed.slot.date, start_time=time(10, 0), end_time=time(9, 0)
            )

    async def test_bulk_create_skips_overlaps(self, session, seed):
        payload = TimeSlotBulkCreateRequest(
            doctor_id=seed.doctor.id,
            date_from=seed.slot.date,
            date_to=seed.slot.date + timedelta(days=2),
            time_ranges=[
                TimeRange(start_time=time(9, 0), end_time=time(12, 0), max_appointments=15),
                TimeRange(start_time=time(14, 0), end_time=time(16, 0), max_appointments=5),
            ],
        )

        result = await slot_service.bulk_create_slots_svc(session, payload, seed.admin)

        # the 09:00 range on the seeded day clashes with the existing slot
        assert result.skipped == 1
        assert result.created == 5
        assert len(result.slots) == 5

    def test_bulk_range_is_capped(self, seed):
        with pytest.raises(SchemaValidationError):
            TimeSlotBulkCreateRequest(
                doctor_id=seed.doctor.id,
                date_from=seed.slot.date,
                date_to=seed.slot.date + timedelta(days=120),
                time_ranges=[TimeRange(start_time=time(9, 0), end_time=time(10, 0))],
            )


class TestCapacity:

    async def test_availability_labels(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)

        async with session_factory() as s:
            slot = await slot_service.get_slot_svc(s, seed.slot.id)
        assert slot.availability == SlotAvailability.AVAILABLE.value
        assert slot.available_slots == 1

        await _book(session_factory, seed.slot.id, seed.agent, name="Second")
        async with session_factory() as s:
            slot = await slot_service.get_slot_svc(s, seed.slot.id)
        assert slot.availability == SlotAvailability.FULL.value
        assert slot.available_slots == 0

    def test_filling_fast(self):
        slot = TimeSlot(max_appointments=10, current_bookings=8)

        assert slot.availability == SlotAvailability.FILLING_FAST.value

    async def test_capacity_cannot_drop_below_bookings(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)
        await _book(session_factory, seed.slot.id, seed.agent, name="Second")

        async with session_factory() as s:
            with pytest.raises(ValidationError):
                await slot_service.update_capacity_svc(s, seed.slot.id, 1, seed.admin)

        async with session_factory() as s:
            slot = await slot_service.update_capacity_svc(s, seed.slot.id, 4, seed.admin)
        assert slot.max_appointments == 4
        assert slot.current_bookings == 2
        assert slot.available_slots == 2

    async def test_deactivated_slot_keeps_bookings(self, session_factory, seed, subscription):
        booked = await _book(session_factory, seed.slot.id, seed.agent)
        drain(subscription)

        async with session_factory() as s:
            slot = await slot_service.set_active_svc(s, seed.slot.id, False, seed.admin)

        assert slot.is_active is False
        assert slot.current_bookings == 1
        assert [e.type for e in drain(subscription)] == [EventType.SLOT_RELEASED]
        async with session_factory() as s:
            appt = await s.get(Appointment, booked.appointment.id)
            assert appt.status == ApptStatus.CONFIRMED.value

    async def test_list_hides_inactive_by_default(self, session_factory, seed):
        async with session_factory() as s:
            await slot_service.set_active_svc(s, seed.small_slot.id, False, seed.admin)

        async with session_factory() as s:
            page = await slot_service.list_slots_svc(s, doctor_id=seed.doctor.id)
            everything = await slot_service.list_slots_svc(s, doctor_id=seed.doctor.id, is_active=None)

        assert [item.id for item in page.items] == [seed.slot.id]
        assert everything.total == 2

    async def test_list_with_availability(self, session_factory, seed):
        await _book(session_factory, seed.small_slot.id, seed.agent)

        async with session_factory() as s:
            page = await slot_service.list_slots_svc(s, slot_date=seed.slot.date, has_availability=True)

        assert [item.id for item in page.items] == [seed.slot.id]


class TestSlotCancellation:

    async def test_cancel_slot_cancels_bookings(self, session_factory, seed):
        first = await _book(session_factory, seed.slot.id, seed.agent)
        second = await _book(session_factory, seed.slot.id, seed.other_agent, name="Other")

        async with session_factory() as s:
            result = await slot_service.cancel_slot_svc(s, seed.slot.id, "Doctor unavailable", seed.supervisor)

        assert result.cancelled_appointments == 2
        async with session_factory() as s:
            slot = await s.get(TimeSlot, seed.slot.id)
            assert slot.is_active is False
            assert slot.current_bookings == 0
            for booked in (first, second):
                appt = await s.get(Appointment, booked.appointment.id)
                assert appt.status == ApptStatus.CANCELLED.value
                assert appt.cancellation_reason == "Doctor unavailable"

    async def test_delete_slot_with_history_is_refused(self, session_factory, seed):
        booked = await _book(session_factory, seed.slot.id, seed.agent)
        async with session_factory() as s:
            await appt_service.cancel_appointment_svc(s, booked.appointment.id, "changed", seed.agent)

        async with session_factory() as s:
            with pytest.raises(ValidationError):
                await slot_service.delete_slot_svc(s, seed.slot.id, seed.admin)

    async def test_delete_empty_slot(self, session_factory, seed):
        async with session_factory() as s:
            await slot_service.delete_slot_svc(s, seed.small_slot.id, seed.admin)

        async with session_factory() as s:
            with pytest.raises(NotFoundError):
                await slot_service.get_slot_svc(s, seed.small_slot.id)
