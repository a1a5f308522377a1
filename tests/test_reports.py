from decimal import Decimal

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.modules.appointments import service as appt_service
from app.modules.appointments.models import ApptStatus, PaymentStatus
from app.modules.doctors import service as doctor_service
from app.modules.notifications import repository as note_repo
from app.modules.notifications import service as note_service
from app.modules.notifications.models import NotificationType
from app.modules.payments import service as pay_service
from app.modules.payments.models import PaymentMethod
from app.modules.payments.schemas import PaymentSubmitRequest
from app.modules.reports import service as reports
from app.modules.users import service as user_service
from app.modules.users.schemas import AgentCreateRequest

from tests.helpers import booking_request


async def _book(session_factory, slot_id, agent, **kwargs):
    async with session_factory() as s:
        return await appt_service.book_appointment_svc(s, booking_request(slot_id, **kwargs), agent)


class TestReports:

    async def test_summary_scopes_agents(self, session_factory, seed):
        cash = await _book(session_factory, seed.slot.id, seed.agent, payment_method=PaymentMethod.CASH)
        async with session_factory() as s:
            await pay_service.submit_payment_svc(s, cash.payment_id, PaymentSubmitRequest(), seed.agent)
        other = await _book(session_factory, seed.small_slot.id, seed.other_agent)
        async with session_factory() as s:
            await appt_service.cancel_appointment_svc(s, other.appointment.id, "changed", seed.other_agent)

        async with session_factory() as s:
            mine = await reports.appointment_summary(s, seed.agent)
            overall = await reports.appointment_summary(s, seed.admin)

        assert mine.total_appointments == 1
        assert mine.revenue == Decimal("2500.00")
        assert overall.total_appointments == 2
        assert overall.by_status[ApptStatus.CANCELLED.value] == 1
        assert overall.by_payment_status[PaymentStatus.COMPLETED.value] == 1
        assert overall.by_payment_status[PaymentStatus.CANCELLED.value] == 1

    async def test_agent_performance(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)
        await _book(session_factory, seed.slot.id, seed.agent, name="Second")
        await _book(session_factory, seed.small_slot.id, seed.other_agent)

        async with session_factory() as s:
            rows = await reports.agent_performance(s)

        assert [r.agent_id for r in rows] == [seed.agent.id, seed.other_agent.id]
        assert rows[0].bookings == 2
        assert rows[0].revenue == Decimal("0.00")

    async def test_slot_utilization(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)

        async with session_factory() as s:
            rows = await reports.slot_utilization(s, doctor_id=seed.doctor.id)

        by_id = {r.time_slot_id: r for r in rows}
        assert by_id[seed.slot.id].utilization == 0.5
        assert by_id[seed.small_slot.id].utilization == 0.0

    async def test_dashboard(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)

        async with session_factory() as s:
            stats = await reports.dashboard_stats(s, seed.agent)

        assert stats.upcoming_confirmed == 1
        assert stats.pending_payments == 1
        assert stats.unread_notifications == 1

    async def test_export(self, session_factory, seed):
        booked = await _book(session_factory, seed.slot.id, seed.agent)
        await _book(session_factory, seed.small_slot.id, seed.other_agent)

        async with session_factory() as s:
            export = await reports.export_appointments(s, seed.agent)

        assert export.count == 1
        assert export.total == 1
        assert export.truncated is False
        assert export.rows[0].appointment_number == booked.appointment.appointment_number

    async def test_export_reports_cap(self, session_factory, seed, monkeypatch):
        await _book(session_factory, seed.slot.id, seed.agent, name="First Patient")
        await _book(session_factory, seed.slot.id, seed.agent, name="Second Patient")
        monkeypatch.setattr(reports, "EXPORT_MAX_ROWS", 1)

        async with session_factory() as s:
            export = await reports.export_appointments(s, seed.admin)

        assert export.count == 1
        assert len(export.rows) == 1
        assert export.total == 2
        assert export.truncated is True


class TestDirectory:

    async def test_search_by_specialization(self, session, seed):
        page = await doctor_service.search_doctors_svc(session, q="cardio")

        assert page.total == 1
        assert page.items[0].id == seed.doctor.id

    async def test_available_on(self, session_factory, seed):
        async with session_factory() as s:
            page = await doctor_service.search_doctors_svc(s, available_on=seed.slot.date)
        assert page.total == 1

        await _book(session_factory, seed.slot.id, seed.agent)
        await _book(session_factory, seed.slot.id, seed.agent, name="Second")
        await _book(session_factory, seed.small_slot.id, seed.agent, name="Third")

        async with session_factory() as s:
            page = await doctor_service.search_doctors_svc(s, available_on=seed.slot.date)
        assert page.total == 0

    async def test_fee_range_must_be_ordered(self, session, seed):
        with pytest.raises(ValidationError):
            await doctor_service.search_doctors_svc(session, min_fee=Decimal("500"), max_fee=Decimal("100"))


class TestInbox:

    async def test_cannot_read_someone_elses_notification(self, session_factory, seed):
        async with session_factory() as s:
            note = await note_repo.add_notification(
                s,
                user_id=seed.agent.id,
                type=NotificationType.REMINDER,
                title="Reminder",
                message="Tomorrow at 9",
                data=None,
            )
            await s.commit()

        async with session_factory() as s:
            with pytest.raises(NotFoundError):
                await note_service.mark_read_svc(s, note.id, seed.other_agent)

        async with session_factory() as s:
            read = await note_service.mark_read_svc(s, note.id, seed.agent)
        assert read.is_read is True
        assert read.read_at is not None


class TestProvisioning:

    async def test_duplicate_email_rejected(self, session_factory, seed):
        payload = AgentCreateRequest(email="Agent@Example.com", name="Copy Cat")

        async with session_factory() as s:
            with pytest.raises(ValidationError):
                await user_service.provision_agent_svc(s, payload, seed.admin)

    async def test_provision_agent(self, session_factory, seed):
        payload = AgentCreateRequest(email="new.agent@example.com", name="New Agent", company_name="Beta Ltd")

        async with session_factory() as s:
            user = await user_service.provision_agent_svc(s, payload, seed.admin)

        assert user.email == "new.agent@example.com"
        assert user.role.value == "agent"
