from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import SlotFullError, ValidationError
from app.modules.appointments import service as appt_service
from app.modules.audit.service import list_audit_logs_svc

from tests.helpers import booking_request


def _today():
    return datetime.now(timezone.utc).date()


async def _book(session_factory, slot_id, agent, name="Kamal Perera"):
    async with session_factory() as s:
        return await appt_service.book_appointment_svc(s, booking_request(slot_id, name=name), agent)


class TestAuditTrail:

    async def test_filter_by_action_and_user(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)
        await _book(session_factory, seed.small_slot.id, seed.other_agent)

        async with session_factory() as s:
            page = await list_audit_logs_svc(s, user_id=seed.agent.id, action="book_appointment")

        assert page.total == 1
        assert page.items[0].action == "BOOK_APPOINTMENT COMMIT"
        assert page.items[0].user_email == "agent@example.com"
        assert page.items[0].user_name == "Agent One"
        assert page.has_next is False

    async def test_rollbacks_are_searchable(self, session_factory, seed):
        await _book(session_factory, seed.small_slot.id, seed.agent)
        async with session_factory() as s:
            with pytest.raises(SlotFullError):
                await appt_service.book_appointment_svc(
                    s, booking_request(seed.small_slot.id, name="Late"), seed.other_agent
                )

        async with session_factory() as s:
            page = await list_audit_logs_svc(s, action="rollback")

        assert [e.action for e in page.items] == ["BOOK_APPOINTMENT ROLLBACK"]
        assert page.items[0].user_id == seed.other_agent.id

    async def test_date_range_is_inclusive(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent)
        today = _today()

        async with session_factory() as s:
            same_day = await list_audit_logs_svc(s, date_from=today, date_to=today)
            later = await list_audit_logs_svc(s, date_from=today + timedelta(days=1))
            earlier = await list_audit_logs_svc(s, date_to=today - timedelta(days=1))

        assert same_day.total == 1
        assert later.total == 0
        assert earlier.total == 0

    async def test_inverted_range(self, session, seed):
        with pytest.raises(ValidationError):
            await list_audit_logs_svc(session, date_from=_today(), date_to=_today() - timedelta(days=1))

    async def test_pagination(self, session_factory, seed):
        await _book(session_factory, seed.slot.id, seed.agent, "First")
        await _book(session_factory, seed.slot.id, seed.agent, "Second")
        await _book(session_factory, seed.small_slot.id, seed.agent, "Third")

        async with session_factory() as s:
            first = await list_audit_logs_svc(s, limit=2, offset=0)
            rest = await list_audit_logs_svc(s, limit=2, offset=2)

        assert first.total == 3
        assert len(first.items) == 2
        assert first.has_next is True
        assert len(rest.items) == 1
        assert rest.has_next is False
