from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.exceptions import InvalidTransitionError, ValidationError
from app.modules.appointments import service as appt_service
from app.modules.appointments.models import Appointment, ApptStatus, PaymentStatus
from app.modules.notifications.models import Notification, NotificationType
from app.modules.payments import service as pay_service
from app.modules.payments.gateways import GatewayEvent, parse_event
from app.modules.payments.models import PAYMENT_TRANSITIONS, Payment, PaymentMethod
from app.modules.payments.schemas import PaymentSubmitRequest, RefundRequest

from tests.helpers import booking_request


async def _book(session_factory, seed, **kwargs):
    async with session_factory() as s:
        return await appt_service.book_appointment_svc(s, booking_request(seed.slot.id, **kwargs), seed.agent)


async def _submit(session_factory, seed, payment_id, **kwargs):
    async with session_factory() as s:
        return await pay_service.submit_payment_svc(s, payment_id, PaymentSubmitRequest(**kwargs), seed.agent)


async def _event(session_factory, **kwargs):
    kwargs.setdefault("gateway", "stripe")
    async with session_factory() as s:
        return await pay_service.apply_gateway_event_svc(s, GatewayEvent(**kwargs))


async def _payment(session_factory, payment_id) -> Payment:
    async with session_factory() as s:
        return await s.get(Payment, payment_id)


async def _appointment(session_factory, appointment_id) -> Appointment:
    async with session_factory() as s:
        return await s.get(Appointment, appointment_id)


async def _paid_by_card(session_factory, seed, txn="pi_123"):
    booked = await _book(session_factory, seed)
    await _submit(session_factory, seed, booked.payment_id, transaction_id=txn, gateway="stripe")
    ack = await _event(session_factory, event_type="payment_intent.succeeded", transaction_id=txn)
    assert ack.outcome == "applied"
    return booked


class TestStateMachine:

    def test_transitions_are_closed(self):
        """Every target is itself a known status, and only PENDING/COMPLETED can move."""
        statuses = {s.value for s in PaymentStatus}
        assert set(PAYMENT_TRANSITIONS) == statuses
        for current, targets in PAYMENT_TRANSITIONS.items():
            assert targets <= statuses
            assert current not in targets
        movable = {s for s, targets in PAYMENT_TRANSITIONS.items() if targets}
        assert movable == {PaymentStatus.PENDING.value, PaymentStatus.COMPLETED.value}

    def test_refund_only_from_completed(self):
        with pytest.raises(InvalidTransitionError):
            pay_service.check_payment_transition(PaymentStatus.PENDING.value, PaymentStatus.REFUNDED.value)
        pay_service.check_payment_transition(PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value)


class TestSubmit:

    async def test_cash_completes_immediately(self, session_factory, seed):
        booked = await _book(session_factory, seed, payment_method=PaymentMethod.CASH)

        payment = await _submit(session_factory, seed, booked.payment_id)

        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.paid_at is not None
        appt = await _appointment(session_factory, booked.appointment.id)
        assert appt.payment_status == PaymentStatus.COMPLETED.value

        async with session_factory() as s:
            kinds = (await s.execute(
                select(Notification.type).where(Notification.user_id == seed.agent.id)
            )).scalars().all()
        assert NotificationType.PAYMENT_SUCCESS.value in kinds

    async def test_card_needs_transaction_id(self, session_factory, seed):
        booked = await _book(session_factory, seed)

        with pytest.raises(ValidationError):
            await _submit(session_factory, seed, booked.payment_id)

    async def test_card_stays_pending_until_callback(self, session_factory, seed):
        booked = await _book(session_factory, seed)

        payment = await _submit(session_factory, seed, booked.payment_id, transaction_id="pi_777", gateway="stripe")

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.transaction_id == "pi_777"


class TestGatewayEvents:

    async def test_success_then_replay(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)

        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.gateway_response["webhook"]["event_type"] == "payment_intent.succeeded"

        ack = await _event(session_factory, event_type="payment_intent.succeeded", transaction_id="pi_123")
        assert ack.outcome == "duplicate"
        assert ack.processed is False

    async def test_unknown_transaction_is_acknowledged(self, session_factory, seed):
        ack = await _event(session_factory, event_type="payment.succeeded", transaction_id="pi_missing")

        assert ack.received is True
        assert ack.outcome == "unknown_payment"

    async def test_unhandled_event_is_ignored(self, session_factory, seed):
        ack = await _event(session_factory, event_type="customer.created", transaction_id="cus_1")

        assert ack.outcome == "ignored"

    async def test_success_after_cancel_is_flagged(self, session_factory, seed):
        booked = await _book(session_factory, seed)
        await _submit(session_factory, seed, booked.payment_id, transaction_id="pi_late", gateway="stripe")
        async with session_factory() as s:
            await appt_service.cancel_appointment_svc(s, booked.appointment.id, "changed plans", seed.agent)

        ack = await _event(session_factory, event_type="payment_intent.succeeded", transaction_id="pi_late")

        assert ack.outcome == "invalid_transition"
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.CANCELLED.value
        assert payment.needs_review is True

    async def test_failure_records_reason(self, session_factory, seed):
        booked = await _book(session_factory, seed)
        await _submit(session_factory, seed, booked.payment_id, transaction_id="pi_fail", gateway="stripe")

        ack = await _event(
            session_factory,
            event_type="payment_intent.payment_failed",
            transaction_id="pi_fail",
            failure_reason="card_declined",
        )

        assert ack.outcome == "applied"
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "card_declined"
        appt = await _appointment(session_factory, booked.appointment.id)
        assert appt.status == ApptStatus.CONFIRMED.value
        assert appt.payment_status == PaymentStatus.FAILED.value

    async def test_dispute_flags_without_moving(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed, txn="pi_disputed")

        ack = await _event(
            session_factory,
            event_type="charge.dispute.created",
            transaction_id="pi_disputed",
            dispute_reason="fraudulent",
        )

        assert ack.outcome == "dispute_flagged"
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.needs_review is True
        assert payment.gateway_response["dispute"]["reason"] == "fraudulent"


class TestRefunds:

    async def test_cancel_paid_card_booking_requests_refund(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)

        async with session_factory() as s:
            cancelled = await appt_service.cancel_appointment_svc(s, booked.appointment.id, "Doctor on leave", seed.agent)

        assert cancelled.status == ApptStatus.CANCELLED.value
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.refund_pending is True
        assert payment.refund_requested_amount == payment.amount
        assert payment.refund_reason == "Doctor on leave"

        ack = await _event(session_factory, event_type="charge.refunded", transaction_id="pi_123")

        assert ack.outcome == "applied"
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount == payment.amount
        assert payment.refunded_at is not None
        appt = await _appointment(session_factory, booked.appointment.id)
        assert appt.payment_status == PaymentStatus.REFUNDED.value

    async def test_cancel_paid_cash_booking_refunds_at_once(self, session_factory, seed):
        booked = await _book(session_factory, seed, payment_method=PaymentMethod.CASH)
        await _submit(session_factory, seed, booked.payment_id)

        async with session_factory() as s:
            await appt_service.cancel_appointment_svc(s, booked.appointment.id, "Walk-in cancelled", seed.agent)

        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount == payment.amount

    async def test_partial_refund_request(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)

        async with session_factory() as s:
            payment = await pay_service.request_refund_svc(
                s, booked.payment_id, RefundRequest(amount=Decimal("1000.00"), reason="Partial"), seed.agent
            )
        assert payment.refund_requested_amount == Decimal("1000.00")

        await _event(session_factory, event_type="charge.refunded", transaction_id="pi_123")
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.refund_amount == Decimal("1000.00")

    async def test_stripe_charge_refund_finds_intent_payment(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)
        event = parse_event("stripe", {
            "type": "charge.refunded",
            "data": {"object": {
                "id": "ch_77",
                "payment_intent": "pi_123",
                "amount": 250000,
                "amount_refunded": 100000,
                "refunds": {"data": [{"id": "re_77"}]},
            }},
        })

        async with session_factory() as s:
            ack = await pay_service.apply_gateway_event_svc(s, event)

        assert ack.outcome == "applied"
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount == Decimal("1000.00")

    async def test_refund_cannot_exceed_amount(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)

        async with session_factory() as s:
            with pytest.raises(ValidationError):
                await pay_service.request_refund_svc(
                    s, booked.payment_id, RefundRequest(amount=Decimal("99999.00"), reason="Too much"), seed.agent
                )

    async def test_second_refund_request_rejected(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)
        async with session_factory() as s:
            await pay_service.request_refund_svc(s, booked.payment_id, RefundRequest(reason="first"), seed.agent)

        async with session_factory() as s:
            with pytest.raises(ValidationError):
                await pay_service.request_refund_svc(s, booked.payment_id, RefundRequest(reason="again"), seed.agent)

    async def test_refund_of_pending_payment_rejected(self, session_factory, seed):
        booked = await _book(session_factory, seed)

        async with session_factory() as s:
            with pytest.raises(InvalidTransitionError):
                await pay_service.request_refund_svc(s, booked.payment_id, RefundRequest(reason="nope"), seed.agent)

    async def test_refunded_is_terminal(self, session_factory, seed):
        booked = await _book(session_factory, seed, payment_method=PaymentMethod.CASH)
        await _submit(session_factory, seed, booked.payment_id)
        async with session_factory() as s:
            await pay_service.request_refund_svc(s, booked.payment_id, RefundRequest(reason="cash back"), seed.agent)

        async with session_factory() as s:
            with pytest.raises(InvalidTransitionError):
                await pay_service.cancel_payment_svc(s, booked.payment_id, seed.agent)

    async def test_oversized_refund_callback_is_flagged(self, session_factory, seed):
        booked = await _paid_by_card(session_factory, seed)

        ack = await _event(
            session_factory,
            event_type="charge.refunded",
            transaction_id="pi_123",
            amount=Decimal("99999.00"),
        )

        assert ack.outcome == "invalid_amount"
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.needs_review is True


class TestRetryAndReconcile:

    async def test_agent_cancels_pending_payment(self, session_factory, seed):
        booked = await _book(session_factory, seed)

        async with session_factory() as s:
            cancelled = await pay_service.cancel_payment_svc(s, booked.payment_id, seed.agent)

        assert cancelled.status == PaymentStatus.CANCELLED.value
        appt = await _appointment(session_factory, booked.appointment.id)
        assert appt.status == ApptStatus.CONFIRMED.value
        assert appt.payment_status == PaymentStatus.CANCELLED.value

        async with session_factory() as s:
            with pytest.raises(InvalidTransitionError):
                await pay_service.cancel_payment_svc(s, booked.payment_id, seed.agent)

    async def test_retry_after_failure(self, session_factory, seed):
        booked = await _book(session_factory, seed)
        await _submit(session_factory, seed, booked.payment_id, transaction_id="pi_declined", gateway="stripe")
        await _event(session_factory, event_type="payment.failed", transaction_id="pi_declined")

        async with session_factory() as s:
            retry = await pay_service.retry_payment_svc(s, booked.appointment.id, seed.agent)

        assert retry.id != booked.payment_id
        assert retry.status == PaymentStatus.PENDING.value
        assert retry.amount == booked.amount
        appt = await _appointment(session_factory, booked.appointment.id)
        assert appt.payment_status == PaymentStatus.PENDING.value

        # the fresh payment is the one cancellation settles
        async with session_factory() as s:
            await appt_service.cancel_appointment_svc(s, booked.appointment.id, "gave up", seed.agent)
        assert (await _payment(session_factory, retry.id)).status == PaymentStatus.CANCELLED.value
        assert (await _payment(session_factory, booked.payment_id)).status == PaymentStatus.FAILED.value

    async def test_retry_needs_failed_payment(self, session_factory, seed):
        booked = await _book(session_factory, seed)

        async with session_factory() as s:
            with pytest.raises(InvalidTransitionError):
                await pay_service.retry_payment_svc(s, booked.appointment.id, seed.agent)

    async def test_stale_pending_payments_are_flagged(self, session_factory, seed):
        booked = await _book(session_factory, seed)
        later = datetime.now(timezone.utc) + timedelta(days=1)

        async with session_factory() as s:
            result = await pay_service.reconcile_stale_payments_svc(s, now=later, actor=seed.admin)

        assert result.flagged == 1
        assert result.payment_ids == [booked.payment_id]
        payment = await _payment(session_factory, booked.payment_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.needs_review is True

        # already-flagged rows are not flagged twice
        async with session_factory() as s:
            again = await pay_service.reconcile_stale_payments_svc(s, now=later)
        assert again.flagged == 0

    async def test_fresh_pending_payments_left_alone(self, session_factory, seed):
        await _book(session_factory, seed)

        async with session_factory() as s:
            result = await pay_service.reconcile_stale_payments_svc(s)

        assert result.flagged == 0

    async def test_stale_window_is_offset_independent(self, session_factory, seed):
        booked = await _book(session_factory, seed)
        colombo = timezone(timedelta(hours=5, minutes=30))
        now_local = datetime.now(colombo)

        async with session_factory() as s:
            fresh = await pay_service.reconcile_stale_payments_svc(s, now=now_local)
        assert fresh.flagged == 0

        later = now_local + timedelta(minutes=settings.PAYMENT_STALE_AFTER_MINUTES + 5)
        async with session_factory() as s:
            stale = await pay_service.reconcile_stale_payments_svc(s, now=later)
        assert stale.payment_ids == [booked.payment_id]

    def test_ledger_timestamps_carry_time_zone(self):
        for column in (Payment.created_at, Appointment.created_at, Notification.created_at):
            assert column.type.timezone is True
