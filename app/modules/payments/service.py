# app/modules/payments/service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InvalidTransitionError,
    LockTimeoutError,
    NotFoundError,
    ValidationError,
)
from app.core.permission import ensure_owner_or_supervisor, is_privileged
from app.db.transaction import UnitOfWork, unit_of_work
from app.modules.appointments import repository as appt_repo
from app.modules.appointments.models import Appointment, ApptStatus, PaymentStatus
from app.modules.notifications import repository as note_repo
from app.modules.notifications.models import NotificationType
from app.modules.notifications.relay import EventType, RelayEvent
from app.modules.payments import repository as repo
from app.modules.payments.gateways import GatewayEvent
from app.modules.payments.models import PAYMENT_TRANSITIONS, Payment, PaymentMethod
from app.modules.payments.schemas import (
    PaymentListPage,
    PaymentPublic,
    PaymentSubmitRequest,
    RefundRequest,
    ReconcileResult,
    WebhookAck,
)
from app.modules.users.models import User

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def check_payment_transition(current: str, target: str) -> None:
    if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        logger.warning("Rejected payment transition %s -> %s", current, target)
        raise InvalidTransitionError("payment", current, target)


async def _load_owned_payment(
    session: AsyncSession, payment_id: UUID, actor: User
) -> tuple[Payment, Appointment]:
    payment = await repo.get_payment(session, payment_id, for_update=True)
    if payment is None:
        raise NotFoundError("payment_not_found")
    appt = await appt_repo.get_appointment(session, payment.appointment_id)
    if appt is None:
        raise NotFoundError("appointment_not_found")
    ensure_owner_or_supervisor(actor, appt.booked_by_id)
    return payment, appt


async def transition_payment(
    session: AsyncSession,
    uow: UnitOfWork,
    payment: Payment,
    target: str,
    **values,
) -> Payment:
    """
    Move `payment` to `target` inside the caller's unit of work, keeping the
    appointment's payment_status in step and queueing the relay event.
    """
    current = payment.status
    check_payment_transition(current, target)

    now = _utcnow()
    if target == PaymentStatus.COMPLETED.value:
        values.setdefault("paid_at", now)
    elif target == PaymentStatus.REFUNDED.value:
        amount = values.get("refund_amount") or payment.refund_requested_amount or payment.amount
        if not (Decimal("0") < Decimal(amount) <= payment.amount):
            raise ValidationError("refund_amount must be > 0 and <= payment amount")
        values["refund_amount"] = amount
        values.setdefault("refunded_at", now)

    moved = await repo.update_payment_status(
        session, payment.id, expected_status=current, status=target, **values
    )
    if not moved:
        raise LockTimeoutError("payment_changed_concurrently")
    await session.refresh(payment)

    await appt_repo.set_payment_status(session, payment.appointment_id, target)
    appt = await appt_repo.get_appointment(session, payment.appointment_id)
    if appt is not None:
        await session.refresh(appt)
        await _notify_payment(session, appt, payment)

    uow.emit(
        RelayEvent(
            type=EventType.PAYMENT_STATUS_CHANGED,
            payload={
                "payment_id": str(payment.id),
                "appointment_id": str(payment.appointment_id),
                "from": current,
                "to": target,
            },
            doctor_id=str(appt.doctor_id) if appt else None,
            date=appt.appointment_date.isoformat() if appt else None,
            appointment_id=str(payment.appointment_id),
        )
    )
    logger.info("Payment %s moved %s -> %s", payment.id, current, target)
    return payment


async def _notify_payment(session: AsyncSession, appt: Appointment, payment: Payment) -> None:
    if payment.status == PaymentStatus.COMPLETED.value:
        kind, title = NotificationType.PAYMENT_SUCCESS, "Payment received"
        message = f"Payment of {payment.amount} {payment.currency} for {appt.appointment_number} completed."
    elif payment.status == PaymentStatus.FAILED.value:
        kind, title = NotificationType.PAYMENT_FAILED, "Payment failed"
        message = f"Payment for {appt.appointment_number} failed: {payment.failure_reason or 'no reason given'}."
    elif payment.status == PaymentStatus.REFUNDED.value:
        kind, title = NotificationType.SYSTEM_ALERT, "Refund processed"
        message = f"Refund of {payment.refund_amount} {payment.currency} for {appt.appointment_number} processed."
    else:
        return
    await note_repo.add_notification(
        session,
        user_id=appt.booked_by_id,
        type=kind,
        title=title,
        message=message,
        data={"appointment_id": str(appt.id), "payment_id": str(payment.id)},
    )


async def mark_refund(
    session: AsyncSession,
    uow: UnitOfWork,
    payment: Payment,
    *,
    reason: str,
    amount: Optional[Decimal] = None,
) -> Payment:
    """
    Refund a COMPLETED payment. Cash is handed back at the counter, so it is
    REFUNDED at once; everything else records a refund request that the
    gateway's refund callback finalizes.
    """
    check_payment_transition(payment.status, PaymentStatus.REFUNDED.value)
    if payment.refund_pending:
        raise ValidationError("refund_already_requested")

    amount = payment.amount if amount is None else amount
    if not (Decimal("0") < amount <= payment.amount):
        raise ValidationError("refund_amount must be > 0 and <= payment amount")

    if payment.payment_method == PaymentMethod.CASH.value:
        return await transition_payment(
            session, uow, payment, PaymentStatus.REFUNDED.value,
            refund_amount=amount, refund_reason=reason,
        )

    await repo.update_payment_fields(
        session,
        payment.id,
        refund_requested_at=_utcnow(),
        refund_requested_amount=amount,
        refund_reason=reason,
    )
    await session.refresh(payment)
    logger.info("Refund of %s requested for payment %s", amount, payment.id)
    return payment


async def get_payment_svc(session: AsyncSession, payment_id: UUID, actor: User) -> PaymentPublic:
    payment = await repo.get_payment(session, payment_id)
    if payment is None:
        raise NotFoundError("payment_not_found")
    appt = await appt_repo.get_appointment(session, payment.appointment_id)
    ensure_owner_or_supervisor(actor, appt.booked_by_id if appt else None)
    return PaymentPublic.model_validate(payment)


async def list_payments_svc(
    session: AsyncSession,
    actor: User,
    *,
    status: Optional[str] = None,
    needs_review: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> PaymentListPage:
    own = None
    if not is_privileged(actor):
        own = select(Appointment.id).where(Appointment.booked_by_id == actor.id)
    rows, total = await repo.list_payments(
        session,
        appointment_ids=own,
        status=status,
        needs_review=needs_review,
        limit=limit,
        offset=offset,
    )
    return PaymentListPage(
        items=[PaymentPublic.model_validate(p) for p in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )


async def submit_payment_svc(
    session: AsyncSession, payment_id: UUID, payload: PaymentSubmitRequest, actor: User
) -> PaymentPublic:
    async with unit_of_work(session, action="SUBMIT_PAYMENT", user_id=actor.id) as uow:
        payment, appt = await _load_owned_payment(session, payment_id, actor)
        if payment.status != PaymentStatus.PENDING.value:
            raise InvalidTransitionError("payment", payment.status, "SUBMITTED")
        if appt.status != ApptStatus.CONFIRMED.value:
            raise ValidationError("appointment_not_confirmed")

        method = payload.payment_method.value if payload.payment_method else payment.payment_method
        if method != PaymentMethod.CASH.value and not payload.transaction_id:
            raise ValidationError("transaction_id is required for non-cash payments")

        await repo.update_payment_fields(
            session,
            payment.id,
            payment_method=method,
            transaction_id=payload.transaction_id,
            gateway=payload.gateway,
        )
        await session.refresh(payment)

        if method == PaymentMethod.CASH.value:
            await transition_payment(session, uow, payment, PaymentStatus.COMPLETED.value)
        uow.details = f"payment={payment.id} method={method}"
        result = PaymentPublic.model_validate(payment)
    return result


async def apply_gateway_event_svc(session: AsyncSession, event: GatewayEvent) -> WebhookAck:
    """
    Apply one verified gateway callback. Never raises for unknown payments,
    unknown events, replays or late events: the gateway only needs an ack,
    and anything odd is logged (and flagged for review where it matters).
    """
    if not event.transaction_id:
        logger.warning("%s webhook %s carried no transaction id", event.gateway, event.event_type)
        return WebhookAck(processed=False, event_type=event.event_type, outcome="missing_transaction_id")

    target = event.target_status
    if target is None and not event.is_dispute:
        logger.info("Ignoring unhandled %s webhook event %s", event.gateway, event.event_type)
        return WebhookAck(processed=False, event_type=event.event_type, outcome="ignored")

    async with unit_of_work(session, action="PAYMENT_WEBHOOK") as uow:
        uow.details = f"{event.gateway}:{event.event_type}:{event.transaction_id}"
        payment = None
        for candidate in event.candidate_ids:
            payment = await repo.get_by_transaction_id(session, candidate)
            if payment is not None:
                break
        if payment is None:
            logger.warning(
                "%s webhook %s for unknown transaction %s",
                event.gateway, event.event_type, event.transaction_id,
            )
            outcome = "unknown_payment"
        else:
            outcome = await _apply_to_payment(session, uow, payment, event)
        processed = outcome in ("applied", "dispute_flagged")
    return WebhookAck(processed=processed, event_type=event.event_type, outcome=outcome)


async def _apply_to_payment(
    session: AsyncSession, uow: UnitOfWork, payment: Payment, event: GatewayEvent
) -> str:
    response = dict(payment.gateway_response or {})
    now = _utcnow()

    if event.is_dispute:
        response["dispute"] = {
            "gateway": event.gateway,
            "reason": event.dispute_reason or "Dispute raised",
            "processed_at": now.isoformat(),
        }
        await repo.update_payment_fields(
            session, payment.id, gateway_response=response, needs_review=True, flagged_at=now
        )
        logger.warning("Dispute raised on payment %s via %s", payment.id, event.gateway)
        return "dispute_flagged"

    target = event.target_status
    if payment.status == target:
        logger.info("Duplicate %s webhook for payment %s ignored", event.event_type, payment.id)
        return "duplicate"

    if target not in PAYMENT_TRANSITIONS.get(payment.status, frozenset()):
        # e.g. a success callback for a payment the agent already cancelled
        logger.warning(
            "Webhook %s cannot move payment %s from %s; flagged for review",
            event.event_type, payment.id, payment.status,
        )
        await repo.update_payment_fields(session, payment.id, needs_review=True, flagged_at=now)
        return "invalid_transition"

    response["webhook"] = {
        "gateway": event.gateway,
        "event_type": event.event_type,
        "amount": str(event.amount) if event.amount is not None else None,
        "currency": event.currency,
        "refund_transaction_id": event.refund_transaction_id,
        "processed_at": now.isoformat(),
    }
    values: dict = {"gateway_response": response, "gateway": payment.gateway or event.gateway}
    if target == PaymentStatus.FAILED.value:
        values["failure_reason"] = event.failure_reason or "Payment failed"
    elif target == PaymentStatus.REFUNDED.value:
        refund = event.amount or payment.refund_requested_amount or payment.amount
        if not (Decimal("0") < refund <= payment.amount):
            logger.warning(
                "Refund webhook for payment %s carries amount %s outside (0, %s]; flagged for review",
                payment.id, refund, payment.amount,
            )
            await repo.update_payment_fields(session, payment.id, needs_review=True, flagged_at=now)
            return "invalid_amount"
        values["refund_amount"] = refund

    await transition_payment(session, uow, payment, target, **values)
    return "applied"


async def request_refund_svc(
    session: AsyncSession, payment_id: UUID, payload: RefundRequest, actor: User
) -> PaymentPublic:
    async with unit_of_work(session, action="REQUEST_REFUND", user_id=actor.id) as uow:
        payment, _ = await _load_owned_payment(session, payment_id, actor)
        await mark_refund(session, uow, payment, reason=payload.reason, amount=payload.amount)
        uow.details = f"payment={payment.id}"
        result = PaymentPublic.model_validate(payment)
    return result


async def cancel_payment_svc(session: AsyncSession, payment_id: UUID, actor: User) -> PaymentPublic:
    async with unit_of_work(session, action="CANCEL_PAYMENT", user_id=actor.id) as uow:
        payment, _ = await _load_owned_payment(session, payment_id, actor)
        await transition_payment(session, uow, payment, PaymentStatus.CANCELLED.value)
        uow.details = f"payment={payment.id}"
        result = PaymentPublic.model_validate(payment)
    return result


async def retry_payment_svc(session: AsyncSession, appointment_id: UUID, actor: User) -> PaymentPublic:
    """New PENDING payment for a CONFIRMED appointment whose payment FAILED."""
    async with unit_of_work(session, action="RETRY_PAYMENT", user_id=actor.id) as uow:
        appt = await appt_repo.get_appointment(session, appointment_id, for_update=True)
        if appt is None:
            raise NotFoundError("appointment_not_found")
        ensure_owner_or_supervisor(actor, appt.booked_by_id)
        if appt.status != ApptStatus.CONFIRMED.value:
            raise ValidationError("appointment_not_confirmed")

        active = await repo.get_active_payment(session, appt.id)
        if active is None or active.status != PaymentStatus.FAILED.value:
            raise InvalidTransitionError(
                "payment", active.status if active else "NONE", "RETRY"
            )

        payment = await repo.insert_payment(
            session,
            appointment_id=appt.id,
            amount=appt.total_amount,
            currency=active.currency,
            payment_method=active.payment_method,
        )
        await appt_repo.set_payment_status(session, appt.id, PaymentStatus.PENDING.value)
        uow.emit(
            RelayEvent(
                type=EventType.PAYMENT_STATUS_CHANGED,
                payload={
                    "payment_id": str(payment.id),
                    "appointment_id": str(appt.id),
                    "from": PaymentStatus.FAILED.value,
                    "to": PaymentStatus.PENDING.value,
                },
                doctor_id=str(appt.doctor_id),
                date=appt.appointment_date.isoformat(),
                appointment_id=str(appt.id),
            )
        )
        uow.details = f"appointment={appt.id} payment={payment.id}"
        result = PaymentPublic.model_validate(payment)
    return result


async def reconcile_stale_payments_svc(
    session: AsyncSession,
    *,
    now: Optional[datetime] = None,
    actor: Optional[User] = None,
) -> ReconcileResult:
    """
    Flag PENDING payments older than PAYMENT_STALE_AFTER_MINUTES for manual
    review and alert the booking agent. Nothing is expired automatically.
    """
    now = (now or _utcnow()).astimezone(timezone.utc)
    cutoff = now - timedelta(minutes=settings.PAYMENT_STALE_AFTER_MINUTES)
    flagged: list[UUID] = []

    async with unit_of_work(
        session, action="RECONCILE_PAYMENTS", user_id=actor.id if actor else None
    ) as uow:
        stale = await repo.list_stale_pending(session, cutoff)
        for payment in stale:
            await repo.update_payment_fields(session, payment.id, needs_review=True, flagged_at=now)
            appt = await appt_repo.get_appointment(session, payment.appointment_id)
            if appt is not None:
                await note_repo.add_notification(
                    session,
                    user_id=appt.booked_by_id,
                    type=NotificationType.SYSTEM_ALERT,
                    title="Payment needs review",
                    message=f"Payment for {appt.appointment_number} has been pending since {payment.created_at:%Y-%m-%d %H:%M}.",
                    data={"appointment_id": str(appt.id), "payment_id": str(payment.id)},
                )
            flagged.append(payment.id)
        uow.details = f"flagged={len(flagged)}"

    if flagged:
        logger.warning("Flagged %d stale pending payment(s) for review", len(flagged))
    return ReconcileResult(flagged=len(flagged), payment_ids=flagged)
