# app/modules/payments/repository.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import Select, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.appointments.models import PaymentStatus
from app.modules.payments.models import Payment


async def insert_payment(
    db: AsyncSession,
    *,
    appointment_id: UUID,
    amount: Decimal,
    currency: str,
    payment_method: str,
) -> Payment:
    payment = Payment(
        appointment_id=appointment_id,
        amount=amount,
        currency=currency,
        payment_method=payment_method,
        status=PaymentStatus.PENDING.value,
        needs_review=False,
    )
    db.add(payment)
    await db.flush()
    await db.refresh(payment)
    return payment


async def get_payment(db: AsyncSession, payment_id: UUID, *, for_update: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.id == payment_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_by_transaction_id(db: AsyncSession, transaction_id: str) -> Optional[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.transaction_id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_active_payment(db: AsyncSession, appointment_id: UUID) -> Optional[Payment]:
    """
    The payment the appointment's payment_status mirrors. At most one row
    per appointment is not FAILED; failed rows only count when nothing else
    exists (a retry supersedes them).
    """
    failed_last = case((Payment.status == PaymentStatus.FAILED.value, 1), else_=0)
    stmt = (
        select(Payment)
        .where(Payment.appointment_id == appointment_id)
        .order_by(failed_last, Payment.created_at.desc(), Payment.id.desc())
        .limit(1)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_payments(
    db: AsyncSession,
    *,
    appointment_ids: Optional[Select] = None,
    status: Optional[str] = None,
    needs_review: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[Payment], int]:
    conditions = []
    if appointment_ids is not None:
        conditions.append(Payment.appointment_id.in_(appointment_ids))
    if status is not None:
        conditions.append(Payment.status == status)
    if needs_review is not None:
        conditions.append(Payment.needs_review.is_(needs_review))

    total = (
        await db.execute(select(func.count()).select_from(Payment).where(*conditions))
    ).scalar_one()
    stmt = (
        select(Payment)
        .where(*conditions)
        .order_by(Payment.created_at.desc(), Payment.id)
        .limit(limit)
        .offset(offset)
    )
    return (await db.execute(stmt)).scalars().all(), total


async def list_stale_pending(db: AsyncSession, older_than: datetime) -> Sequence[Payment]:
    stmt = (
        select(Payment)
        .where(
            Payment.status == PaymentStatus.PENDING.value,
            Payment.needs_review.is_(False),
            Payment.created_at < older_than,
        )
        .order_by(Payment.created_at)
        .with_for_update()
    )
    return (await db.execute(stmt)).scalars().all()


async def update_payment_status(
    db: AsyncSession,
    payment_id: UUID,
    *,
    expected_status: str,
    status: str,
    **values,
) -> bool:
    """Compare-and-set on status, same contract as update_appointment_status."""
    stmt = (
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == expected_status)
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return (res.rowcount or 0) == 1  # type: ignore


async def update_payment_fields(db: AsyncSession, payment_id: UUID, **values) -> None:
    """Non-status columns (transaction id, refund request, review flag)."""
    stmt = (
        update(Payment)
        .where(Payment.id == payment_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
