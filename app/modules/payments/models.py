# app/modules/payments/models.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin
from app.modules.appointments.models import PaymentStatus


class PaymentMethod(PyEnum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"
    MOBILE_PAYMENT = "MOBILE_PAYMENT"


PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PaymentStatus.PENDING.value: frozenset({
        PaymentStatus.COMPLETED.value,
        PaymentStatus.FAILED.value,
        PaymentStatus.CANCELLED.value,
    }),
    PaymentStatus.COMPLETED.value: frozenset({PaymentStatus.REFUNDED.value}),
    PaymentStatus.FAILED.value: frozenset(),
    PaymentStatus.REFUNDED.value: frozenset(),
    PaymentStatus.CANCELLED.value: frozenset(),
}


class Payment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    A payment against one appointment. Created PENDING together with the
    appointment; later moves are driven by gateway callbacks or agents.
    """

    __tablename__ = "payments"

    appointment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("appointments.id", ondelete="RESTRICT"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    transaction_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    gateway: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    gateway_response: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        server_default=PaymentStatus.PENDING.value,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Refund asked for, waiting on the gateway callback that finalizes REFUNDED
    refund_requested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refund_requested_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Stale PENDING payments are flagged for manual review, never expired
    needs_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=false(), default=False
    )
    flagged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_payment_transaction"),
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= amount)",
            name="ck_payment_refund_within_amount",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED', 'REFUNDED', 'CANCELLED')",
            name="ck_payment_status_valid",
        ),
        Index("ix_payment_appointment", "appointment_id"),
        Index("ix_payment_status_created", "status", "created_at"),
    )

    @property
    def refund_pending(self) -> bool:
        return (
            self.refund_requested_at is not None
            and self.status == PaymentStatus.COMPLETED.value
        )
