# app/modules/payments/schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.modules.payments.models import PaymentMethod


class PaymentPublic(BaseModel):
    id: UUID
    appointment_id: UUID
    amount: Decimal
    currency: str
    payment_method: str
    transaction_id: Optional[str] = None
    gateway: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    refund_requested_at: Optional[datetime] = None
    refund_requested_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refund_pending: bool
    needs_review: bool
    flagged_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentListPage(BaseModel):
    items: List[PaymentPublic]
    total: int
    limit: int
    offset: int
    has_next: bool


class PaymentSubmitRequest(BaseModel):
    """
    Records the gateway's transaction reference on a pending payment.
    Cash payments need no reference and complete on submit.
    """
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = Field(default=None, min_length=1, max_length=120)
    gateway: Optional[str] = Field(default=None, max_length=30)


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: str = Field(..., min_length=1, max_length=500)


class WebhookAck(BaseModel):
    received: bool = True
    processed: bool
    event_type: str
    outcome: str


class ReconcileResult(BaseModel):
    flagged: int
    payment_ids: List[UUID]
