# app/routers/payments.py
from __future__ import annotations

import json
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.db.sql import get_session
from app.dependencies import get_current_user, require_roles
from app.modules.appointments.models import PaymentStatus
from app.modules.users.models import User

from app.modules.payments.gateways import parse_event, verify_signature
from app.modules.payments.schemas import (
    PaymentListPage,
    PaymentPublic,
    PaymentSubmitRequest,
    ReconcileResult,
    RefundRequest,
    WebhookAck,
)
from app.modules.payments.service import (
    apply_gateway_event_svc,
    cancel_payment_svc,
    get_payment_svc,
    list_payments_svc,
    reconcile_stale_payments_svc,
    request_refund_svc,
    retry_payment_svc,
    submit_payment_svc,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.get("/payments", response_model=PaymentListPage)
async def payments_list(
    status_: Optional[PaymentStatus] = Query(None, alias="status"),
    needs_review: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await list_payments_svc(
        session,
        current_user,
        status=status_.value if status_ else None,
        needs_review=needs_review,
        limit=limit,
        offset=offset,
    )


# Declared before /payments/{payment_id} so "reconcile" is not parsed as an id
@router.post(
    "/payments/reconcile",
    response_model=ReconcileResult,
    summary="Flag stale pending payments for manual review",
)
async def payments_reconcile(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin", "supervisor")),
):
    return await reconcile_stale_payments_svc(session, actor=current_user)


@router.get("/payments/{payment_id}", response_model=PaymentPublic)
async def payments_get(
    payment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await get_payment_svc(session, payment_id, current_user)


@router.post("/payments/{payment_id}/submit", response_model=PaymentPublic)
async def payments_submit(
    payment_id: UUID,
    payload: PaymentSubmitRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await submit_payment_svc(session, payment_id, payload, current_user)


@router.post("/payments/{payment_id}/refund", response_model=PaymentPublic)
async def payments_refund(
    payment_id: UUID,
    payload: RefundRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await request_refund_svc(session, payment_id, payload, current_user)


@router.post("/payments/{payment_id}/cancel", response_model=PaymentPublic)
async def payments_cancel(
    payment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await cancel_payment_svc(session, payment_id, current_user)


@router.post("/appointments/{appointment_id}/payments/retry", response_model=PaymentPublic)
async def payments_retry(
    appointment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await retry_payment_svc(session, appointment_id, current_user)


# Gateway callbacks authenticate with an HMAC signature instead of a bearer token
@router.post(
    "/payments/webhooks/{gateway}",
    response_model=WebhookAck,
    summary="Payment gateway callback",
)
async def payments_webhook(
    gateway: str,
    request: Request,
    x_webhook_timestamp: Optional[str] = Header(None),
    x_webhook_signature: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
):
    raw = await request.body()
    verify_signature(raw, x_webhook_timestamp, x_webhook_signature)
    try:
        body = json.loads(raw or b"{}")
    except ValueError:
        raise ValidationError("webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("webhook body must be a JSON object")

    event = parse_event(gateway.lower(), body)
    logger.info("Processing %s webhook: %s", event.gateway, event.event_type)
    return await apply_gateway_event_svc(session, event)
