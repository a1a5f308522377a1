# app/modules/payments/gateways.py
"""
Inbound payment-gateway callbacks: signature check and normalisation of
each gateway's payload shape into a GatewayEvent.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.core.config import settings
from app.core.exceptions import ValidationError, WebhookSignatureError
from app.modules.appointments.models import PaymentStatus

SUPPORTED_GATEWAYS = ("stripe", "paypal", "square", "razorpay", "custom")

# Gateway event name -> payment status it drives
EVENT_TARGETS: dict[str, str] = {
    "payment.succeeded": PaymentStatus.COMPLETED.value,
    "payment_intent.succeeded": PaymentStatus.COMPLETED.value,
    "charge.succeeded": PaymentStatus.COMPLETED.value,
    "payment.failed": PaymentStatus.FAILED.value,
    "payment_intent.payment_failed": PaymentStatus.FAILED.value,
    "charge.failed": PaymentStatus.FAILED.value,
    "payment.refunded": PaymentStatus.REFUNDED.value,
    "charge.refunded": PaymentStatus.REFUNDED.value,
    "refund.created": PaymentStatus.REFUNDED.value,
    "payment.cancelled": PaymentStatus.CANCELLED.value,
    "payment_intent.canceled": PaymentStatus.CANCELLED.value,
}

DISPUTE_EVENTS = frozenset({"payment.dispute", "charge.dispute.created"})

# Gateways that report amounts in minor units
_MINOR_UNIT_GATEWAYS = {"stripe", "razorpay"}


@dataclass
class GatewayEvent:
    gateway: str
    event_type: str
    transaction_id: Optional[str]
    alternate_ids: tuple[str, ...] = ()
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_transaction_id: Optional[str] = None
    dispute_reason: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def target_status(self) -> Optional[str]:
        return EVENT_TARGETS.get(self.event_type)

    @property
    def is_dispute(self) -> bool:
        return self.event_type in DISPUTE_EVENTS

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        """transaction_id first, then any other id the gateway links to it."""
        ids = (self.transaction_id, *self.alternate_ids)
        return tuple(dict.fromkeys(i for i in ids if i))


def sign_payload(raw_body: bytes, timestamp: str, secret: Optional[str] = None) -> str:
    key = (secret or settings.PAYMENT_WEBHOOK_SECRET).encode()
    return hmac.new(key, timestamp.encode() + b"." + raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    *,
    now: Optional[float] = None,
) -> None:
    """
    Raise WebhookSignatureError unless `signature` is the HMAC-SHA256 of
    "<timestamp>.<raw body>" and the timestamp is recent enough.
    """
    if not timestamp or not signature:
        raise WebhookSignatureError("missing_signature_headers")
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("invalid_timestamp")

    current = time.time() if now is None else now
    if abs(current - sent_at) > settings.WEBHOOK_MAX_AGE_SECONDS:
        raise WebhookSignatureError("stale_timestamp")

    expected = sign_payload(raw_body, timestamp)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise WebhookSignatureError("signature_mismatch")


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _money(value: Any, gateway: str) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if gateway in _MINOR_UNIT_GATEWAYS:
        amount = amount / 100
    return amount.quantize(Decimal("0.01"))


def parse_event(gateway: str, body: dict[str, Any]) -> GatewayEvent:
    if gateway not in SUPPORTED_GATEWAYS:
        raise ValidationError(f"unsupported_gateway:{gateway}")

    event_type = body.get("type") or body.get("event_type") or ""
    is_refund = EVENT_TARGETS.get(event_type) == PaymentStatus.REFUNDED.value

    if gateway == "stripe":
        obj = _dig(body, "data", "object") or {}
        # A payment may be recorded under its intent id or its charge id;
        # every id the object links to is offered for the lookup.
        if event_type.startswith("refund."):
            txn = obj.get("charge") or obj.get("payment_intent")
            amount = obj.get("amount")
            refund_id = obj.get("id")
        else:
            txn = obj.get("id") or body.get("id")
            amount = obj.get("amount_refunded") if is_refund else obj.get("amount")
            refunds = _dig(obj, "refunds", "data") or []
            refund_id = refunds[0].get("id") if is_refund and refunds else None
        linked = (obj.get("payment_intent"), obj.get("charge"), obj.get("latest_charge"))
        return GatewayEvent(
            gateway=gateway,
            event_type=event_type,
            transaction_id=txn,
            alternate_ids=tuple(i for i in linked if i and i != txn),
            amount=_money(amount, gateway),
            currency=(obj.get("currency") or "").upper() or None,
            failure_reason=_dig(obj, "last_payment_error", "message"),
            refund_transaction_id=refund_id,
            dispute_reason=obj.get("reason"),
            raw=body,
        )

    if gateway == "paypal":
        resource = body.get("resource") or {}
        txn = resource.get("id")
        if is_refund:
            txn = resource.get("sale_id") or txn
        return GatewayEvent(
            gateway=gateway,
            event_type=event_type,
            transaction_id=txn,
            amount=_money(_dig(resource, "amount", "total"), gateway),
            currency=_dig(resource, "amount", "currency"),
            failure_reason=resource.get("failure_reason"),
            refund_transaction_id=resource.get("id") if is_refund else None,
            dispute_reason=resource.get("reason"),
            raw=body,
        )

    if gateway == "razorpay":
        entity = _dig(body, "payload", "payment", "entity") or {}
        return GatewayEvent(
            gateway=gateway,
            event_type=event_type,
            transaction_id=entity.get("id"),
            amount=_money(entity.get("amount"), gateway),
            currency=entity.get("currency"),
            failure_reason=entity.get("error_description"),
            raw=body,
        )

    # square / custom share the flat layout
    txn = body.get("transaction_id") or body.get("id")
    if is_refund:
        txn = body.get("original_transaction_id") or body.get("transaction_id")
    return GatewayEvent(
        gateway=gateway,
        event_type=event_type,
        transaction_id=txn,
        amount=_money(body.get("refund_amount") if is_refund else body.get("amount"), gateway),
        currency=body.get("currency"),
        failure_reason=body.get("failure_reason"),
        refund_transaction_id=(body.get("refund_transaction_id") or body.get("id")) if is_refund else None,
        dispute_reason=body.get("dispute_reason"),
        raw=body,
    )
