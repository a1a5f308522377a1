# app/core/exceptions.py
from __future__ import annotations


class BookingError(Exception):
    """
    Base class for ledger / booking errors. Routers let these propagate;
    app.main maps them to HTTP responses.
    """

    status_code: int = 400
    code: str = "booking_error"
    retryable: bool = False
    user_message: str | None = None

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class SlotFullError(BookingError):
    """Capacity exhausted. The caller has to pick a different slot."""

    status_code = 409
    code = "slot_full"
    user_message = "This slot just filled, please choose another."


class LockTimeoutError(BookingError):
    """Contention on the slot row. Safe to retry."""

    status_code = 503
    code = "slot_busy"
    retryable = True
    user_message = "The slot is busy, please retry."


class InvalidTransitionError(BookingError):
    """Illegal appointment / payment state-machine move."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class ValidationError(BookingError):
    """Malformed patient / payment / slot input, rejected before any write."""

    status_code = 422
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class SlotConflictError(BookingError):
    """A slot overlapping the requested time range already exists."""

    status_code = 409
    code = "slot_conflict"


class AccessDeniedError(BookingError):
    status_code = 403
    code = "forbidden"


class LedgerInvariantError(BookingError):
    """
    A mutation would break a ledger invariant (e.g. current_bookings < 0).
    The mutation is rejected, never clamped.
    """

    status_code = 500
    code = "ledger_invariant_violation"


class WebhookSignatureError(BookingError):
    status_code = 401
    code = "invalid_webhook_signature"


__all__ = [
    "BookingError",
    "SlotFullError",
    "LockTimeoutError",
    "InvalidTransitionError",
    "ValidationError",
    "NotFoundError",
    "SlotConflictError",
    "AccessDeniedError",
    "LedgerInvariantError",
    "WebhookSignatureError",
]
