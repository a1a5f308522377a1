# app/db/transaction.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import BookingError, LockTimeoutError
from app.modules.log import write_audit_log
from app.modules.notifications.relay import NotificationRelay, RelayEvent, relay as default_relay

logger = logging.getLogger(__name__)

# lock_not_available, deadlock_detected, serialization_failure
_RETRYABLE_SQLSTATES = {"55P03", "40P01", "40001"}


class UnitOfWork:
    """
    Handle yielded by unit_of_work(). Events queued with emit() reach the
    relay only after the commit succeeded.
    """

    def __init__(self, session: AsyncSession, user_id: UUID | None, action: str):
        self.session = session
        self.user_id = user_id
        self.action = action
        self.details: str | None = None
        self.events: list[RelayEvent] = []

    def emit(self, event: RelayEvent) -> None:
        self.events.append(event)


def translate_db_error(exc: BaseException) -> BookingError | None:
    """Map lock-wait / contention failures from the driver to LockTimeoutError."""
    if not isinstance(exc, DBAPIError):
        return None
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return LockTimeoutError(f"lock_wait_failed:{sqlstate}")
    if "database is locked" in str(orig).lower():
        return LockTimeoutError("lock_wait_failed:sqlite_busy")
    return None


async def _apply_lock_timeout(session: AsyncSession) -> None:
    if session.get_bind().dialect.name == "postgresql":
        # SET does not accept bind parameters; the value is an int from settings
        await session.execute(
            text(f"SET LOCAL lock_timeout = '{int(settings.BOOKING_LOCK_TIMEOUT_MS)}ms'")
        )


async def _log_rollback(session: AsyncSession, uow: UnitOfWork, exc: BaseException) -> None:
    # The audit row goes in its own short transaction; failing to write it
    # must not mask the original error.
    try:
        await write_audit_log(session, uow.user_id, f"{uow.action} ROLLBACK", str(exc))
        await session.commit()
    except Exception as log_err:
        logger.warning("Audit log write failed for %s: %s", uow.action, log_err)
        await session.rollback()


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession,
    *,
    action: str,
    user_id: UUID | None = None,
    relay: NotificationRelay | None = None,
) -> AsyncIterator[UnitOfWork]:
    """
    Unified transaction control: COMMIT on success, ROLLBACK on any error,
    audit row either way, relay dispatch after commit.

    Usage:
        async with unit_of_work(session, action="BOOK_APPOINTMENT", user_id=agent.id) as uow:
            ...
            uow.emit(RelayEvent(...))
    """
    uow = UnitOfWork(session, user_id, action)
    try:
        await _apply_lock_timeout(session)
        yield uow
        await write_audit_log(
            session,
            user_id,
            f"{action} COMMIT",
            uow.details or "Transaction committed successfully",
        )
        await session.commit()
    except Exception as exc:
        await session.rollback()
        translated = translate_db_error(exc)
        failure = translated or exc
        if isinstance(failure, BookingError):
            logger.warning("%s rolled back: %s", action, failure)
        else:
            logger.exception("%s rolled back due to unexpected error", action)
        await _log_rollback(session, uow, failure)
        if translated is not None:
            raise translated from exc
        raise

    target = relay or default_relay
    try:
        target.publish_many(uow.events)
    except Exception:
        logger.exception("Relay dispatch failed after %s; ledger already committed", action)
