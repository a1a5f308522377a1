# app/modules/audit/service.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.modules.audit import repository as repo
from app.modules.audit.schemas import AuditLogEntry, AuditLogPage


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


async def list_audit_logs_svc(
    session: AsyncSession,
    *,
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 50,
    offset: int = 0,
) -> AuditLogPage:
    """
    Unit-of-work trail (`<ACTION> COMMIT` / `<ACTION> ROLLBACK`) filtered by
    actor, action and UTC day range; both dates are inclusive.
    """
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")

    rows, total = await repo.list_audit_logs(
        session,
        user_id=user_id,
        action=action,
        since=_day_start(date_from) if date_from else None,
        until=_day_start(date_to + timedelta(days=1)) if date_to else None,
        limit=limit,
        offset=offset,
    )
    items = [
        AuditLogEntry(
            id=log.id,
            user_id=log.user_id,
            user_email=email,
            user_name=name,
            action=log.action,
            details=log.details,
            timestamp=log.timestamp,
        )
        for log, email, name in rows
    ]
    return AuditLogPage(
        items=items,
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )
