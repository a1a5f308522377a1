# app/modules/audit/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.users.models import AuditLog, User


async def list_audit_logs(
    db: AsyncSession,
    *,
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[Any], int]:
    """
    Newest first. `action` is a case-insensitive substring match, so
    "cancel" finds both CANCEL_APPOINTMENT COMMIT and ROLLBACK rows.
    `until` is exclusive.
    """
    conditions = []
    if user_id is not None:
        conditions.append(AuditLog.user_id == user_id)
    if action:
        conditions.append(func.lower(AuditLog.action).like(f"%{action.strip().lower()}%"))
    if since is not None:
        conditions.append(AuditLog.timestamp >= since)
    if until is not None:
        conditions.append(AuditLog.timestamp < until)

    total = (
        await db.execute(select(func.count()).select_from(AuditLog).where(*conditions))
    ).scalar_one()

    stmt = (
        select(AuditLog, User.email, User.name)
        .outerjoin(User, User.id == AuditLog.user_id)
        .where(*conditions)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id)
        .limit(limit)
        .offset(offset)
    )
    return (await db.execute(stmt)).all(), total
