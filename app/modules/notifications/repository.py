# app/modules/notifications/repository.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.notifications.models import Notification, NotificationType


def _utcnow():
    return datetime.now(timezone.utc)


async def add_notification(
    db: AsyncSession,
    *,
    user_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict[str, Any]] = None,
) -> Notification:
    note = Notification(
        user_id=user_id,
        type=type.value,
        title=title,
        message=message,
        data=data,
        is_read=False,
    )
    db.add(note)
    await db.flush()
    return note


async def list_for_user(
    db: AsyncSession,
    user_id: UUID,
    *,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[Notification], int, int]:
    """Returns (page, total, unread_count)."""
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.is_read.is_(False))

    total = (
        await db.execute(select(func.count()).select_from(Notification).where(*conditions))
    ).scalar_one()
    unread = (
        await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
    ).scalar_one()
    stmt = (
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id)
        .limit(limit)
        .offset(offset)
    )
    return (await db.execute(stmt)).scalars().all(), total, unread


async def get_notification(db: AsyncSession, notification_id: UUID) -> Optional[Notification]:
    return await db.get(Notification, notification_id)


async def mark_read(db: AsyncSession, notification_id: UUID, user_id: UUID) -> int:
    stmt = (
        update(Notification)
        .where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True, read_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount or 0  # type: ignore


async def mark_all_read(db: AsyncSession, user_id: UUID) -> int:
    stmt = (
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount or 0  # type: ignore
