# app/modules/notifications/service.py
from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.db.transaction import unit_of_work
from app.modules.notifications import repository as repo
from app.modules.notifications.schemas import (
    MarkReadResult,
    NotificationListPage,
    NotificationPublic,
)
from app.modules.users.models import User


async def list_my_notifications_svc(
    session: AsyncSession,
    current_user: User,
    *,
    unread_only: bool,
    limit: int,
    offset: int,
) -> NotificationListPage:
    rows, total, unread = await repo.list_for_user(
        session, current_user.id, unread_only=unread_only, limit=limit, offset=offset
    )
    return NotificationListPage(
        items=[NotificationPublic.model_validate(n) for n in rows],
        total=total,
        unread_count=unread,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )


async def mark_read_svc(
    session: AsyncSession, notification_id: UUID, current_user: User
) -> NotificationPublic:
    async with unit_of_work(session, action="MARK_NOTIFICATION_READ", user_id=current_user.id):
        note = await repo.get_notification(session, notification_id)
        # Other agents' notifications look exactly like missing ones
        if note is None or note.user_id != current_user.id:
            raise NotFoundError("notification_not_found")
        await repo.mark_read(session, notification_id, current_user.id)
        await session.refresh(note)
        result = NotificationPublic.model_validate(note)
    return result


async def mark_all_read_svc(session: AsyncSession, current_user: User) -> MarkReadResult:
    async with unit_of_work(session, action="MARK_ALL_NOTIFICATIONS_READ", user_id=current_user.id) as uow:
        updated = await repo.mark_all_read(session, current_user.id)
        uow.details = f"updated={updated}"
    return MarkReadResult(updated=updated)
