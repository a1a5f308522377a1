from __future__ import annotations

from uuid import UUID

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.users.models import AuditLog



async def write_audit_log(
    session: AsyncSession,
    user_id: UUID | None,
    action: str,
    details: str | None = None,
):
    """
    Write an audit log entry.

    action:
        "BOOK_APPOINTMENT COMMIT"
        "CANCEL_APPOINTMENT ROLLBACK"
        "PAYMENT_WEBHOOK COMMIT"

    details: free text, e.g. the appointment number or the error message
    """
    stmt = insert(AuditLog).values(
        user_id=user_id,
        action=action[:120],
        details=details,
    )
    await session.execute(stmt)
