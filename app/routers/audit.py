# app/routers/audit.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql import get_session
from app.dependencies import require_roles
from app.modules.audit.schemas import AuditLogPage
from app.modules.audit.service import list_audit_logs_svc
from app.modules.users.models import User

router = APIRouter(tags=["audit"])


@router.get("/audit/logs", response_model=AuditLogPage, summary="Search the unit-of-work audit trail")
async def audit_logs(
    user_id: Optional[UUID] = Query(None),
    action: Optional[str] = Query(None, max_length=120),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin", "supervisor")),
):
    return await list_audit_logs_svc(
        session,
        user_id=user_id,
        action=action,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
