# app/routers/reports.py
from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.db.sql import get_session
from app.dependencies import get_current_user, require_roles
from app.modules.appointments.models import ApptStatus
from app.modules.users.models import User

from app.modules.reports.schemas import (
    AgentPerformanceRow,
    AppointmentSummary,
    DashboardStats,
    ExportResult,
    SlotUtilizationRow,
)
from app.modules.reports import service as reports

router = APIRouter(tags=["reports"])


def _check_range(date_from: Optional[date], date_to: Optional[date]) -> None:
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")


@router.get("/reports/summary", response_model=AppointmentSummary)
async def reports_summary(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    _check_range(date_from, date_to)
    return await reports.appointment_summary(
        session, current_user, date_from=date_from, date_to=date_to
    )


@router.get("/reports/agents", response_model=List[AgentPerformanceRow])
async def reports_agents(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin", "supervisor")),
):
    _check_range(date_from, date_to)
    return await reports.agent_performance(session, date_from=date_from, date_to=date_to)


@router.get("/reports/slots", response_model=List[SlotUtilizationRow])
async def reports_slots(
    doctor_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin", "supervisor")),
):
    _check_range(date_from, date_to)
    return await reports.slot_utilization(
        session, doctor_id=doctor_id, date_from=date_from, date_to=date_to
    )


@router.get("/reports/dashboard", response_model=DashboardStats)
async def reports_dashboard(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await reports.dashboard_stats(session, current_user)


@router.get("/reports/export", response_model=ExportResult)
async def reports_export(
    status_: Optional[ApptStatus] = Query(None, alias="status"),
    doctor_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    _check_range(date_from, date_to)
    return await reports.export_appointments(
        session,
        current_user,
        status=status_.value if status_ else None,
        doctor_id=doctor_id,
        date_from=date_from,
        date_to=date_to,
    )
