# app/modules/reports/service.py
"""
Read-only aggregates over the ledgers. Nothing here takes locks or writes.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permission import is_privileged
from app.modules.appointments import repository as appt_repo
from app.modules.appointments.models import Appointment, ApptStatus, PaymentStatus
from app.modules.notifications.models import Notification
from app.modules.payments.models import Payment
from app.modules.reports.schemas import (
    AgentPerformanceRow,
    AppointmentSummary,
    DashboardStats,
    ExportResult,
    ExportRow,
    SlotUtilizationRow,
)
from app.modules.time_slots.models import TimeSlot
from app.modules.users.models import User

logger = logging.getLogger(__name__)

EXPORT_MAX_ROWS = 5000


def _date_conditions(date_from: Optional[date], date_to: Optional[date]) -> list:
    conds = []
    if date_from is not None:
        conds.append(Appointment.appointment_date >= date_from)
    if date_to is not None:
        conds.append(Appointment.appointment_date <= date_to)
    return conds


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


async def appointment_summary(
    session: AsyncSession,
    actor: User,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> AppointmentSummary:
    conds = _date_conditions(date_from, date_to)
    if not is_privileged(actor):
        conds.append(Appointment.booked_by_id == actor.id)

    by_status = dict(
        (await session.execute(
            select(Appointment.status, func.count()).where(*conds).group_by(Appointment.status)
        )).all()
    )
    by_payment = dict(
        (await session.execute(
            select(Appointment.payment_status, func.count())
            .where(*conds)
            .group_by(Appointment.payment_status)
        )).all()
    )

    money_stmt = (
        select(
            func.sum(case((Payment.status == PaymentStatus.COMPLETED.value, Payment.amount), else_=0)),
            func.sum(case((Payment.status == PaymentStatus.REFUNDED.value, Payment.refund_amount), else_=0)),
        )
        .select_from(Payment)
        .join(Appointment, Appointment.id == Payment.appointment_id)
        .where(*conds)
    )
    revenue, refunded = (await session.execute(money_stmt)).one()

    return AppointmentSummary(
        date_from=date_from,
        date_to=date_to,
        total_appointments=sum(by_status.values()),
        by_status={s.value: by_status.get(s.value, 0) for s in ApptStatus},
        by_payment_status={s.value: by_payment.get(s.value, 0) for s in PaymentStatus},
        revenue=_money(revenue),
        refunded=_money(refunded),
    )


async def agent_performance(
    session: AsyncSession,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[AgentPerformanceRow]:
    conds = _date_conditions(date_from, date_to)

    counts = (
        select(
            Appointment.booked_by_id.label("agent_id"),
            func.count().label("bookings"),
            func.sum(case((Appointment.status == ApptStatus.CANCELLED.value, 1), else_=0)).label("cancellations"),
            func.sum(case((Appointment.status == ApptStatus.COMPLETED.value, 1), else_=0)).label("completed"),
        )
        .where(*conds)
        .group_by(Appointment.booked_by_id)
        .subquery()
    )
    revenue = (
        select(
            Appointment.booked_by_id.label("agent_id"),
            func.sum(Payment.amount).label("revenue"),
        )
        .join(Payment, Payment.appointment_id == Appointment.id)
        .where(Payment.status == PaymentStatus.COMPLETED.value, *conds)
        .group_by(Appointment.booked_by_id)
        .subquery()
    )
    stmt = (
        select(
            User.id,
            User.name,
            User.company_name,
            counts.c.bookings,
            counts.c.cancellations,
            counts.c.completed,
            revenue.c.revenue,
        )
        .join(counts, counts.c.agent_id == User.id)
        .outerjoin(revenue, revenue.c.agent_id == User.id)
        .order_by(counts.c.bookings.desc(), User.name)
    )
    rows = (await session.execute(stmt)).all()
    return [
        AgentPerformanceRow(
            agent_id=r[0],
            agent_name=r[1],
            company_name=r[2],
            bookings=r[3],
            cancellations=int(r[4] or 0),
            completed=int(r[5] or 0),
            revenue=_money(r[6]),
        )
        for r in rows
    ]


async def slot_utilization(
    session: AsyncSession,
    *,
    doctor_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[SlotUtilizationRow]:
    conds = []
    if doctor_id is not None:
        conds.append(TimeSlot.doctor_id == doctor_id)
    if date_from is not None:
        conds.append(TimeSlot.date >= date_from)
    if date_to is not None:
        conds.append(TimeSlot.date <= date_to)
    stmt = select(TimeSlot).where(*conds).order_by(TimeSlot.date, TimeSlot.start_time, TimeSlot.id)
    slots = (await session.execute(stmt)).scalars().all()
    return [
        SlotUtilizationRow(
            time_slot_id=s.id,
            doctor_id=s.doctor_id,
            date=s.date,
            start_time=s.start_time,
            end_time=s.end_time,
            current_bookings=s.current_bookings,
            max_appointments=s.max_appointments,
            utilization=round(s.current_bookings / s.max_appointments, 4),
            is_active=s.is_active,
        )
        for s in slots
    ]


async def dashboard_stats(
    session: AsyncSession, agent: User, *, today: Optional[date] = None
) -> DashboardStats:
    today = today or datetime.now(timezone.utc).date()
    day_start = datetime.combine(today, time.min, tzinfo=timezone.utc)
    month_start = datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc)
    mine = Appointment.booked_by_id == agent.id

    today_bookings = (await session.execute(
        select(func.count()).select_from(Appointment).where(mine, Appointment.created_at >= day_start)
    )).scalar_one()
    upcoming = (await session.execute(
        select(func.count()).select_from(Appointment).where(
            mine,
            Appointment.status == ApptStatus.CONFIRMED.value,
            Appointment.appointment_date >= today,
        )
    )).scalar_one()
    pending = (await session.execute(
        select(func.count())
        .select_from(Payment)
        .join(Appointment, Appointment.id == Payment.appointment_id)
        .where(mine, Payment.status == PaymentStatus.PENDING.value)
    )).scalar_one()
    month_revenue = (await session.execute(
        select(func.sum(Payment.amount))
        .select_from(Payment)
        .join(Appointment, Appointment.id == Payment.appointment_id)
        .where(
            mine,
            Payment.status == PaymentStatus.COMPLETED.value,
            Payment.paid_at >= month_start,
        )
    )).scalar_one()
    unread = (await session.execute(
        select(func.count()).select_from(Notification).where(
            and_(Notification.user_id == agent.id, Notification.is_read.is_(False))
        )
    )).scalar_one()

    return DashboardStats(
        today_bookings=today_bookings,
        upcoming_confirmed=upcoming,
        pending_payments=pending,
        month_revenue=_money(month_revenue),
        unread_notifications=unread,
    )


async def export_appointments(
    session: AsyncSession,
    actor: User,
    *,
    status: Optional[str] = None,
    doctor_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> ExportResult:
    """JSON rows only; turning them into CSV/PDF is the client's job."""
    rows, total = await appt_repo.list_appointments(
        session,
        booked_by_id=None if is_privileged(actor) else actor.id,
        doctor_id=doctor_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        limit=EXPORT_MAX_ROWS,
        offset=0,
    )
    items = [ExportRow.model_validate(a) for a in rows]
    if total > len(items):
        logger.warning("Export capped at %d of %d appointments", len(items), total)
    return ExportResult(
        generated_at=datetime.now(timezone.utc),
        count=len(items),
        total=total,
        truncated=total > len(items),
        rows=items,
    )
