# app/modules/reports/schemas.py
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class AppointmentSummary(BaseModel):
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    total_appointments: int
    by_status: Dict[str, int]
    by_payment_status: Dict[str, int]
    revenue: Decimal
    refunded: Decimal


class AgentPerformanceRow(BaseModel):
    agent_id: UUID
    agent_name: str
    company_name: Optional[str] = None
    bookings: int
    cancellations: int
    completed: int
    revenue: Decimal


class SlotUtilizationRow(BaseModel):
    time_slot_id: UUID
    doctor_id: UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    current_bookings: int
    max_appointments: int
    utilization: float
    is_active: bool


class DashboardStats(BaseModel):
    today_bookings: int
    upcoming_confirmed: int
    pending_payments: int
    month_revenue: Decimal
    unread_notifications: int


class ExportRow(BaseModel):
    appointment_number: str
    patient_name: str
    doctor_id: UUID
    appointment_date: dt.date
    appointment_time: dt.time
    status: str
    payment_status: str
    consultation_fee: Decimal
    total_amount: Decimal
    booked_by_id: UUID
    created_at: dt.datetime

    class Config:
        from_attributes = True


class ExportResult(BaseModel):
    generated_at: dt.datetime
    count: int
    total: int
    # More rows matched than the export cap; narrow the filters to get them all
    truncated: bool = False
    rows: List[ExportRow]
