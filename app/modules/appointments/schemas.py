# app/modules/appointments/schemas.py
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.modules.payments.models import PaymentMethod


class PatientDetails(BaseModel):
    """
    Patient the agent is booking for. At least one contact method is
    required; the service enforces that before any write.
    """
    name: str = Field(..., max_length=120)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[EmailStr] = None
    nic: Optional[str] = Field(default=None, max_length=20)

    @field_validator("name", "phone", "nic")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None


class AppointmentCreateRequest(BaseModel):
    """
    Payload to book an appointment. The booking agent is taken from the
    bearer token, never from the body.
    """
    time_slot_id: UUID
    patient: PatientDetails
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    notes: Optional[str] = Field(default=None, max_length=1000)


class AppointmentCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AppointmentRescheduleRequest(BaseModel):
    new_time_slot_id: UUID
    reason: Optional[str] = Field(default=None, max_length=500)


class StatusTarget(str, Enum):
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class AppointmentStatusRequest(BaseModel):
    status: StatusTarget


class AppointmentPublic(BaseModel):
    """
    DTO returns a detailed appointment.
    """
    id: UUID
    appointment_number: str
    patient_name: str
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None
    patient_nic: Optional[str] = None
    notes: Optional[str] = None
    doctor_id: UUID
    hospital_id: UUID
    time_slot_id: UUID
    booked_by_id: UUID
    rescheduled_from_id: Optional[UUID] = None
    bulk_booking_id: Optional[str] = None
    appointment_date: dt.date
    appointment_time: dt.time
    status: str
    payment_status: str
    consultation_fee: Decimal
    total_amount: Decimal
    cancellation_reason: Optional[str] = None
    cancellation_date: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class AppointmentListItem(BaseModel):
    """
    Used for lists
    """
    id: UUID
    appointment_number: str
    patient_name: str
    doctor_id: UUID
    time_slot_id: UUID
    booked_by_id: UUID
    appointment_date: dt.date
    appointment_time: dt.time
    status: str
    payment_status: str
    total_amount: Decimal
    created_at: dt.datetime

    class Config:
        from_attributes = True


class AppointmentListPage(BaseModel):
    """
    Page the appointments list (with pagination).
    """
    items: List[AppointmentListItem]
    total: int
    limit: int
    offset: int
    has_next: bool


class BookingResult(BaseModel):
    appointment: AppointmentPublic
    payment_id: UUID
    payment_status: str
    amount: Decimal
    currency: str


class RescheduleResult(BaseModel):
    previous: AppointmentPublic
    appointment: AppointmentPublic
    payment_id: UUID


class BulkBookingRequest(BaseModel):
    """
    Several patients booked by one agent in a single request. Either every
    entry is booked or none is.
    """
    appointments: List[AppointmentCreateRequest] = Field(min_length=1, max_length=50)


class BulkBookingResult(BaseModel):
    bulk_booking_id: str
    bookings: List[BookingResult]
    total_amount: Decimal
    currency: str
