# app/modules/time_slots/schemas.py
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class TimeSlotCreateRequest(BaseModel):
    """
    Payload to open one slot. consultation_fee defaults to the doctor's fee.
    """
    doctor_id: UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    max_appointments: int = Field(default=20, ge=1, le=500)
    consultation_fee: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be after start_time")
        return self


class TimeRange(BaseModel):
    start_time: dt.time
    end_time: dt.time
    max_appointments: int = Field(default=20, ge=1, le=500)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be after start_time")
        return self


class TimeSlotBulkCreateRequest(BaseModel):
    """
    Opens every time range on every date in [date_from, date_to].
    Ranges that overlap an existing slot are skipped.
    """
    doctor_id: UUID
    date_from: dt.date
    date_to: dt.date
    time_ranges: List[TimeRange] = Field(min_length=1)
    consultation_fee: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_range(self):
        if self.date_from > self.date_to:
            raise ValueError("date_to must not be before date_from")
        if (self.date_to - self.date_from).days > 90:
            raise ValueError("date range too large (max 90 days)")
        return self


class TimeSlotBulkResult(BaseModel):
    created: int
    skipped: int
    slots: List["TimeSlotPublic"]


class CapacityUpdateRequest(BaseModel):
    max_appointments: int = Field(ge=1, le=500)


class ActiveUpdateRequest(BaseModel):
    is_active: bool


class SlotCancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class SlotCancelResult(BaseModel):
    slot_id: UUID
    cancelled_appointments: int


class TimeSlotPublic(BaseModel):
    id: UUID
    doctor_id: UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    max_appointments: int
    current_bookings: int
    available_slots: int
    availability: str
    consultation_fee: Decimal
    is_active: bool
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class TimeSlotListPage(BaseModel):
    items: List[TimeSlotPublic]
    total: int
    limit: int
    offset: int
    has_next: bool


TimeSlotBulkResult.model_rebuild()
