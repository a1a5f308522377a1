# app/modules/doctors/schemas.py
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field, field_validator


class HospitalCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=160)
    address: str = Field(..., min_length=2, max_length=255)
    city: str = Field(..., min_length=2, max_length=80)
    phone: Optional[str] = Field(default=None, max_length=32)


class HospitalPublic(BaseModel):
    id: UUID
    name: str
    address: str
    city: str
    phone: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class DoctorCreate(BaseModel):
    hospital_id: UUID
    name: str = Field(..., min_length=2, max_length=120)
    email: EmailStr
    specialization: str = Field(..., min_length=2, max_length=120)
    qualification: str = Field(..., min_length=2, max_length=255)
    experience_years: int = Field(default=0, ge=0, le=80)
    consultation_fee: Decimal = Field(..., ge=0)
    rating: Optional[Decimal] = Field(default=None, ge=0, le=5)

    @field_validator("name", "specialization", "qualification")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class DoctorPublic(BaseModel):
    id: UUID
    name: str
    email: str
    specialization: str
    qualification: str
    experience_years: int
    consultation_fee: Decimal
    rating: Optional[Decimal] = None
    is_active: bool
    hospital_id: UUID
    hospital: Optional[HospitalPublic] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DoctorListPage(BaseModel):
    items: List[DoctorPublic]
    total: int
    limit: int
    offset: int
    has_next: bool
