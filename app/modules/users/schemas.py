# app/modules/users/schemas.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class Role(str, Enum):
    admin = "admin"
    supervisor = "supervisor"
    agent = "agent"


class UserPublic(BaseModel):
    id: UUID
    email: EmailStr
    name: str
    role: Role
    company_name: Optional[str] = None
    contact_number: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


MeResponse = UserPublic


class AgentCreateRequest(BaseModel):
    """
    Mirrors an identity that already exists at the auth provider; the id
    given here must match the token's `sub`.
    """
    id: Optional[UUID] = None
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=120)
    role: Role = Role.agent
    company_name: Optional[str] = Field(default=None, max_length=120)
    contact_number: Optional[str] = Field(default=None, max_length=32)


class UserListPage(BaseModel):
    items: List[UserPublic]
    total: int
    limit: int
    offset: int
    has_next: bool
