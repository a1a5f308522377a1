# app/modules/audit/schemas.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class AuditLogEntry(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    action: str
    details: Optional[str] = None
    timestamp: dt.datetime


class AuditLogPage(BaseModel):
    items: List[AuditLogEntry]
    total: int
    limit: int
    offset: int
    has_next: bool
