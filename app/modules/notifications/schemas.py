# app/modules/notifications/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel


class NotificationPublic(BaseModel):
    id: UUID
    title: str
    message: str
    type: str
    is_read: bool
    read_at: Optional[datetime] = None
    data: Optional[dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListPage(BaseModel):
    items: List[NotificationPublic]
    total: int
    unread_count: int
    limit: int
    offset: int
    has_next: bool


class MarkReadResult(BaseModel):
    updated: int
