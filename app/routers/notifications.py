# app/routers/notifications.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql import AsyncSessionLocal, get_session
from app.dependencies import agent_id_from_token, get_current_user
from app.modules.notifications.relay import Subscription, SubscriptionFilter, relay
from app.modules.notifications.schemas import MarkReadResult, NotificationListPage, NotificationPublic
from app.modules.notifications.service import (
    list_my_notifications_svc,
    mark_all_read_svc,
    mark_read_svc,
)
from app.modules.users.models import User
from app.modules.users.repository import get_by_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])

# Mounted without the API prefix: /ws/notifications
ws_router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=NotificationListPage)
async def notifications_list(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await list_my_notifications_svc(
        session, current_user, unread_only=unread_only, limit=limit, offset=offset
    )


# Declared before /notifications/{id}/read so "read-all" is not parsed as an id
@router.patch("/notifications/read-all", response_model=MarkReadResult)
async def notifications_read_all(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await mark_all_read_svc(session, current_user)


@router.patch("/notifications/{notification_id}/read", response_model=NotificationPublic)
async def notifications_read(
    notification_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await mark_read_svc(session, notification_id, current_user)


async def _authenticate_ws(token: str) -> bool:
    try:
        agent_id = agent_id_from_token(token)
    except HTTPException:
        return False
    # Short-lived session: the stream itself must not pin a pooled connection
    async with AsyncSessionLocal() as session:
        user = await get_by_id(session, agent_id)
        return user is not None and user.is_active


async def _pump(websocket: WebSocket, sub: Subscription) -> None:
    async for event in sub:
        await websocket.send_json(event.to_message())


async def _stop_pump(sender: asyncio.Task) -> None:
    sender.cancel()
    # Collects a send failure on an already-closed socket as well as the cancellation
    (outcome,) = await asyncio.gather(sender, return_exceptions=True)
    if isinstance(outcome, Exception):
        logger.debug("relay pump ended with %r", outcome)


@ws_router.websocket("/ws/notifications")
async def notifications_stream(
    websocket: WebSocket,
    token: str = Query(...),
    doctor_id: Optional[str] = Query(None),
    date: Optional[str] = Query(None),
    appointment_id: Optional[str] = Query(None),
):
    """
    Live ledger events (slot:booked, slot:released, ...). Best-effort: a
    client that reconnects re-syncs with a normal GET.
    """
    if not await _authenticate_ws(token):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    sub = relay.subscribe(
        SubscriptionFilter(doctor_id=doctor_id, date=date, appointment_id=appointment_id)
    )

    sender = asyncio.create_task(_pump(websocket, sub))
    try:
        # Inbound frames are only keep-alives; reading them detects disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("relay subscriber %s disconnected (dropped=%d)", sub.handle, sub.dropped)
    finally:
        await _stop_pump(sender)
        relay.unsubscribe(sub.handle)
