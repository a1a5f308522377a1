# app/routers/health.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.db.sql import get_session
from app.modules.notifications.relay import relay

router = APIRouter()

@router.get("/health")
async def health_root():
    return {"status": "ok", "relay_subscribers": relay.subscriber_count}

@router.get("/health/db")
async def health_db(session: AsyncSession = Depends(get_session)):
    """
    Validates database connectivity with SELECT 1 and exposes the backend.
    Returns 503 if no connectivity (useful for readiness/liveness checks).
    """
    try:
        await session.execute(text("SELECT 1"))
        dialect = session.get_bind().dialect
        version = ".".join(str(p) for p in (dialect.server_version_info or ()))
        return {"status": "ok", "database": dialect.name, "server_version": version or None}
    except SQLAlchemyError as exc:
        # Don't expose internal details
        raise HTTPException(status_code=503, detail="database_unavailable") from exc
