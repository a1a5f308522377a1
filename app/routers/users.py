# app/routers/users.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql import get_session
from app.dependencies import get_current_user, require_roles
from app.modules.users.models import User
from app.modules.users.schemas import AgentCreateRequest, MeResponse, Role, UserListPage, UserPublic
from app.modules.users.service import _to_public, list_agents_svc, provision_agent_svc

router = APIRouter(tags=["users"])


@router.get(
    "/users/me",
    response_model=MeResponse,
    summary="Profile of the agent behind the bearer token",
)
async def users_me(current_user: User = Depends(get_current_user)):
    return _to_public(current_user)


@router.get("/users", response_model=UserListPage)
async def users_list(
    role: Optional[Role] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin", "supervisor")),
):
    return await list_agents_svc(
        session, role=role.value if role else None, limit=limit, offset=offset
    )


@router.post("/users", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def users_create(
    payload: AgentCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles("admin")),
):
    return await provision_agent_svc(session, payload, current_user)
