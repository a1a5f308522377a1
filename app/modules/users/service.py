# app/modules/users/service.py
from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.db.transaction import unit_of_work
from app.modules.users import repository as users_repo
from app.modules.users.models import User
from app.modules.users.schemas import AgentCreateRequest, UserListPage, UserPublic


def _to_public(user: User) -> UserPublic:
    """
    Convert ORM model to public DTO.
    """
    return UserPublic.model_validate(user)


async def provision_agent_svc(
    session: AsyncSession, payload: AgentCreateRequest, actor: User
) -> UserPublic:
    """
    Register a booking user locally. Sign-in stays with the auth provider;
    this row only carries role, company and active flag.
    """
    async with unit_of_work(session, action="PROVISION_AGENT", user_id=actor.id) as uow:
        try:
            user = await users_repo.create_user(
                session,
                user_id=payload.id,
                email=str(payload.email),
                name=payload.name,
                role=payload.role.value,
                company_name=payload.company_name,
                contact_number=payload.contact_number,
            )
        except users_repo.EmailAlreadyExistsError:
            raise ValidationError("email_already_registered")
        uow.details = f"user={user.id} role={user.role}"
        result = _to_public(user)
    return result


async def list_agents_svc(
    session: AsyncSession,
    *,
    role: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> UserListPage:
    rows, total = await users_repo.list_users(session, role=role, limit=limit, offset=offset)
    return UserListPage(
        items=[_to_public(u) for u in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )
