# app/modules/users/repository.py
from __future__ import annotations

import uuid
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.users.models import User, UserRole


class EmailAlreadyExistsError(Exception):
    """Raised when trying to insert a user with an email that already exists."""


async def get_by_id(session: AsyncSession, user_id: UUID) -> Optional[User]:
    """
    Returns a User by primary key or None if not found.
    """
    return await session.get(User, user_id)


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    name: str,
    user_id: Optional[UUID] = None,
    role: UserRole | str = UserRole.AGENT,
    company_name: Optional[str] = None,
    contact_number: Optional[str] = None,
    is_active: bool = True,
) -> User:
    """
    Inserts an agent row (mirrors an identity from the auth provider) and
    returns the persisted ORM instance.
    """
    role_value = role.value if isinstance(role, UserRole) else str(role)

    user = User(
        id=user_id or uuid.uuid4(),
        email=email.strip().lower(),
        name=name.strip(),
        role=role_value,
        company_name=company_name,
        contact_number=contact_number,
        is_active=is_active,
    )

    session.add(user)
    try:
        # Flush to force INSERT and surface constraint violations here
        await session.flush()
    except IntegrityError as exc:
        raise EmailAlreadyExistsError("Email already registered") from exc

    await session.refresh(user)
    return user


async def list_users(
    session: AsyncSession,
    *,
    role: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[User], int]:
    conditions = []
    if role is not None:
        conditions.append(User.role == role)
    total = (
        await session.execute(select(func.count()).select_from(User).where(*conditions))
    ).scalar_one()
    stmt = select(User).where(*conditions).order_by(User.name, User.id).limit(limit).offset(offset)
    return (await session.execute(stmt)).scalars().all(), total
