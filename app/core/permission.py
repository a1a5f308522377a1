# app/core/permission.py
from __future__ import annotations

from uuid import UUID

from app.core.exceptions import AccessDeniedError
from app.modules.users.models import User, UserRole

PRIVILEGED_ROLES = frozenset({UserRole.ADMIN.value, UserRole.SUPERVISOR.value})


def is_privileged(user: User) -> bool:
    return user.role in PRIVILEGED_ROLES


def ensure_owner_or_supervisor(user: User, owner_id: UUID | None) -> None:
    """
    Object-level check: agents act only on bookings they made,
    supervisors and admins act on any.
    """
    if is_privileged(user):
        return
    if owner_id is None or str(owner_id) != str(user.id):
        raise AccessDeniedError("not_owner")
