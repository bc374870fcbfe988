"""Ownership graph lookups.

The graph is two levels deep: Supervisor → Promoter → {Client, Visit}.
These helpers are the only database reads the authorization engine needs:
the promoter set of a supervisor, a user by id, the owner of a resource,
and the count of other active administrators.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.client import Client
from app.models.user import ADMINISTRATOR_ROLES, Role, User
from app.models.visit import Visit


async def promoters_of(db: AsyncSession, supervisor_id: str) -> set[str]:
    """IDs of users with role PROMOTER supervised by `supervisor_id`."""
    result = await db.execute(
        select(User.id).where(
            User.role == Role.PROMOTER,
            User.supervisor_id == supervisor_id,
        )
    )
    return set(result.scalars().all())


async def get_user(
    db: AsyncSession,
    user_id: str | None,
    *,
    lock: bool = False,
) -> User | None:
    if not user_id:
        return None
    query = select(User).where(User.id == user_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def owner_of(db: AsyncSession, resource: Client | Visit) -> User | None:
    """Load the promoter that owns a client or visit (None when unassigned)."""
    return await get_user(db, resource.promoter_id)


async def owns_resources(db: AsyncSession, promoter_id: str) -> bool:
    """True if any client or visit still points at this promoter."""
    clients = await db.execute(
        select(func.count(Client.id)).where(Client.promoter_id == promoter_id)
    )
    if clients.scalar():
        return True
    visits = await db.execute(
        select(func.count(Visit.id)).where(Visit.promoter_id == promoter_id)
    )
    return bool(visits.scalar())


async def has_promoters(db: AsyncSession, supervisor_id: str) -> bool:
    result = await db.execute(
        select(func.count(User.id)).where(User.supervisor_id == supervisor_id)
    )
    return bool(result.scalar())


async def count_other_active_administrators(
    db: AsyncSession,
    exclude_user_id: str,
    *,
    lock: bool = False,
) -> int:
    """Count active administrator-tier users other than `exclude_user_id`.

    With `lock=True` the matching rows are selected FOR UPDATE so a
    concurrent demotion in another transaction blocks until this one ends.
    """
    query = select(User.id).where(
        User.role.in_(ADMINISTRATOR_ROLES),
        User.is_active == True,  # noqa: E712
        User.id != exclude_user_id,
    )
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return len(result.scalars().all())
