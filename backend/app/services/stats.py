"""Aggregate counts over a resolved scope.

Every function takes the ScopeFilter the caller already resolved with
`resolve_scope()` (or `supervised_users_scope()`) and counts only rows
inside it:

    scope = await resolve_scope(db, principal, ResourceType.VISIT, promoter_id)
    stats = await visit_stats(db, scope)
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.scope import ScopeFilter
from app.models.client import Client
from app.models.user import Role, User
from app.models.visit import Visit
from app.schemas.stats import ClientStats, DayCount, VisitStats

RECENT_DAYS = 7
VISITING_DAYS = 30


def _key(value) -> str:
    return getattr(value, "value", value)


async def visit_stats(
    db: AsyncSession,
    scope: ScopeFilter,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> VisitStats:
    conditions = [scope.to_clause(Visit)]
    if start_date is not None:
        conditions.append(Visit.date >= start_date)
    if end_date is not None:
        conditions.append(Visit.date <= end_date)

    total = (
        await db.execute(select(func.count(Visit.id)).where(*conditions))
    ).scalar() or 0

    status_rows = await db.execute(
        select(Visit.status, func.count(Visit.id))
        .where(*conditions)
        .group_by(Visit.status)
    )

    since = datetime.utcnow() - timedelta(days=RECENT_DAYS)
    day = func.date(Visit.date)
    day_rows = await db.execute(
        select(day, func.count(Visit.id))
        .where(*conditions, Visit.date >= since)
        .group_by(day)
        .order_by(day)
    )

    return VisitStats(
        total=total,
        by_status={_key(status): count for status, count in status_rows.all()},
        last_7_days=[DayCount(day=d, count=n) for d, n in day_rows.all()],
    )


async def client_stats(db: AsyncSession, scope: ScopeFilter) -> ClientStats:
    total, active, unassigned = (
        await db.execute(
            select(
                func.count(Client.id),
                func.count(Client.id).filter(Client.is_active == True),  # noqa: E712
                func.count(Client.id).filter(Client.promoter_id.is_(None)),
            ).where(scope.to_clause(Client))
        )
    ).one()
    return ClientStats(total=total, active=active, unassigned=unassigned)


async def visits_by_promoter(db: AsyncSession, scope: ScopeFilter) -> dict[str, int]:
    rows = await db.execute(
        select(Visit.promoter_id, func.count(Visit.id))
        .where(scope.to_clause(Visit))
        .group_by(Visit.promoter_id)
    )
    return dict(rows.all())


async def promoter_counts(db: AsyncSession, scope: ScopeFilter) -> tuple[int, int]:
    """(promoters, active promoters) among the users `scope` admits."""
    total, active = (
        await db.execute(
            select(
                func.count(User.id),
                func.count(User.id).filter(User.is_active == True),  # noqa: E712
            ).where(scope.to_clause(User), User.role == Role.PROMOTER)
        )
    ).one()
    return total, active


async def user_counts(db: AsyncSession, scope: ScopeFilter) -> tuple[int, int, dict[str, int]]:
    """(users, active users, users per role) among the users `scope` admits."""
    clause = scope.to_clause(User)
    total, active = (
        await db.execute(
            select(
                func.count(User.id),
                func.count(User.id).filter(User.is_active == True),  # noqa: E712
            ).where(clause)
        )
    ).one()
    role_rows = await db.execute(
        select(User.role, func.count(User.id)).where(clause).group_by(User.role)
    )
    return total, active, {_key(role): count for role, count in role_rows.all()}


async def promoters_visiting(db: AsyncSession, scope: ScopeFilter) -> int:
    """Active promoters with at least one visit in the last VISITING_DAYS days."""
    since = datetime.utcnow() - timedelta(days=VISITING_DAYS)
    return (
        await db.execute(
            select(func.count(func.distinct(Visit.promoter_id)))
            .join(User, User.id == Visit.promoter_id)
            .where(
                scope.to_clause(Visit),
                User.is_active == True,  # noqa: E712
                User.role == Role.PROMOTER,
                Visit.date >= since,
            )
        )
    ).scalar() or 0
