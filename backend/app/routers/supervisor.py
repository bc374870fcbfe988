"""Supervisor router: the promoters a supervisor oversees.

Endpoints:
    GET    /api/supervisor/promoters                 List own promoters
    POST   /api/supervisor/promoters/assign          Claim an unsupervised promoter
    DELETE /api/supervisor/promoters/{promoter_id}   Release one of own promoters
    GET    /api/supervisor/stats                     Team totals
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import ResourceType
from app.auth.deps import require_tier
from app.auth.principal import Principal
from app.auth.scope import resolve_scope, supervised_users_scope
from app.database import get_db
from app.models.user import Role, Tier, User
from app.schemas.common import ERROR_RESPONSES
from app.schemas.stats import SupervisorStats
from app.schemas.user import PromoterAssign, UserSummary
from app.services.assignment import assign_promoter_to_supervisor, unassign_promoter
from app.services.stats import (
    client_stats,
    promoter_counts,
    visit_stats,
    visits_by_promoter,
)

router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/promoters", response_model=list[UserSummary])
async def list_promoters(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_tier(Tier.SUPERVISOR, Tier.VIEWER)),
):
    scope = supervised_users_scope(principal)
    result = await db.execute(
        select(User)
        .where(scope.to_clause(User), User.role == Role.PROMOTER)
        .order_by(User.name)
    )
    return [UserSummary.model_validate(u) for u in result.scalars().all()]


@router.post("/promoters/assign", response_model=UserSummary)
async def assign_promoter(
    body: PromoterAssign,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_tier(Tier.SUPERVISOR)),
):
    promoter = await assign_promoter_to_supervisor(
        db, principal, body.promoter_id, principal.id
    )
    await db.refresh(promoter)
    return UserSummary.model_validate(promoter)


@router.delete("/promoters/{promoter_id}", response_model=UserSummary)
async def release_promoter(
    promoter_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_tier(Tier.SUPERVISOR)),
):
    promoter = await unassign_promoter(db, principal, promoter_id)
    await db.refresh(promoter)
    return UserSummary.model_validate(promoter)


@router.get("/stats", response_model=SupervisorStats)
async def get_supervisor_stats(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_tier(Tier.SUPERVISOR, Tier.VIEWER)),
):
    """Team totals. Client counts include the unassigned pool for supervisors."""
    promoters, active = await promoter_counts(db, supervised_users_scope(principal))
    client_scope = await resolve_scope(db, principal, ResourceType.CLIENT)
    visit_scope = await resolve_scope(db, principal, ResourceType.VISIT)
    return SupervisorStats(
        promoters=promoters,
        active_promoters=active,
        clients=await client_stats(db, client_scope),
        visits=await visit_stats(db, visit_scope),
        visits_by_promoter=await visits_by_promoter(db, visit_scope),
    )
