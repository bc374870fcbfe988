"""Admin-only router for user management.

Endpoints:
    GET    /api/admin/stats                        System-wide totals
    GET    /api/admin/users                        List users
    POST   /api/admin/users                        Create user
    GET    /api/admin/users/{user_id}              Get user (with admin guard status)
    PATCH  /api/admin/users/{user_id}/role         Change role
    PATCH  /api/admin/users/{user_id}/status       Activate / deactivate
    PATCH  /api/admin/users/{user_id}/supervisor   Assign / unassign a promoter's supervisor
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Reason, ResourceType
from app.auth.deps import require_tier
from app.auth.ownership import get_user
from app.auth.principal import Principal
from app.auth.scope import resolve_scope
from app.database import get_db
from app.middleware.exceptions import ResourceNotFoundError, ValidationError
from app.models.user import OVERSEER_ROLES, Role, Tier, User
from app.schemas.common import ERROR_RESPONSES, PaginatedResponse
from app.schemas.stats import AdminStats
from app.schemas.user import (
    RoleUpdate,
    StatusUpdate,
    SupervisorUpdate,
    UserCreate,
    UserDetail,
    UserSummary,
)
from app.services.assignment import (
    administrator_guard_status,
    assign_promoter_to_supervisor,
    set_user_active,
    unassign_promoter,
    update_user_role,
)
from app.services.stats import client_stats, promoters_visiting, user_counts, visit_stats

router = APIRouter(responses=ERROR_RESPONSES)

require_admin = require_tier(Tier.ADMINISTRATOR)


@router.get("/stats", response_model=AdminStats)
async def get_admin_stats(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """System-wide totals."""
    users, active_users, by_role = await user_counts(
        db, await resolve_scope(db, principal, ResourceType.USER)
    )
    client_scope = await resolve_scope(db, principal, ResourceType.CLIENT)
    visit_scope = await resolve_scope(db, principal, ResourceType.VISIT)
    return AdminStats(
        users=users,
        active_users=active_users,
        users_by_role=by_role,
        promoters_visiting=await promoters_visiting(db, visit_scope),
        clients=await client_stats(db, client_scope),
        visits=await visit_stats(db, visit_scope),
    )


@router.get("/users", response_model=PaginatedResponse[UserSummary])
async def list_users(
    role: Role | None = None,
    search: str | None = None,
    include_inactive: bool = True,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    scope = await resolve_scope(db, principal, ResourceType.USER)

    conditions = [scope.to_clause(User)]
    if role is not None:
        conditions.append(User.role == role)
    if not include_inactive:
        conditions.append(User.is_active == True)  # noqa: E712
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    total = (
        await db.execute(select(func.count(User.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(User).where(*conditions).order_by(User.name).limit(limit).offset(offset)
    )
    return PaginatedResponse[UserSummary](
        items=[UserSummary.model_validate(u) for u in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/users", response_model=UserSummary, status_code=201)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Create a user. A supervisor may only be given to a promoter."""
    if body.supervisor_id is not None:
        if body.role is not Role.PROMOTER:
            raise ValidationError(
                Reason.INVALID_PROMOTER, "Only promoters can have a supervisor"
            )
        supervisor = await get_user(db, body.supervisor_id)
        if supervisor is None or Role(supervisor.role) not in OVERSEER_ROLES:
            raise ValidationError(
                Reason.INVALID_SUPERVISOR,
                f"User {body.supervisor_id} does not exist or is not a supervisor or viewer",
            )

    user = User(id=str(uuid.uuid4()), is_active=True, **body.model_dump())
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return UserSummary.model_validate(user)


@router.get("/users/{user_id}", response_model=UserDetail)
async def get_user_detail(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
):
    user = await get_user(db, user_id)
    if user is None:
        raise ResourceNotFoundError("User", user_id)
    guard = await administrator_guard_status(db, user.id)
    return UserDetail(user=UserSummary.model_validate(user), admin_guard=guard)


@router.patch("/users/{user_id}/role", response_model=UserSummary)
async def change_role(
    user_id: str,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    user = await update_user_role(db, principal, user_id, body.role)
    return UserSummary.model_validate(user)


@router.patch("/users/{user_id}/status", response_model=UserSummary)
async def change_status(
    user_id: str,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    user = await set_user_active(db, principal, user_id, body.is_active)
    return UserSummary.model_validate(user)


@router.patch("/users/{user_id}/supervisor", response_model=UserSummary)
async def change_supervisor(
    user_id: str,
    body: SupervisorUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    if body.supervisor_id is None:
        user = await unassign_promoter(db, principal, user_id)
    else:
        user = await assign_promoter_to_supervisor(
            db, principal, user_id, body.supervisor_id
        )
    await db.refresh(user)
    return UserSummary.model_validate(user)
