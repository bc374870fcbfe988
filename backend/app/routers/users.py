"""User profile router.

Endpoints:
    GET    /api/users/me          Own profile
    PATCH  /api/users/me          Edit own name / phone
    GET    /api/users/{user_id}   A user the caller may read
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Action
from app.auth.deps import get_current_principal
from app.auth.principal import Principal
from app.database import get_db
from app.schemas.common import ERROR_RESPONSES
from app.schemas.user import ProfileUpdate, UserSummary
from app.services.access import load_user

router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/me", response_model=UserSummary)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user = await load_user(db, principal, principal.id)
    return UserSummary.model_validate(user)


@router.patch("/me", response_model=UserSummary)
async def update_profile(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Edit own profile fields. Role, status and supervisor go through /api/admin."""
    user = await load_user(db, principal, principal.id, Action.UPDATE)

    updates = body.model_dump(exclude_unset=True)
    for key, value in updates.items():
        setattr(user, key, value)
    await db.flush()
    await db.refresh(user)
    return UserSummary.model_validate(user)


@router.get("/{user_id}", response_model=UserSummary)
async def get_user_profile(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Administrators read anyone; supervisors and viewers read their promoters."""
    user = await load_user(db, principal, user_id)
    return UserSummary.model_validate(user)
