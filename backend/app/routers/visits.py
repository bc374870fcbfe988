"""Visit router.

Endpoints:
    GET    /api/visits/         List visits in the caller's scope
    GET    /api/visits/stats    Visit counts in the caller's scope
    POST   /api/visits/         Log a visit against a client
    GET    /api/visits/{id}     Get visit
    PATCH  /api/visits/{id}     Update notes / status / photos / coordinates
    DELETE /api/visits/{id}     Hard-delete a visit (owner or administrator)
"""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Action, Reason, ResourceType, authorize_visit_creation
from app.auth.deps import get_current_principal
from app.auth.ownership import get_user, owner_of
from app.auth.principal import Principal
from app.auth.scope import resolve_scope
from app.database import get_db
from app.middleware.exceptions import AuthorizationError, ResourceNotFoundError
from app.models.client import Client
from app.models.user import Tier
from app.models.visit import Visit, VisitStatus
from app.schemas.common import ERROR_RESPONSES, PaginatedResponse
from app.schemas.stats import VisitStats
from app.schemas.visit import VisitCreate, VisitOut, VisitUpdate
from app.services.access import load_visit
from app.services.stats import visit_stats

logger = logging.getLogger(__name__)

router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/", response_model=PaginatedResponse[VisitOut])
async def list_visits(
    promoter_id: str | None = None,
    status: VisitStatus | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """List visits visible to the caller, newest first."""
    scope = await resolve_scope(db, principal, ResourceType.VISIT, promoter_id)

    conditions = [scope.to_clause(Visit)]
    if status is not None:
        conditions.append(Visit.status == status)
    if start_date is not None:
        conditions.append(Visit.date >= start_date)
    if end_date is not None:
        conditions.append(Visit.date <= end_date)

    total = (
        await db.execute(select(func.count(Visit.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(Visit)
        .where(*conditions)
        .order_by(Visit.date.desc())
        .limit(limit)
        .offset(offset)
    )
    return PaginatedResponse[VisitOut](
        items=[VisitOut.model_validate(v) for v in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=VisitStats)
async def get_visit_stats(
    promoter_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Visit counts over the same scope `GET /` lists, by status and by day."""
    scope = await resolve_scope(db, principal, ResourceType.VISIT, promoter_id)
    return await visit_stats(db, scope, start_date, end_date)


@router.post("/", response_model=VisitOut, status_code=201)
async def create_visit(
    body: VisitCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Log a visit.

    The visit belongs to the calling promoter. Administrators may log on
    behalf of the client's promoter via `promoter_id`. Other tiers are
    refused before the client is looked up.
    """
    if not principal.is_administrator and principal.tier is not Tier.PROMOTER:
        raise AuthorizationError(Reason.ROLE_NOT_PERMITTED)

    client = (
        await db.execute(select(Client).where(Client.id == body.client_id))
    ).scalar_one_or_none()
    if client is None:
        if principal.is_administrator:
            raise ResourceNotFoundError("Client", body.client_id)
        # Same answer as an existing client the caller cannot read.
        raise AuthorizationError(Reason.CLIENT_NOT_OWNED)

    client_owner = await owner_of(db, client)
    on_behalf = None
    if principal.is_administrator and body.promoter_id:
        on_behalf = await get_user(db, body.promoter_id)
        if on_behalf is None:
            raise ResourceNotFoundError("User", body.promoter_id)

    decision = authorize_visit_creation(principal, client, client_owner, on_behalf)
    if not decision:
        raise AuthorizationError(decision.reason)

    if principal.is_administrator:
        promoter_id = on_behalf.id if on_behalf else client.promoter_id
    else:
        promoter_id = principal.id

    visit = Visit(
        id=str(uuid.uuid4()),
        promoter_id=promoter_id,
        client_id=client.id,
        date=body.date or datetime.utcnow(),
        latitude=body.latitude,
        longitude=body.longitude,
        address=body.address,
        notes=body.notes,
        photos=body.photos,
        signature=body.signature,
        status=VisitStatus.COMPLETED,
    )
    db.add(visit)
    await db.flush()
    await db.refresh(visit)

    logger.info(
        f"Visit {visit.id} logged for client {client.id}",
        extra={"principal_id": principal.id, "promoter_id": promoter_id},
    )
    return VisitOut.model_validate(visit)


@router.get("/{visit_id}", response_model=VisitOut)
async def get_visit(
    visit_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    visit, _owner = await load_visit(db, principal, visit_id)
    return VisitOut.model_validate(visit)


@router.patch("/{visit_id}", response_model=VisitOut)
async def update_visit(
    visit_id: str,
    body: VisitUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    visit, _owner = await load_visit(db, principal, visit_id, Action.UPDATE)

    updates = body.model_dump(exclude_unset=True)
    for key, value in updates.items():
        setattr(visit, key, value)
    await db.flush()
    await db.refresh(visit)
    return VisitOut.model_validate(visit)


@router.delete("/{visit_id}", status_code=204)
async def delete_visit(
    visit_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    visit, _owner = await load_visit(db, principal, visit_id, Action.DELETE)
    await db.delete(visit)
    await db.flush()
