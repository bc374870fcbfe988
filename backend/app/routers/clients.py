"""Client router.

Endpoints:
    GET    /api/clients/                 List clients in the caller's scope
    GET    /api/clients/stats            Client counts in the caller's scope
    POST   /api/clients/                 Create client
    POST   /api/clients/reassign         Reassign several clients (all-or-nothing)
    GET    /api/clients/{id}             Get client
    PATCH  /api/clients/{id}             Update client fields
    DELETE /api/clients/{id}             Soft-delete (deactivate) client
    PATCH  /api/clients/{id}/promoter    Reassign client to another promoter
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Action, Reason, ResourceType, decide
from app.auth.deps import get_current_principal
from app.auth.ownership import get_user
from app.auth.principal import Principal
from app.auth.scope import resolve_scope
from app.database import get_db
from app.middleware.exceptions import AuthorizationError, ValidationError
from app.models.client import Client
from app.models.user import Role, Tier
from app.schemas.client import (
    ClientBatchReassign,
    ClientCreate,
    ClientOut,
    ClientReassign,
    ClientUpdate,
)
from app.schemas.common import ERROR_RESPONSES, PaginatedResponse
from app.schemas.stats import ClientStats
from app.services.access import load_client
from app.services.assignment import assign_client_to_promoter, reassign_clients
from app.services.stats import client_stats

router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/", response_model=PaginatedResponse[ClientOut])
async def list_clients(
    promoter_id: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """List clients visible to the caller (active by default)."""
    scope = await resolve_scope(db, principal, ResourceType.CLIENT, promoter_id)

    conditions = [scope.to_clause(Client)]
    if not include_inactive:
        conditions.append(Client.is_active == True)  # noqa: E712
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            Client.name.ilike(pattern),
            Client.email.ilike(pattern),
            Client.phone.ilike(pattern),
        ))

    total = (
        await db.execute(select(func.count(Client.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(Client)
        .where(*conditions)
        .order_by(Client.name)
        .limit(limit)
        .offset(offset)
    )
    return PaginatedResponse[ClientOut](
        items=[ClientOut.model_validate(c) for c in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=ClientStats)
async def get_client_stats(
    promoter_id: str | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    scope = await resolve_scope(db, principal, ResourceType.CLIENT, promoter_id)
    return await client_stats(db, scope)


@router.post("/", response_model=ClientOut, status_code=201)
async def create_client(
    body: ClientCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Create a client.

    Promoters always own what they create. Supervisors and administrators
    may leave the client unassigned or name a promoter.
    """
    data = body.model_dump(exclude={"promoter_id"})
    promoter_id = principal.id if principal.tier is Tier.PROMOTER else body.promoter_id

    owner = None
    if promoter_id and principal.tier is not Tier.PROMOTER:
        owner = await get_user(db, promoter_id)
        if owner is None or Role(owner.role) is not Role.PROMOTER:
            raise ValidationError(
                Reason.INVALID_PROMOTER,
                f"User {promoter_id} does not exist or is not a promoter",
            )

    client = Client(id=str(uuid.uuid4()), promoter_id=promoter_id, **data)
    decision = decide(principal, Action.CREATE, client, owner)
    if not decision:
        raise AuthorizationError(decision.reason)

    db.add(client)
    await db.flush()
    await db.refresh(client)
    return ClientOut.model_validate(client)


@router.post("/reassign", response_model=list[ClientOut])
async def reassign_many(
    body: ClientBatchReassign,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Move several clients to one promoter. Fails as a whole on any error."""
    clients = await reassign_clients(db, principal, body.client_ids, body.promoter_id)
    return [ClientOut.model_validate(c) for c in clients]


@router.get("/{client_id}", response_model=ClientOut)
async def get_client(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    client, _owner = await load_client(db, principal, client_id)
    return ClientOut.model_validate(client)


@router.patch("/{client_id}", response_model=ClientOut)
async def update_client(
    client_id: str,
    body: ClientUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Update client fields. Ownership changes go through /promoter."""
    client, _owner = await load_client(db, principal, client_id, Action.UPDATE)

    updates = body.model_dump(exclude_unset=True)
    for key, value in updates.items():
        setattr(client, key, value)
    await db.flush()
    await db.refresh(client)
    return ClientOut.model_validate(client)


@router.delete("/{client_id}", response_model=ClientOut)
async def deactivate_client(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Soft-delete (deactivate) a client."""
    client, _owner = await load_client(db, principal, client_id, Action.DELETE)

    client.is_active = False
    await db.flush()
    await db.refresh(client)
    return ClientOut.model_validate(client)


@router.patch("/{client_id}/promoter", response_model=ClientOut)
async def reassign_client(
    client_id: str,
    body: ClientReassign,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Reassign a client to another promoter."""
    client, _owner = await load_client(
        db, principal, client_id, Action.REASSIGN, lock=True
    )
    client = await assign_client_to_promoter(db, principal, client, body.promoter_id)
    await db.refresh(client)
    return ClientOut.model_validate(client)
