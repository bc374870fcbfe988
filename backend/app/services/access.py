"""Load-then-authorize helpers for single-resource routes.

Every single-resource route loads the row by id and re-checks it with the
access engine, independent of any list scope. The HTTP mapping is the same
for every role:

  - missing, or not readable by the principal  → 404 (existence is not leaked)
  - readable but the action is denied          → 403 with the reason code
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Action, decide
from app.auth.ownership import get_user, owner_of
from app.auth.principal import Principal
from app.middleware.exceptions import AuthorizationError, ResourceNotFoundError
from app.models.client import Client
from app.models.user import User
from app.models.visit import Visit


def _authorize_loaded(principal: Principal, action: Action, resource, owner, label: str):
    if not decide(principal, Action.READ, resource, owner):
        raise ResourceNotFoundError(label, resource.id)
    if action is not Action.READ:
        decision = decide(principal, action, resource, owner)
        if not decision:
            raise AuthorizationError(decision.reason)


async def load_client(
    db: AsyncSession,
    principal: Principal,
    client_id: str,
    action: Action = Action.READ,
    *,
    lock: bool = False,
) -> tuple[Client, User | None]:
    """Return the client and its owning promoter, or raise."""
    query = select(Client).where(Client.id == client_id)
    if lock:
        query = query.with_for_update()
    client = (await db.execute(query)).scalar_one_or_none()
    if client is None:
        raise ResourceNotFoundError("Client", client_id)

    owner = await owner_of(db, client)
    _authorize_loaded(principal, action, client, owner, "Client")
    return client, owner


async def load_visit(
    db: AsyncSession,
    principal: Principal,
    visit_id: str,
    action: Action = Action.READ,
) -> tuple[Visit, User | None]:
    """Return the visit and its promoter, or raise."""
    visit = (
        await db.execute(select(Visit).where(Visit.id == visit_id))
    ).scalar_one_or_none()
    if visit is None:
        raise ResourceNotFoundError("Visit", visit_id)

    owner = await owner_of(db, visit)
    _authorize_loaded(principal, action, visit, owner, "Visit")
    return visit, owner


async def load_user(
    db: AsyncSession,
    principal: Principal,
    user_id: str,
    action: Action = Action.READ,
) -> User:
    user = await get_user(db, user_id)
    if user is None:
        raise ResourceNotFoundError("User", user_id)
    _authorize_loaded(principal, action, user, None, "User")
    return user
