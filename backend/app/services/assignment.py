"""Assignment validator: ownership re-parenting and administrator changes.

Handles the state transitions that change who owns what, or who can
administer the system:

  - assign_client_to_promoter   Client.promoter_id    (admin, supervisor)
  - reassign_clients            batch of the above, all-or-nothing
  - assign_promoter_to_supervisor / unassign_promoter
                                User.supervisor_id    (admin, supervisor)
  - update_user_role / set_user_active
                                role and activity     (admin only)

Every rule is checked before the first write. Role and activity changes run
inside `administrator_guard` so the last-administrator count and the write
form one unit.

Raises:
  AuthorizationError   the principal may not perform the transition
  ValidationError      the target user is missing or has the wrong role
  InvariantViolation   the transition would leave no active administrator,
                       or would orphan an ownership edge
  ResourceNotFoundError  a referenced client or user does not exist
"""

from __future__ import annotations

import enum
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Action, Reason, decide
from app.auth.ownership import (
    count_other_active_administrators,
    get_user,
    has_promoters,
    owns_resources,
)
from app.auth.principal import Principal
from app.middleware.exceptions import (
    AuthorizationError,
    InvariantViolation,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.client import Client
from app.models.user import OVERSEER_ROLES, Role, Tier, User
from app.utils.locks import administrator_guard

logger = logging.getLogger(__name__)


class AdminGuardStatus(str, enum.Enum):
    HAS_OTHER_ADMIN = "HasOtherAdmin"
    IS_LAST_ADMIN = "IsLastAdmin"


def _require_tier(principal: Principal, *tiers: Tier) -> None:
    if not principal.active or principal.tier not in tiers:
        raise AuthorizationError(Reason.ROLE_NOT_PERMITTED)


async def _load_promoter(db: AsyncSession, promoter_id: str) -> User:
    promoter = await get_user(db, promoter_id, lock=True)
    if promoter is None or Role(promoter.role) is not Role.PROMOTER:
        raise ValidationError(
            Reason.INVALID_PROMOTER,
            f"User {promoter_id} does not exist or is not a promoter",
        )
    return promoter


# ── Client → Promoter ───────────────────────────────────────

def _check_client_reassignment(
    principal: Principal,
    client: Client,
    current_owner: User | None,
    target: User,
) -> None:
    decision = decide(principal, Action.REASSIGN, client, current_owner)
    if not decision:
        raise AuthorizationError(decision.reason)
    if principal.tier is Tier.SUPERVISOR and target.supervisor_id != principal.id:
        raise AuthorizationError(
            Reason.NOT_SUPERVISOR_OF,
            "Target promoter is not supervised by the current user",
        )


async def assign_client_to_promoter(
    db: AsyncSession,
    principal: Principal,
    client: Client,
    new_promoter_id: str,
) -> Client:
    """Re-parent `client` to `new_promoter_id`.

    Reassigning to the current owner is a successful no-op.
    """
    _require_tier(principal, Tier.ADMINISTRATOR, Tier.SUPERVISOR)
    target = await _load_promoter(db, new_promoter_id)
    current_owner = await get_user(db, client.promoter_id)
    _check_client_reassignment(principal, client, current_owner, target)

    if client.promoter_id == target.id:
        return client

    previous = client.promoter_id
    client.promoter_id = target.id
    await db.flush()

    logger.info(
        f"Client {client.id} reassigned from {previous} to {target.id}",
        extra={"principal_id": principal.id, "client_id": client.id},
    )
    return client


async def reassign_clients(
    db: AsyncSession,
    principal: Principal,
    client_ids: list[str],
    new_promoter_id: str,
) -> list[Client]:
    """Reassign several clients at once. Either all move or none do."""
    _require_tier(principal, Tier.ADMINISTRATOR, Tier.SUPERVISOR)
    target = await _load_promoter(db, new_promoter_id)

    unique_ids = list(dict.fromkeys(client_ids))
    result = await db.execute(
        select(Client).where(Client.id.in_(unique_ids)).with_for_update()
    )
    client_map = {c.id: c for c in result.scalars().all()}

    owner_ids = {c.promoter_id for c in client_map.values() if c.promoter_id}
    owners: dict[str, User] = {}
    if owner_ids:
        owner_result = await db.execute(select(User).where(User.id.in_(owner_ids)))
        owners = {u.id: u for u in owner_result.scalars().all()}

    # Validate everything before the first write.
    for client_id in unique_ids:
        client = client_map.get(client_id)
        owner = owners.get(client.promoter_id) if client else None
        if client is None or not decide(principal, Action.READ, client, owner):
            raise ResourceNotFoundError("Client", client_id)
        _check_client_reassignment(principal, client, owner, target)

    moved = []
    for client_id in unique_ids:
        client = client_map[client_id]
        if client.promoter_id != target.id:
            client.promoter_id = target.id
            moved.append(client_id)
    await db.flush()

    logger.info(
        f"Reassigned {len(moved)} of {len(unique_ids)} clients to {target.id}",
        extra={"principal_id": principal.id, "client_ids": moved},
    )
    return [client_map[client_id] for client_id in unique_ids]


# ── Promoter → Supervisor ───────────────────────────────────

async def assign_promoter_to_supervisor(
    db: AsyncSession,
    principal: Principal,
    promoter_id: str,
    supervisor_id: str,
) -> User:
    """Set a promoter's supervisor.

    Administrators may assign any promoter to any supervisor, or to a
    viewer who then oversees it read-only. A supervisor
    may only claim, for themselves, a promoter that has no supervisor yet.
    """
    _require_tier(principal, Tier.ADMINISTRATOR, Tier.SUPERVISOR)
    promoter = await _load_promoter(db, promoter_id)

    supervisor = await get_user(db, supervisor_id)
    if supervisor is None or Role(supervisor.role) not in OVERSEER_ROLES:
        raise ValidationError(
            Reason.INVALID_SUPERVISOR,
            f"User {supervisor_id} does not exist or is not a supervisor or viewer",
        )

    if principal.tier is Tier.SUPERVISOR:
        if supervisor.id != principal.id:
            raise AuthorizationError(
                Reason.NOT_SUPERVISOR_OF,
                "Supervisors can only assign promoters to themselves",
            )
        if promoter.supervisor_id not in (None, principal.id):
            raise AuthorizationError(
                Reason.NOT_SUPERVISOR_OF,
                "Promoter is already supervised by another user",
            )

    if promoter.supervisor_id == supervisor.id:
        return promoter

    previous = promoter.supervisor_id
    promoter.supervisor_id = supervisor.id
    await db.flush()

    logger.info(
        f"Promoter {promoter.id} moved from supervisor {previous} to {supervisor.id}",
        extra={"principal_id": principal.id},
    )
    return promoter


async def unassign_promoter(
    db: AsyncSession,
    principal: Principal,
    promoter_id: str,
) -> User:
    _require_tier(principal, Tier.ADMINISTRATOR, Tier.SUPERVISOR)
    promoter = await get_user(db, promoter_id, lock=True)
    if promoter is None:
        raise ResourceNotFoundError("User", promoter_id)
    if principal.tier is Tier.SUPERVISOR and promoter.supervisor_id != principal.id:
        # Out of scope reads as missing for supervisors.
        raise ResourceNotFoundError("User", promoter_id)
    if Role(promoter.role) is not Role.PROMOTER:
        raise ValidationError(
            Reason.INVALID_PROMOTER, f"User {promoter_id} is not a promoter"
        )

    if promoter.supervisor_id is not None:
        promoter.supervisor_id = None
        await db.flush()
        logger.info(
            f"Promoter {promoter.id} unassigned from its supervisor",
            extra={"principal_id": principal.id},
        )
    return promoter


# ── Role and activity (last-administrator invariant) ────────

async def administrator_guard_status(db: AsyncSession, user_id: str) -> AdminGuardStatus:
    """Whether removing `user_id` from the administrator tier would be blocked."""
    others = await count_other_active_administrators(db, user_id)
    return AdminGuardStatus.HAS_OTHER_ADMIN if others else AdminGuardStatus.IS_LAST_ADMIN


async def _ensure_not_last_administrator(db: AsyncSession, target: User) -> None:
    others = await count_other_active_administrators(db, target.id, lock=True)
    if others == 0:
        raise InvariantViolation(
            Reason.LAST_ADMINISTRATOR,
            "At least one active administrator must remain",
        )


async def _load_target(db: AsyncSession, user_id: str) -> User:
    target = await get_user(db, user_id, lock=True)
    if target is None:
        raise ResourceNotFoundError("User", user_id)
    return target


async def update_user_role(
    db: AsyncSession,
    principal: Principal,
    user_id: str,
    new_role: Role,
) -> User:
    """Change a user's role. Administrator only.

    Demoting the last active administrator is refused, as is any change
    that would leave clients, visits or promoters pointing at a user of the
    wrong role.
    """
    _require_tier(principal, Tier.ADMINISTRATOR)
    new_role = Role(new_role)

    async with administrator_guard(db):
        target = await _load_target(db, user_id)
        old_role = Role(target.role)
        if old_role is new_role:
            return target

        if (
            old_role.is_administrator
            and not new_role.is_administrator
            and target.is_active
        ):
            await _ensure_not_last_administrator(db, target)

        if old_role is Role.PROMOTER and await owns_resources(db, target.id):
            raise InvariantViolation(
                Reason.ORPHANED_OWNERSHIP,
                "Promoter still owns clients or visits; reassign them first",
            )
        if (
            old_role in OVERSEER_ROLES
            and new_role not in OVERSEER_ROLES
            and await has_promoters(db, target.id)
        ):
            raise InvariantViolation(
                Reason.ORPHANED_OWNERSHIP,
                "User still oversees promoters; reassign them first",
            )

        target.role = new_role
        if new_role is not Role.PROMOTER:
            target.supervisor_id = None
        await db.flush()

    logger.info(
        f"User {target.id} role changed from {old_role.value} to {new_role.value}",
        extra={"principal_id": principal.id},
    )
    return target


async def set_user_active(
    db: AsyncSession,
    principal: Principal,
    user_id: str,
    active: bool,
) -> User:
    """Activate or deactivate a user. Administrator only.

    Deactivating the last active administrator is refused; reactivation is
    always allowed.
    """
    _require_tier(principal, Tier.ADMINISTRATOR)

    async with administrator_guard(db):
        target = await _load_target(db, user_id)
        if bool(target.is_active) == active:
            return target

        if not active and Role(target.role).is_administrator:
            await _ensure_not_last_administrator(db, target)

        target.is_active = active
        await db.flush()

    logger.info(
        f"User {target.id} {'activated' if active else 'deactivated'}",
        extra={"principal_id": principal.id},
    )
    return target
