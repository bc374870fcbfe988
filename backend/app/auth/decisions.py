"""Access decision engine.

`decide(principal, action, resource, owner)` answers Allow or
Deny(reason) for one principal acting on one already-loaded resource.
It never touches the database: callers load the resource and, for
clients and visits, the owning promoter (`owner`) first.

Decision table for clients and visits (owner = the promoter named by
resource.promoter_id):

    Administrator   everything
    Supervisor      read/update/delete iff owner.supervisor_id == principal.id
                    unassigned client: read and reassign only (the pool)
    Promoter        read/update/delete iff resource.promoter_id == principal.id
    Viewer          read iff owner.supervisor_id == principal.id, no mutations

Routers must call this for every single-resource operation even when the
resource was found through a scoped list query, because resources are also
reachable by id.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from app.auth.principal import Principal
from app.models.client import Client
from app.models.user import Role, Tier, User
from app.models.visit import Visit

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    READ = "read"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REASSIGN = "reassign"
    CHANGE_ROLE = "changeRole"
    DEACTIVATE = "deactivate"


class Reason(str, enum.Enum):
    """Stable reason codes carried by every Deny."""

    NOT_OWNER = "NotOwner"
    NOT_SUPERVISOR_OF = "NotSupervisorOf"
    ROLE_NOT_PERMITTED = "RoleNotPermitted"
    INVALID_PROMOTER = "InvalidPromoter"
    INVALID_SUPERVISOR = "InvalidSupervisor"
    CLIENT_NOT_OWNED = "ClientNotOwned"
    VISIT_REQUIRES_ASSIGNED_CLIENT = "VisitRequiresAssignedClient"
    LAST_ADMINISTRATOR = "LastAdministrator"
    ORPHANED_OWNERSHIP = "OrphanedOwnership"


class ResourceType(str, enum.Enum):
    CLIENT = "client"
    VISIT = "visit"
    USER = "user"

    @classmethod
    def of(cls, resource) -> ResourceType:
        if isinstance(resource, Client):
            return cls.CLIENT
        if isinstance(resource, Visit):
            return cls.VISIT
        if isinstance(resource, User):
            return cls.USER
        raise TypeError(f"Unsupported resource: {type(resource).__name__}")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Reason | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: Reason) -> Decision:
    return Decision(False, reason)


_READ_ONLY = {Action.READ, Action.LIST}
_USER_ADMIN_ACTIONS = {
    Action.LIST, Action.CREATE, Action.DELETE,
    Action.REASSIGN, Action.CHANGE_ROLE, Action.DEACTIVATE,
}


# ── Entry point ─────────────────────────────────────────────

def decide(
    principal: Principal,
    action: Action,
    resource: Client | Visit | User,
    owner: User | None = None,
) -> Decision:
    """Return Allow or Deny(reason) for `principal` doing `action` on `resource`.

    For clients and visits `owner` must be the loaded promoter user (or None
    for an unassigned client); supervisor and viewer checks read its
    supervisor_id.
    """
    if not principal.active:
        decision = deny(Reason.ROLE_NOT_PERMITTED)
    elif principal.is_administrator:
        decision = ALLOW
    else:
        resource_type = ResourceType.of(resource)
        if resource_type is ResourceType.USER:
            decision = _decide_user(principal, action, resource)
        else:
            decision = _decide_owned(principal, action, resource, owner)

    if not decision:
        logger.debug(
            f"Denied {action.value} on {type(resource).__name__} "
            f"{getattr(resource, 'id', None)}: {decision.reason.value}",
            extra={"principal_id": principal.id, "role": principal.role.value},
        )
    return decision


# ── Clients and visits ──────────────────────────────────────

def _decide_owned(
    principal: Principal,
    action: Action,
    resource: Client | Visit,
    owner: User | None,
) -> Decision:
    tier = principal.tier
    unassigned = resource.promoter_id is None

    if tier is Tier.PROMOTER:
        if action is Action.REASSIGN:
            return deny(Reason.ROLE_NOT_PERMITTED)
        if action is Action.CREATE and isinstance(resource, Client):
            # Promoters always own what they create.
            return ALLOW
        if resource.promoter_id == principal.id:
            return ALLOW
        return deny(Reason.NOT_OWNER)

    if tier is Tier.SUPERVISOR:
        if action is Action.CREATE:
            if isinstance(resource, Visit):
                return deny(Reason.ROLE_NOT_PERMITTED)
            if unassigned:
                return ALLOW
        if unassigned:
            if isinstance(resource, Client) and action in (
                Action.READ, Action.LIST, Action.REASSIGN,
            ):
                return ALLOW
            return deny(Reason.NOT_SUPERVISOR_OF)
        if _supervises(principal, owner, resource.promoter_id):
            return ALLOW
        return deny(Reason.NOT_SUPERVISOR_OF)

    if tier is Tier.VIEWER:
        if action not in _READ_ONLY:
            return deny(Reason.ROLE_NOT_PERMITTED)
        if not unassigned and _supervises(principal, owner, resource.promoter_id):
            return ALLOW
        return deny(Reason.NOT_SUPERVISOR_OF)

    return deny(Reason.ROLE_NOT_PERMITTED)


def _supervises(principal: Principal, owner: User | None, promoter_id: str | None) -> bool:
    return (
        owner is not None
        and owner.id == promoter_id
        and Role(owner.role) is Role.PROMOTER
        and owner.supervisor_id == principal.id
    )


# ── Users ───────────────────────────────────────────────────

def _decide_user(principal: Principal, action: Action, target: User) -> Decision:
    if action in _USER_ADMIN_ACTIONS:
        return deny(Reason.ROLE_NOT_PERMITTED)

    if target.id == principal.id:
        # Self: read profile, edit own profile fields.
        return ALLOW

    if action is Action.READ and principal.tier in (Tier.SUPERVISOR, Tier.VIEWER):
        if Role(target.role) is Role.PROMOTER and target.supervisor_id == principal.id:
            return ALLOW
        return deny(Reason.NOT_SUPERVISOR_OF)

    if principal.tier is Tier.PROMOTER:
        return deny(Reason.NOT_OWNER)
    return deny(Reason.ROLE_NOT_PERMITTED)


# ── Visit creation gate ─────────────────────────────────────

def authorize_visit_creation(
    principal: Principal,
    client: Client,
    client_owner: User | None,
    promoter: User | None = None,
) -> Decision:
    """Decide whether `principal` may log a visit against `client`.

    Non-administrators are gated by being allowed to read the client.
    Administrators may record a visit on behalf of `promoter`, which must be
    the client's owner when the client is assigned, and must be given when
    it is not.
    """
    if not principal.active:
        return deny(Reason.ROLE_NOT_PERMITTED)

    if principal.is_administrator:
        if client.promoter_id is None:
            if promoter is None:
                return deny(Reason.VISIT_REQUIRES_ASSIGNED_CLIENT)
            if Role(promoter.role) is not Role.PROMOTER:
                return deny(Reason.INVALID_PROMOTER)
            return ALLOW
        if promoter is not None and promoter.id != client.promoter_id:
            return deny(Reason.CLIENT_NOT_OWNED)
        return ALLOW

    if client.promoter_id is None:
        return deny(Reason.VISIT_REQUIRES_ASSIGNED_CLIENT)

    # A client the caller cannot read answers like a missing one.
    if not decide(principal, Action.READ, client, client_owner):
        return deny(Reason.CLIENT_NOT_OWNED)

    if principal.tier is not Tier.PROMOTER:
        return deny(Reason.ROLE_NOT_PERMITTED)
    return ALLOW
