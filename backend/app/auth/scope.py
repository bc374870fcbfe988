"""Scope resolver: which clients, visits and users a principal may list.

`resolve_scope()` turns a principal into a ScopeFilter, a small
declarative predicate (Equals / In / Or / Unrestricted) that the routers
compile into the WHERE clause of their list query:

    scope = await resolve_scope(db, principal, ResourceType.CLIENT, promoter_id)
    query = select(Client).where(scope.to_clause(Client))

The resolver never loads the resources themselves; the only read it makes
is the promoter set of a supervisor (or viewer).

Supervisors see clients of their promoters plus unassigned clients (the
pool they assign from), and only visits of their promoters. Viewers are
read-only supervisors without the pool. Promoters see their own resources.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import or_, true
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Reason, ResourceType
from app.auth.ownership import promoters_of
from app.auth.principal import Principal
from app.middleware.exceptions import AuthorizationError
from app.models.user import Tier

PROMOTER_FIELD = "promoter_id"


# ── Filter algebra ──────────────────────────────────────────

@dataclass(frozen=True)
class Unrestricted:
    def matches(self, obj: Any) -> bool:
        return True

    def to_clause(self, model):
        return true()


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any

    def matches(self, obj: Any) -> bool:
        return getattr(obj, self.field) == self.value

    def to_clause(self, model):
        column = getattr(model, self.field)
        if self.value is None:
            return column.is_(None)
        return column == self.value


@dataclass(frozen=True)
class In:
    field: str
    values: frozenset

    def matches(self, obj: Any) -> bool:
        return getattr(obj, self.field) in self.values

    def to_clause(self, model):
        # An empty set compiles to a false expression: nothing is visible.
        return getattr(model, self.field).in_(sorted(self.values))


@dataclass(frozen=True)
class Or:
    filters: tuple

    def matches(self, obj: Any) -> bool:
        return any(f.matches(obj) for f in self.filters)

    def to_clause(self, model):
        return or_(*(f.to_clause(model) for f in self.filters))


ScopeFilter = Union[Unrestricted, Equals, In, Or]


# ── Resolution ──────────────────────────────────────────────

async def resolve_scope(
    db: AsyncSession,
    principal: Principal,
    resource_type: ResourceType,
    filter_promoter_id: str | None = None,
) -> ScopeFilter:
    """Build the visibility filter for `principal` listing `resource_type`.

    Raises AuthorizationError when the principal may not list the resource
    type at all, or asks for a promoter outside its scope. The scope is
    never silently widened or narrowed.
    """
    if not principal.active:
        raise AuthorizationError(Reason.ROLE_NOT_PERMITTED)

    if resource_type is ResourceType.USER:
        if principal.is_administrator:
            return Unrestricted()
        raise AuthorizationError(
            Reason.ROLE_NOT_PERMITTED, "Only administrators can list users"
        )

    tier = principal.tier

    if tier is Tier.ADMINISTRATOR:
        if filter_promoter_id:
            return Equals(PROMOTER_FIELD, filter_promoter_id)
        return Unrestricted()

    if tier is Tier.PROMOTER:
        if filter_promoter_id and filter_promoter_id != principal.id:
            raise AuthorizationError(
                Reason.NOT_OWNER, "Promoters can only list their own resources"
            )
        return Equals(PROMOTER_FIELD, principal.id)

    if tier in (Tier.SUPERVISOR, Tier.VIEWER):
        supervised = await promoters_of(db, principal.id)
        if filter_promoter_id:
            if filter_promoter_id not in supervised:
                raise AuthorizationError(
                    Reason.NOT_SUPERVISOR_OF,
                    "Promoter is not supervised by the current user",
                )
            return Equals(PROMOTER_FIELD, filter_promoter_id)

        own = In(PROMOTER_FIELD, frozenset(supervised))
        if tier is Tier.SUPERVISOR and resource_type is ResourceType.CLIENT:
            return Or((own, Equals(PROMOTER_FIELD, None)))
        return own

    raise AuthorizationError(Reason.ROLE_NOT_PERMITTED)


def supervised_users_scope(principal: Principal) -> ScopeFilter:
    """Filter over users: the promoters a supervisor (or viewer) oversees."""
    if principal.is_administrator:
        return Unrestricted()
    if principal.tier in (Tier.SUPERVISOR, Tier.VIEWER):
        return Equals("supervisor_id", principal.id)
    raise AuthorizationError(Reason.ROLE_NOT_PERMITTED)
