"""Tests for scope resolution and the filter algebra."""

import pytest
from sqlalchemy import select

from app.auth.decisions import Reason, ResourceType
from app.auth.principal import Principal
from app.auth.scope import (
    Equals,
    In,
    Or,
    Unrestricted,
    resolve_scope,
    supervised_users_scope,
)
from app.middleware.exceptions import AuthorizationError
from app.models.client import Client
from app.models.user import Role, User
from app.models.visit import Visit

from conftest import principal


async def visible_ids(db, model, scope):
    result = await db.execute(select(model.id).where(scope.to_clause(model)))
    return set(result.scalars().all())


@pytest.mark.unit
class TestFilterAlgebra:
    def test_matches_in_memory(self):
        c1 = Client(id="c1", name="a", promoter_id="p1")
        c2 = Client(id="c2", name="b", promoter_id=None)
        scope = Or((In("promoter_id", frozenset({"p1"})), Equals("promoter_id", None)))
        assert scope.matches(c1)
        assert scope.matches(c2)
        assert not scope.matches(Client(id="c3", name="c", promoter_id="p3"))
        assert Unrestricted().matches(c1)

    def test_empty_in_matches_nothing(self):
        scope = In("promoter_id", frozenset())
        assert not scope.matches(Client(id="c1", name="a", promoter_id="p1"))
        assert not scope.matches(Client(id="c2", name="b", promoter_id=None))


@pytest.mark.integration
@pytest.mark.asyncio
class TestResolveScope:
    async def test_supervisor_sees_own_and_unassigned_clients(self, db_session, graph):
        scope = await resolve_scope(db_session, principal(graph.s1), ResourceType.CLIENT)

        assert scope.matches(graph.c1)
        assert scope.matches(graph.c2)
        assert not scope.matches(graph.c3)
        assert await visible_ids(db_session, Client, scope) == {"c1", "c2"}

    async def test_supervisor_visits_exclude_pool(self, db_session, graph):
        scope = await resolve_scope(db_session, principal(graph.s1), ResourceType.VISIT)

        assert scope == In("promoter_id", frozenset({"p1", "p2"}))
        assert await visible_ids(db_session, Visit, scope) == {"v1"}

    async def test_supervisor_filter_inside_scope(self, db_session, graph):
        scope = await resolve_scope(
            db_session, principal(graph.s1), ResourceType.CLIENT, "p1"
        )
        assert scope == Equals("promoter_id", "p1")

    async def test_supervisor_filter_outside_scope_fails_closed(self, db_session, graph):
        with pytest.raises(AuthorizationError) as exc_info:
            await resolve_scope(db_session, principal(graph.s1), ResourceType.CLIENT, "p3")
        assert exc_info.value.reason == Reason.NOT_SUPERVISOR_OF.value
        assert exc_info.value.status_code == 403

    async def test_promoter_scoped_to_self(self, db_session, graph):
        scope = await resolve_scope(db_session, principal(graph.p1), ResourceType.CLIENT)
        assert scope == Equals("promoter_id", "p1")
        assert await visible_ids(db_session, Client, scope) == {"c1"}

        # Naming yourself is fine, naming anyone else is not.
        await resolve_scope(db_session, principal(graph.p1), ResourceType.VISIT, "p1")
        with pytest.raises(AuthorizationError) as exc_info:
            await resolve_scope(db_session, principal(graph.p1), ResourceType.VISIT, "p2")
        assert exc_info.value.reason == Reason.NOT_OWNER.value

    async def test_viewer_is_read_only_supervisor_without_pool(self, db_session, graph):
        scope = await resolve_scope(db_session, principal(graph.viewer), ResourceType.CLIENT)
        assert await visible_ids(db_session, Client, scope) == {"c4"}

    async def test_supervisor_without_promoters_sees_only_pool(self, db_session, graph):
        lonely = User(id="s3", email="s3@example.com", name="S3", role=Role.SUPERVISOR)
        db_session.add(lonely)
        await db_session.flush()

        clients = await resolve_scope(db_session, principal(lonely), ResourceType.CLIENT)
        visits = await resolve_scope(db_session, principal(lonely), ResourceType.VISIT)
        assert await visible_ids(db_session, Client, clients) == {"c2"}
        assert await visible_ids(db_session, Visit, visits) == set()

    async def test_administrator_unrestricted(self, db_session, graph):
        scope = await resolve_scope(db_session, principal(graph.admin), ResourceType.CLIENT)
        assert scope == Unrestricted()
        assert await visible_ids(db_session, Client, scope) == {"c1", "c2", "c3", "c4"}

        scope = await resolve_scope(
            db_session, principal(graph.admin), ResourceType.VISIT, "p3"
        )
        assert await visible_ids(db_session, Visit, scope) == {"v3"}

    async def test_user_listing_admin_only(self, db_session, graph):
        scope = await resolve_scope(db_session, principal(graph.admin), ResourceType.USER)
        assert scope == Unrestricted()

        for user in (graph.s1, graph.p1, graph.viewer):
            with pytest.raises(AuthorizationError) as exc_info:
                await resolve_scope(db_session, principal(user), ResourceType.USER)
            assert exc_info.value.reason == Reason.ROLE_NOT_PERMITTED.value

    async def test_inactive_principal_has_no_scope(self, db_session, graph):
        inactive = Principal(graph.s1.id, Role.SUPERVISOR, active=False)
        with pytest.raises(AuthorizationError):
            await resolve_scope(db_session, inactive, ResourceType.CLIENT)

    async def test_supervised_users_scope(self, db_session, graph):
        scope = supervised_users_scope(principal(graph.s1))
        assert await visible_ids(db_session, User, scope) == {"p1", "p2"}

        with pytest.raises(AuthorizationError):
            supervised_users_scope(principal(graph.p1))
