"""End-to-end tests for the client, visit, admin and supervisor routers."""

import pytest
from httpx import AsyncClient

from app.models.user import Role

from conftest import auth_headers, make_user


def codes(response) -> str:
    return response.json()["error"]["code"]


@pytest.mark.integration
@pytest.mark.asyncio
class TestClientEndpoints:
    async def test_promoter_lists_own_clients(self, client: AsyncClient, graph):
        response = await client.get("/api/clients/", headers=auth_headers(graph.p1))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert [c["id"] for c in data["items"]] == ["c1"]

    async def test_supervisor_lists_team_and_pool(self, client: AsyncClient, graph):
        response = await client.get("/api/clients/", headers=auth_headers(graph.s1))

        assert response.status_code == 200
        assert {c["id"] for c in response.json()["items"]} == {"c1", "c2"}

    async def test_filter_outside_scope_is_forbidden(self, client: AsyncClient, graph):
        response = await client.get(
            "/api/clients/", params={"promoter_id": "p3"}, headers=auth_headers(graph.s1)
        )
        assert response.status_code == 403
        assert codes(response) == "NotSupervisorOf"

    async def test_search_narrows_within_scope(self, client: AsyncClient, graph):
        response = await client.get(
            "/api/clients/", params={"search": "corner"}, headers=auth_headers(graph.admin)
        )
        assert [c["id"] for c in response.json()["items"]] == ["c3"]

        response = await client.get(
            "/api/clients/", params={"search": "corner"}, headers=auth_headers(graph.s1)
        )
        assert response.json()["items"] == []

    async def test_unreadable_client_looks_missing(self, client: AsyncClient, graph):
        foreign = await client.get("/api/clients/c3", headers=auth_headers(graph.p1))
        pool = await client.get("/api/clients/c2", headers=auth_headers(graph.p1))
        missing = await client.get("/api/clients/nope", headers=auth_headers(graph.p1))

        assert foreign.status_code == pool.status_code == missing.status_code == 404
        assert codes(foreign) == codes(missing) == "RESOURCE_NOT_FOUND"

    async def test_supervisor_reads_team_client(self, client: AsyncClient, graph):
        response = await client.get("/api/clients/c1", headers=auth_headers(graph.s1))
        assert response.status_code == 200
        assert response.json()["promoter_id"] == "p1"

    async def test_viewer_reads_but_cannot_edit(self, client: AsyncClient, graph):
        headers = auth_headers(graph.viewer)
        assert (await client.get("/api/clients/c4", headers=headers)).status_code == 200

        response = await client.patch("/api/clients/c4", json={"notes": "x"}, headers=headers)
        assert response.status_code == 403
        assert codes(response) == "RoleNotPermitted"

    async def test_supervisor_cannot_edit_pool_client(self, client: AsyncClient, graph):
        response = await client.patch(
            "/api/clients/c2", json={"notes": "x"}, headers=auth_headers(graph.s1)
        )
        assert response.status_code == 403
        assert codes(response) == "NotSupervisorOf"

    async def test_promoter_creates_owned_client(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/clients/",
            json={"name": "New Shop", "promoter_id": "p2"},
            headers=auth_headers(graph.p1),
        )
        assert response.status_code == 201
        assert response.json()["promoter_id"] == "p1"

    async def test_supervisor_creates_for_own_promoter_only(self, client: AsyncClient, graph):
        headers = auth_headers(graph.s1)
        ok = await client.post(
            "/api/clients/", json={"name": "A", "promoter_id": "p2"}, headers=headers
        )
        pooled = await client.post("/api/clients/", json={"name": "B"}, headers=headers)
        foreign = await client.post(
            "/api/clients/", json={"name": "C", "promoter_id": "p3"}, headers=headers
        )
        invalid = await client.post(
            "/api/clients/", json={"name": "D", "promoter_id": "s2"}, headers=headers
        )

        assert ok.status_code == 201
        assert pooled.status_code == 201
        assert pooled.json()["promoter_id"] is None
        assert foreign.status_code == 403
        assert codes(foreign) == "NotSupervisorOf"
        assert invalid.status_code == 400
        assert codes(invalid) == "InvalidPromoter"

    async def test_null_name_rejected_before_write(self, client: AsyncClient, graph):
        headers = auth_headers(graph.p1)
        response = await client.patch("/api/clients/c1", json={"name": None}, headers=headers)
        assert response.status_code == 422
        assert codes(response) == "VALIDATION_ERROR"

        stored = await client.get("/api/clients/c1", headers=headers)
        assert stored.json()["name"] == "Kiosk One"

    async def test_soft_delete(self, client: AsyncClient, graph):
        headers = auth_headers(graph.p1)
        response = await client.delete("/api/clients/c1", headers=headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        listed = await client.get("/api/clients/", headers=headers)
        assert listed.json()["total"] == 0
        listed = await client.get(
            "/api/clients/", params={"include_inactive": True}, headers=headers
        )
        assert listed.json()["total"] == 1

    async def test_reassign_from_pool(self, client: AsyncClient, graph):
        response = await client.patch(
            "/api/clients/c2/promoter",
            json={"promoter_id": "p2"},
            headers=auth_headers(graph.s1),
        )
        assert response.status_code == 200
        assert response.json()["promoter_id"] == "p2"

    async def test_promoter_cannot_reassign_own_client(self, client: AsyncClient, graph):
        response = await client.patch(
            "/api/clients/c1/promoter",
            json={"promoter_id": "p2"},
            headers=auth_headers(graph.p1),
        )
        assert response.status_code == 403
        assert codes(response) == "RoleNotPermitted"

    async def test_batch_reassign_is_all_or_nothing(self, client: AsyncClient, graph):
        headers = auth_headers(graph.s1)
        response = await client.post(
            "/api/clients/reassign",
            json={"client_ids": ["c2", "c3"], "promoter_id": "p2"},
            headers=headers,
        )
        assert response.status_code == 404

        pool = await client.get("/api/clients/c2", headers=headers)
        assert pool.json()["promoter_id"] is None

        response = await client.post(
            "/api/clients/reassign",
            json={"client_ids": ["c1", "c2"], "promoter_id": "p2"},
            headers=headers,
        )
        assert response.status_code == 200
        assert {c["promoter_id"] for c in response.json()} == {"p2"}


@pytest.mark.integration
@pytest.mark.asyncio
class TestVisitEndpoints:
    async def test_visit_on_unassigned_client_denied(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/visits/",
            json={"client_id": "c2", "notes": "Dropped by"},
            headers=auth_headers(graph.p1),
        )
        assert response.status_code == 403
        assert codes(response) == "VisitRequiresAssignedClient"

    async def test_promoter_logs_visit_on_own_client(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/visits/",
            json={
                "client_id": "c1",
                "notes": "Shelf audit",
                "latitude": -23.55,
                "longitude": -46.63,
                "photos": ["https://cdn.example.com/1.jpg"],
            },
            headers=auth_headers(graph.p1),
        )
        assert response.status_code == 201
        data = response.json()
        assert data["promoter_id"] == "p1"
        assert data["status"] == "COMPLETED"

    async def test_visit_on_foreign_or_missing_client(self, client: AsyncClient, graph):
        headers = auth_headers(graph.p1)
        foreign = await client.post(
            "/api/visits/", json={"client_id": "c3", "notes": "x"}, headers=headers
        )
        missing = await client.post(
            "/api/visits/", json={"client_id": "nope", "notes": "x"}, headers=headers
        )
        assert foreign.status_code == missing.status_code == 403
        assert codes(foreign) == codes(missing) == "ClientNotOwned"

    async def test_supervisor_cannot_log_visits(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/visits/",
            json={"client_id": "c1", "notes": "x"},
            headers=auth_headers(graph.s1),
        )
        assert response.status_code == 403
        assert codes(response) == "RoleNotPermitted"

    async def test_non_promoters_cannot_tell_which_clients_exist(
        self, client: AsyncClient, graph
    ):
        for user in (graph.s1, graph.viewer):
            headers = auth_headers(user)
            answers = [
                await client.post(
                    "/api/visits/", json={"client_id": client_id, "notes": "x"},
                    headers=headers,
                )
                for client_id in ("c3", "does-not-exist", "c2")
            ]
            assert {r.status_code for r in answers} == {403}
            foreign, missing, pool = (r.json() for r in answers)
            assert foreign == missing == pool
            assert foreign["error"]["code"] == "RoleNotPermitted"

    async def test_admin_logs_on_behalf_of_owner(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/visits/",
            json={"client_id": "c1", "notes": "Back office entry"},
            headers=auth_headers(graph.admin),
        )
        assert response.status_code == 201
        assert response.json()["promoter_id"] == "p1"

    async def test_coordinates_validated(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/visits/",
            json={"client_id": "c1", "notes": "x", "latitude": 123},
            headers=auth_headers(graph.p1),
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("field", ["notes", "status", "photos"])
    async def test_null_update_rejected(self, client: AsyncClient, graph, field):
        response = await client.patch(
            "/api/visits/v1", json={field: None}, headers=auth_headers(graph.p1)
        )
        assert response.status_code == 422
        assert codes(response) == "VALIDATION_ERROR"

    async def test_visit_scopes(self, client: AsyncClient, graph):
        s1 = await client.get("/api/visits/", headers=auth_headers(graph.s1))
        viewer = await client.get("/api/visits/", headers=auth_headers(graph.viewer))
        admin = await client.get("/api/visits/", headers=auth_headers(graph.admin))

        assert [v["id"] for v in s1.json()["items"]] == ["v1"]
        assert viewer.json()["items"] == []
        assert admin.json()["total"] == 2

    async def test_single_visit_access(self, client: AsyncClient, graph):
        foreign = await client.get("/api/visits/v3", headers=auth_headers(graph.p1))
        assert foreign.status_code == 404

        update = await client.patch(
            "/api/visits/v1", json={"status": "CANCELLED"}, headers=auth_headers(graph.s1)
        )
        assert update.status_code == 200
        assert update.json()["status"] == "CANCELLED"
        assert update.json()["promoter_id"] == "p1"

        delete = await client.delete("/api/visits/v1", headers=auth_headers(graph.p1))
        assert delete.status_code == 204
        gone = await client.get("/api/visits/v1", headers=auth_headers(graph.admin))
        assert gone.status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
class TestAdminEndpoints:
    async def test_user_listing_requires_admin(self, client: AsyncClient, graph):
        denied = await client.get("/api/admin/users", headers=auth_headers(graph.s1))
        assert denied.status_code == 403
        assert codes(denied) == "RoleNotPermitted"

        response = await client.get("/api/admin/users", headers=auth_headers(graph.admin))
        assert response.status_code == 200
        assert response.json()["total"] == 9

        promoters = await client.get(
            "/api/admin/users", params={"role": "PROMOTER"}, headers=auth_headers(graph.admin)
        )
        assert promoters.json()["total"] == 5

    async def test_last_admin_cannot_be_deactivated(self, client: AsyncClient, graph):
        headers = auth_headers(graph.admin)
        detail = await client.get("/api/admin/users/admin", headers=headers)
        assert detail.json()["admin_guard"] == "IsLastAdmin"

        response = await client.patch(
            "/api/admin/users/admin/status", json={"is_active": False}, headers=headers
        )
        assert response.status_code == 409
        assert codes(response) == "LastAdministrator"

        # Still active, so the same token keeps working.
        detail = await client.get("/api/admin/users/admin", headers=headers)
        assert detail.json()["user"]["is_active"] is True

    async def test_user_detail_is_documented(self, client: AsyncClient, graph):
        response = await client.get("/api/admin/users/p1", headers=auth_headers(graph.admin))
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"user", "admin_guard"}
        assert data["admin_guard"] == "HasOtherAdmin"
        assert data["user"]["supervisor_id"] == "s1"

        schema = (await client.get("/openapi.json")).json()
        ok = schema["paths"]["/api/admin/users/{user_id}"]["get"]["responses"]["200"]
        assert ok["content"]["application/json"]["schema"]["$ref"].endswith("/UserDetail")

    async def test_create_user_and_assign_supervisor(self, client: AsyncClient, graph):
        headers = auth_headers(graph.admin)
        response = await client.post(
            "/api/admin/users",
            json={"email": "new@fieldvisit.io", "name": "New", "role": "PROMOTER",
                  "supervisor_id": "s2"},
            headers=headers,
        )
        assert response.status_code == 201
        user_id = response.json()["id"]
        assert response.json()["supervisor_id"] == "s2"

        moved = await client.patch(
            f"/api/admin/users/{user_id}/supervisor",
            json={"supervisor_id": "s1"},
            headers=headers,
        )
        assert moved.json()["supervisor_id"] == "s1"

        released = await client.patch(
            f"/api/admin/users/{user_id}/supervisor",
            json={"supervisor_id": None},
            headers=headers,
        )
        assert released.json()["supervisor_id"] is None

    async def test_create_user_rejects_bad_supervisor(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/admin/users",
            json={"email": "x@fieldvisit.io", "name": "X", "role": "PROMOTER",
                  "supervisor_id": "p1"},
            headers=auth_headers(graph.admin),
        )
        assert response.status_code == 400
        assert codes(response) == "InvalidSupervisor"

    async def test_role_change_takes_effect_immediately(self, client: AsyncClient, graph):
        old_token = auth_headers(graph.p2)
        response = await client.patch(
            "/api/admin/users/p2/role",
            json={"role": "SUPERVISOR"},
            headers=auth_headers(graph.admin),
        )
        assert response.status_code == 200

        # The token still claims PROMOTER; the stored role wins.
        promoters = await client.get("/api/supervisor/promoters", headers=old_token)
        assert promoters.status_code == 200
        assert promoters.json() == []

    async def test_orphaning_role_change_conflicts(self, client: AsyncClient, graph):
        response = await client.patch(
            "/api/admin/users/p1/role",
            json={"role": "VIEWER"},
            headers=auth_headers(graph.admin),
        )
        assert response.status_code == 409
        assert codes(response) == "OrphanedOwnership"

    async def test_deactivated_user_is_locked_out(self, client: AsyncClient, graph):
        response = await client.patch(
            "/api/admin/users/p_free/status",
            json={"is_active": False},
            headers=auth_headers(graph.admin),
        )
        assert response.status_code == 200

        response = await client.get("/api/clients/", headers=auth_headers(graph.p_free))
        assert response.status_code == 401


@pytest.mark.integration
@pytest.mark.asyncio
class TestSupervisorEndpoints:
    async def test_lists_own_promoters(self, client: AsyncClient, graph):
        response = await client.get("/api/supervisor/promoters", headers=auth_headers(graph.s1))
        assert response.status_code == 200
        assert [u["id"] for u in response.json()] == ["p1", "p2"]

        viewer = await client.get(
            "/api/supervisor/promoters", headers=auth_headers(graph.viewer)
        )
        assert [u["id"] for u in viewer.json()] == ["p4"]

    async def test_promoter_cannot_list_promoters(self, client: AsyncClient, graph):
        response = await client.get("/api/supervisor/promoters", headers=auth_headers(graph.p1))
        assert response.status_code == 403

    async def test_claim_and_release(self, client: AsyncClient, graph):
        headers = auth_headers(graph.s1)
        claimed = await client.post(
            "/api/supervisor/promoters/assign", json={"promoter_id": "p_free"}, headers=headers
        )
        assert claimed.status_code == 200
        assert claimed.json()["supervisor_id"] == "s1"

        poached = await client.post(
            "/api/supervisor/promoters/assign", json={"promoter_id": "p3"}, headers=headers
        )
        assert poached.status_code == 403
        assert codes(poached) == "NotSupervisorOf"

        released = await client.delete("/api/supervisor/promoters/p2", headers=headers)
        assert released.status_code == 200
        assert released.json()["supervisor_id"] is None

        foreign = await client.delete("/api/supervisor/promoters/p3", headers=headers)
        assert foreign.status_code == 404

    async def test_viewer_cannot_claim(self, client: AsyncClient, graph):
        response = await client.post(
            "/api/supervisor/promoters/assign",
            json={"promoter_id": "p_free"},
            headers=auth_headers(graph.viewer),
        )
        assert response.status_code == 403
        assert codes(response) == "RoleNotPermitted"


@pytest.mark.integration
@pytest.mark.asyncio
class TestUserProfile:
    async def test_reads_own_profile(self, client: AsyncClient, graph):
        response = await client.get("/api/users/me", headers=auth_headers(graph.p1))
        assert response.status_code == 200
        assert response.json()["id"] == "p1"
        assert response.json()["supervisor_id"] == "s1"

    async def test_edits_own_profile_fields(self, client: AsyncClient, graph):
        headers = auth_headers(graph.p1)
        response = await client.patch(
            "/api/users/me", json={"name": "Paula", "phone": "+5511999"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Paula"
        assert response.json()["role"] == "PROMOTER"

        rejected = await client.patch("/api/users/me", json={"name": None}, headers=headers)
        assert rejected.status_code == 422

    async def test_profile_cannot_change_role(self, client: AsyncClient, graph):
        response = await client.patch(
            "/api/users/me", json={"role": "ADMIN"}, headers=auth_headers(graph.p1)
        )
        assert response.status_code == 200
        assert response.json()["role"] == "PROMOTER"

    async def test_overseers_read_their_promoters_only(self, client: AsyncClient, graph):
        own = await client.get("/api/users/p2", headers=auth_headers(graph.s1))
        assert own.status_code == 200

        viewer = await client.get("/api/users/p4", headers=auth_headers(graph.viewer))
        assert viewer.status_code == 200

        foreign = await client.get("/api/users/p3", headers=auth_headers(graph.s1))
        missing = await client.get("/api/users/ghost", headers=auth_headers(graph.s1))
        assert foreign.status_code == missing.status_code == 404
        assert codes(foreign) == codes(missing) == "RESOURCE_NOT_FOUND"

    async def test_promoter_cannot_read_peers(self, client: AsyncClient, graph):
        response = await client.get("/api/users/p2", headers=auth_headers(graph.p1))
        assert response.status_code == 404

        self_read = await client.get("/api/users/p1", headers=auth_headers(graph.p1))
        assert self_read.status_code == 200


@pytest.mark.integration
@pytest.mark.asyncio
class TestStatsEndpoints:
    async def test_visit_stats_per_tier(self, client: AsyncClient, graph):
        expected = {graph.admin: 2, graph.s1: 1, graph.viewer: 0, graph.p1: 1, graph.p2: 0}
        for user, total in expected.items():
            response = await client.get("/api/visits/stats", headers=auth_headers(user))
            assert response.status_code == 200
            data = response.json()
            assert data["total"] == total
            assert sum(data["by_status"].values()) == total
            assert sum(d["count"] for d in data["last_7_days"]) == total

        admin = await client.get("/api/visits/stats", headers=auth_headers(graph.admin))
        assert admin.json()["by_status"] == {"COMPLETED": 2}

    async def test_visit_stats_filter_outside_scope_is_forbidden(
        self, client: AsyncClient, graph
    ):
        supervisor = await client.get(
            "/api/visits/stats", params={"promoter_id": "p3"}, headers=auth_headers(graph.s1)
        )
        assert supervisor.status_code == 403
        assert codes(supervisor) == "NotSupervisorOf"

        promoter = await client.get(
            "/api/visits/stats", params={"promoter_id": "p3"}, headers=auth_headers(graph.p1)
        )
        assert promoter.status_code == 403
        assert codes(promoter) == "NotOwner"

        own = await client.get(
            "/api/visits/stats", params={"promoter_id": "p2"}, headers=auth_headers(graph.s1)
        )
        assert own.json()["total"] == 0

        admin = await client.get(
            "/api/visits/stats", params={"promoter_id": "p3"}, headers=auth_headers(graph.admin)
        )
        assert admin.json()["total"] == 1

    async def test_client_stats_per_tier(self, client: AsyncClient, graph):
        expected = {
            graph.admin: {"total": 4, "active": 4, "unassigned": 1},
            graph.s1: {"total": 2, "active": 2, "unassigned": 1},
            graph.viewer: {"total": 1, "active": 1, "unassigned": 0},
            graph.p1: {"total": 1, "active": 1, "unassigned": 0},
        }
        for user, stats in expected.items():
            response = await client.get("/api/clients/stats", headers=auth_headers(user))
            assert response.status_code == 200
            assert response.json() == stats

        denied = await client.get(
            "/api/clients/stats", params={"promoter_id": "p4"}, headers=auth_headers(graph.s1)
        )
        assert denied.status_code == 403
        assert codes(denied) == "NotSupervisorOf"

    async def test_supervisor_stats(self, client: AsyncClient, graph):
        response = await client.get("/api/supervisor/stats", headers=auth_headers(graph.s1))
        assert response.status_code == 200
        data = response.json()
        assert data["promoters"] == data["active_promoters"] == 2
        assert data["clients"]["total"] == 2
        assert data["visits"]["total"] == 1
        assert data["visits_by_promoter"] == {"p1": 1}

        viewer = await client.get("/api/supervisor/stats", headers=auth_headers(graph.viewer))
        assert viewer.json()["promoters"] == 1
        assert viewer.json()["clients"]["total"] == 1
        assert viewer.json()["visits_by_promoter"] == {}

        for user in (graph.p1, graph.admin):
            denied = await client.get("/api/supervisor/stats", headers=auth_headers(user))
            assert denied.status_code == 403
            assert codes(denied) == "RoleNotPermitted"

    async def test_admin_stats(self, client: AsyncClient, graph):
        response = await client.get("/api/admin/stats", headers=auth_headers(graph.admin))
        assert response.status_code == 200
        data = response.json()
        assert data["users"] == data["active_users"] == 9
        assert data["users_by_role"] == {
            "ADMIN": 1, "SUPERVISOR": 2, "VIEWER": 1, "PROMOTER": 5,
        }
        assert data["promoters_visiting"] == 2
        assert data["clients"]["total"] == 4
        assert data["visits"]["total"] == 2

        denied = await client.get("/api/admin/stats", headers=auth_headers(graph.s1))
        assert denied.status_code == 403
        assert codes(denied) == "RoleNotPermitted"


@pytest.mark.integration
@pytest.mark.asyncio
class TestAuthentication:
    async def test_missing_token(self, client: AsyncClient, graph):
        response = await client.get("/api/clients/")
        assert response.status_code == 401

    async def test_unknown_user(self, client: AsyncClient, graph):
        response = await client.get(
            "/api/clients/", headers=auth_headers(make_user("ghost", Role.ADMIN))
        )
        assert response.status_code == 401

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_error_envelope_documented(self, client: AsyncClient):
        schema = (await client.get("/openapi.json")).json()
        assert "ErrorResponse" in schema["components"]["schemas"]

        responses = schema["paths"]["/api/clients/{client_id}"]["get"]["responses"]
        assert {"403", "404"} <= set(responses)
