"""
Unit tests for RBAC management: the manager, the indexed paginator and the
aiohttp management handler.
"""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from cairn.exceptions import InvalidInputError, NotAllowedError
from cairn.sdk.rbac import RbacManager, make_indexed_paginator, sanitize_binding

TENANT_INPUT = {"tenant": "acme", "subject": "alice"}
COOKIE = {"Cookie": "user=acme / alice"}

USERS = ["alice", "bob", "bryan", "emily", "harold", "vivian"]


def allow_management(service, allowed=True):
    service.respond("POST", "data/rbac/manage/allow", body={"result": allowed})


def user_producer(offset, limit, authz_input, request):
    return USERS[offset:offset + limit] if limit else USERS[offset:]


class TestRbacManager:
    """Test RBAC manager operations."""

    @pytest.mark.asyncio
    async def test_get_roles(self, policy_service, policy_client):
        allow_management(policy_service)
        policy_service.respond("POST", "data/rbac/roles", body={"result": ["ADMIN", "VIEWER"]})

        roles = await RbacManager(policy_client).get_roles(TENANT_INPUT)

        assert roles == ["ADMIN", "VIEWER"]
        (authz,) = policy_service.calls_to("POST", "data/rbac/manage/allow")
        assert authz.json() == {"input": TENANT_INPUT}

    @pytest.mark.asyncio
    async def test_not_allowed(self, policy_service, policy_client):
        allow_management(policy_service, allowed=False)

        with pytest.raises(NotAllowedError):
            await RbacManager(policy_client).get_roles(TENANT_INPUT)

        assert policy_service.calls_to("POST", "data/rbac/roles") == []

    @pytest.mark.asyncio
    async def test_list_user_bindings(self, policy_service, policy_client):
        allow_management(policy_service)
        policy_service.respond("GET", "data/rbac/user_bindings/acme/alice", body={"result": ["ADMIN"]})

        bindings = await RbacManager(policy_client).list_user_bindings(TENANT_INPUT, ["alice", "bob"])

        assert bindings == [
            {"id": "alice", "roles": ["ADMIN"]},
            {"id": "bob", "roles": []},
        ]

    @pytest.mark.asyncio
    async def test_binding_requires_tenant(self, policy_service, policy_client):
        allow_management(policy_service)

        with pytest.raises(InvalidInputError):
            await RbacManager(policy_client).get_user_binding({"subject": "alice"}, "bob")

    @pytest.mark.asyncio
    async def test_put_and_delete_binding(self, policy_service, policy_client):
        allow_management(policy_service)
        policy_service.respond("PUT", "data/rbac/user_bindings/acme/bob", body={"version": 1})
        policy_service.respond("DELETE", "data/rbac/user_bindings/acme/bob", body={"version": 2})
        manager = RbacManager(policy_client)

        await manager.put_user_binding(TENANT_INPUT, "bob", ["VIEWER"])
        await manager.delete_user_binding(TENANT_INPUT, "bob")

        (put,) = policy_service.calls_to("PUT", "data/rbac/user_bindings/acme/bob")
        assert put.json() == ["VIEWER"]
        assert len(policy_service.calls_to("DELETE", "data/rbac/user_bindings/acme/bob")) == 1
        assert "rbac-set-binding" in [t for t, _ in policy_client.events]


class TestIndexedPaginator:
    """Test the 1-based indexed paginator."""

    @pytest.mark.asyncio
    async def test_pages(self):
        paginate = make_indexed_paginator(2, user_producer, lambda authz_input, request: len(USERS))

        assert await paginate("1", TENANT_INPUT) == {"result": ["alice", "bob"], "page": {"index": 1, "total": 3}}
        assert await paginate("3", TENANT_INPUT) == {"result": ["harold", "vivian"], "page": {"index": 3, "total": 3}}

    @pytest.mark.asyncio
    async def test_missing_and_low_page_is_first(self):
        paginate = make_indexed_paginator(2, user_producer)

        assert (await paginate(None, TENANT_INPUT))["page"] == {"index": 1, "total": None}
        assert (await paginate("-4", TENANT_INPUT))["result"] == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_zero_page_size_disables_paging(self):
        paginate = make_indexed_paginator(0, user_producer)

        assert await paginate("1", TENANT_INPUT) == {"result": USERS, "page": {"index": 1, "total": 1}}

    @pytest.mark.asyncio
    async def test_async_producer(self):
        async def producer(offset, limit, authz_input, request):
            return USERS[offset:offset + limit]

        paginate = make_indexed_paginator(4, producer)

        assert (await paginate("2", TENANT_INPUT))["result"] == ["harold", "vivian"]

    @pytest.mark.asyncio
    async def test_invalid_page(self):
        paginate = make_indexed_paginator(2, user_producer)

        with pytest.raises(InvalidInputError, match="'page' is not a valid number"):
            await paginate("two", TENANT_INPUT)


class TestSanitizeBinding:
    """Test binding body validation."""

    def test_valid(self):
        assert sanitize_binding('["ADMIN", "VIEWER"]') == ["ADMIN", "VIEWER"]

    @pytest.mark.parametrize("body", ["", "{}", '"ADMIN"', "[1]", "[not json"])
    def test_invalid(self, body):
        with pytest.raises(InvalidInputError):
            sanitize_binding(body)


@pytest_asyncio.fixture
async def rbac_http(policy_client):
    """Factory mounting client.manage_rbac(...) under ``/rbac``; returns a TestClient."""
    clients = []

    async def make(**kwargs) -> TestClient:
        app = web.Application()
        app.router.add_route("*", "/rbac/{tail:.*}", policy_client.manage_rbac(**kwargs))
        client = TestClient(TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield make

    for client in clients:
        await client.close()


class TestRbacHandler:
    """Test the RBAC management endpoint."""

    @pytest.mark.asyncio
    async def test_get_roles(self, policy_service, rbac_http):
        allow_management(policy_service)
        policy_service.respond("POST", "data/rbac/roles", body={"result": ["ADMIN"]})
        http = await rbac_http()

        response = await http.get("/rbac/roles", headers=COOKIE)

        assert response.status == 200
        assert await response.json() == {"result": ["ADMIN"]}
        (authz,) = policy_service.calls_to("POST", "data/rbac/manage/allow")
        assert authz.json() == {"input": {"tenant": "acme", "subject": "alice"}}

    @pytest.mark.asyncio
    async def test_list_user_bindings_paginated(self, policy_service, rbac_http):
        allow_management(policy_service)
        policy_service.respond("GET", "data/rbac/user_bindings/acme/bryan", body={"result": ["VIEWER"]})
        http = await rbac_http(paginate_users=make_indexed_paginator(2, user_producer))

        response = await http.get("/rbac/user_bindings?page=2", headers=COOKIE)

        assert response.status == 200
        assert await response.json() == {
            "result": [{"id": "bryan", "roles": ["VIEWER"]}, {"id": "emily", "roles": []}],
            "page": {"index": 2, "total": None},
        }

    @pytest.mark.asyncio
    async def test_list_without_paginator_is_not_found(self, rbac_http):
        http = await rbac_http()

        response = await http.get("/rbac/user_bindings", headers=COOKIE)

        assert response.status == 404
        assert await response.text() == "Not Found"

    @pytest.mark.asyncio
    async def test_get_user_binding(self, policy_service, rbac_http):
        allow_management(policy_service)
        policy_service.respond("GET", "data/rbac/user_bindings/acme/bob", body={"result": ["ADMIN"]})
        http = await rbac_http()

        response = await http.get("/rbac/user_bindings/bob", headers=COOKIE)

        assert await response.json() == {"result": ["ADMIN"]}

    @pytest.mark.asyncio
    async def test_put_user_binding(self, policy_service, rbac_http):
        allow_management(policy_service)
        policy_service.respond("PUT", "data/rbac/user_bindings/acme/bob", body={"version": 1})
        seen = []

        def on_set_binding(user_id, roles):
            seen.append((user_id, roles))
            return True

        http = await rbac_http(on_set_binding=on_set_binding)

        response = await http.put("/rbac/user_bindings/bob", json=["ADMIN"], headers=COOKIE)

        assert response.status == 200
        assert seen == [("bob", ["ADMIN"])]
        (put,) = policy_service.calls_to("PUT", "data/rbac/user_bindings/acme/bob")
        assert put.json() == ["ADMIN"]

    @pytest.mark.asyncio
    async def test_rejected_binding_is_invalid_request(self, policy_service, rbac_http):
        allow_management(policy_service)
        http = await rbac_http(on_set_binding=lambda user_id, roles: False)

        response = await http.put("/rbac/user_bindings/bob", json=["ADMIN"], headers=COOKIE)

        assert response.status == 400
        assert await response.text() == "Invalid request"
        assert policy_service.calls_to("PUT", "data/rbac/user_bindings/acme/bob") == []

    @pytest.mark.asyncio
    async def test_non_list_binding_is_invalid_request(self, policy_service, rbac_http):
        allow_management(policy_service)
        http = await rbac_http()

        response = await http.put("/rbac/user_bindings/bob", json={"roles": ["ADMIN"]}, headers=COOKIE)

        assert response.status == 400

    @pytest.mark.asyncio
    async def test_delete_user_binding(self, policy_service, rbac_http):
        allow_management(policy_service)
        policy_service.respond("DELETE", "data/rbac/user_bindings/acme/bob", body={"version": 2})
        http = await rbac_http()

        response = await http.delete("/rbac/user_bindings/bob", headers=COOKIE)

        assert response.status == 200

    @pytest.mark.asyncio
    async def test_not_allowed_is_forbidden(self, policy_service, policy_client, rbac_http):
        allow_management(policy_service, allowed=False)
        http = await rbac_http()

        response = await http.get("/rbac/roles", headers=COOKIE)

        assert response.status == 403
        assert await response.text() == "Forbidden"
        assert policy_client.events[-1][0] == "rbac"

    @pytest.mark.asyncio
    async def test_unavailable_authorization_is_internal(self, policy_service, policy_client, rbac_http):
        policy_service.respond("POST", "data/rbac/manage/allow", status=503, body="Service Unavailable")
        http = await rbac_http()

        response = await http.get("/rbac/roles", headers=COOKIE)

        assert response.status == 500
        assert await response.text() == "Error"
        assert policy_client.events[-1][0] == "rbac"

    @pytest.mark.asyncio
    async def test_failed_binding_upload_is_internal(self, policy_service, rbac_http):
        allow_management(policy_service)
        policy_service.respond("PUT", "data/rbac/user_bindings/acme/bob", status=502, body="Bad Gateway")
        http = await rbac_http()

        response = await http.put("/rbac/user_bindings/bob", json=["ADMIN"], headers=COOKIE)

        assert response.status == 500

    @pytest.mark.asyncio
    async def test_missing_session_is_invalid_request(self, policy_service, rbac_http):
        allow_management(policy_service)
        http = await rbac_http()

        response = await http.get("/rbac/user_bindings/bob")

        assert response.status == 400

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, rbac_http):
        def broken(request):
            raise RuntimeError("boom")

        http = await rbac_http(create_input=broken)

        response = await http.get("/rbac/roles")

        assert response.status == 500
        assert await response.text() == "Error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path", [
        ("GET", "/rbac/unknown"),
        ("POST", "/rbac/roles"),
        ("POST", "/rbac/user_bindings/bob"),
    ])
    async def test_unknown_route(self, rbac_http, method, path):
        http = await rbac_http()

        response = await http.request(method, path, headers=COOKIE)

        assert response.status == 404
