"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

RBAC management on top of the Policy Client.

Roles are read from the ``rbac/roles`` policy rule and user bindings are
stored as data documents under ``rbac/user_bindings/<tenant>/<user id>``.
Every management operation is first authorized against the
``rbac/manage/allow`` rule with the caller's authorization input.
"""

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from aiohttp import web

from cairn.exceptions import CairnError, InvalidInputError, NotAllowedError
from cairn.logging_config import get_logger
from cairn.sdk.session import COOKIE

logger = get_logger(__name__)

AUTHZ_PATH = "rbac/manage/allow"
ROLES_PATH = "rbac/roles"
BINDINGS_PREFIX = "rbac/user_bindings"

RBAC_EVENT = "rbac"
GET_ROLES_EVENT = "rbac-get-roles"
GET_BINDINGS_EVENT = "rbac-get-bindings"
SET_BINDING_EVENT = "rbac-set-binding"
DELETE_BINDING_EVENT = "rbac-delete-binding"

PageResult = Dict[str, Any]
Paginator = Callable[[Optional[str], Any, Optional[web.Request]], Awaitable[PageResult]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _tenant(authz_input: Any) -> str:
    tenant = authz_input.get("tenant") if isinstance(authz_input, dict) else None
    if not tenant:
        raise InvalidInputError("Authorization input has no 'tenant'")
    return tenant


class RbacManager:
    """
    Manages roles and user bindings for a tenant.

    Args:
        client: PolicyClient
        page_size: Default page size for paginators built by this manager;
            0 disables paging
    """

    def __init__(self, client, page_size: int = 0):
        self.client = client
        self.page_size = max(page_size, 0)

    async def _authorize(self, authz_input: Any) -> None:
        await self.client.assert_allowed(AUTHZ_PATH, authz_input)

    def _binding_path(self, authz_input: Any, user_id: str) -> str:
        if not user_id:
            raise InvalidInputError("User ID is required")
        return f"{BINDINGS_PREFIX}/{_tenant(authz_input)}/{user_id}"

    async def get_roles(self, authz_input: Any) -> List[str]:
        """
        Get the roles available to the caller's tenant.

        Raises:
            NotAllowedError: If RBAC management is not allowed
            RequestFailedError: If a policy query failed
        """
        await self._authorize(authz_input)

        decision = await self.client.query(ROLES_PATH, authz_input)
        roles = decision.get("result")

        self.client.signal_event(GET_ROLES_EVENT, {"input": authz_input, "roles": roles})
        return roles

    async def list_user_bindings(self, authz_input: Any, users: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Get the role bindings of several users.

        Args:
            authz_input: Authorization input; its ``tenant`` scopes the bindings
            users: User identifiers

        Returns:
            ``{"id": ..., "roles": [...]}`` per user, in ``users`` order
        """
        await self._authorize(authz_input)

        async def fetch(user_id: str) -> Dict[str, Any]:
            document = await self.client.get_data(self._binding_path(authz_input, user_id), [])
            return {"id": user_id, "roles": document.get("result", [])}

        bindings = list(await asyncio.gather(*(fetch(user_id) for user_id in users)))

        self.client.signal_event(GET_BINDINGS_EVENT, {"input": authz_input, "bindings": bindings})
        return bindings

    async def get_user_binding(self, authz_input: Any, user_id: str) -> List[str]:
        await self._authorize(authz_input)

        document = await self.client.get_data(self._binding_path(authz_input, user_id), [])
        return document.get("result", [])

    async def put_user_binding(self, authz_input: Any, user_id: str, roles: List[str]) -> None:
        """
        Replace a user's role binding.

        Raises:
            NotAllowedError: If RBAC management is not allowed
            RequestFailedError: If the data upload failed
        """
        await self._authorize(authz_input)

        binding = {"id": user_id, "roles": roles}
        try:
            await self.client.put_data(self._binding_path(authz_input, user_id), roles)
        except CairnError as e:
            self.client.signal_event(SET_BINDING_EVENT, {"binding": binding, "input": authz_input, "err": e})
            raise

        self.client.signal_event(SET_BINDING_EVENT, {"binding": binding, "input": authz_input})
        logger.info(f"Updated role binding for user {user_id}: {roles}")

    async def delete_user_binding(self, authz_input: Any, user_id: str) -> None:
        await self._authorize(authz_input)

        await self.client.delete_data(self._binding_path(authz_input, user_id))
        self.client.signal_event(DELETE_BINDING_EVENT, {"id": user_id, "input": authz_input})
        logger.info(f"Deleted role binding for user {user_id}")


def make_indexed_paginator(
    page_size: int,
    producer: Callable[..., Union[List[str], Awaitable[List[str]]]],
    get_total_count: Optional[Callable[..., Union[int, Awaitable[int]]]] = None,
) -> Paginator:
    """
    Create a paginator over an indexed user listing.

    The ``page`` query parameter is the 1-based index of the requested page;
    a missing page means the first one.

    Args:
        page_size: Users per page; 0 disables paging
        producer: ``(offset, limit, authz_input, request) -> [user id]``; a
            limit of 0 means no limit
        get_total_count: Optional ``(authz_input, request) -> int`` used to
            report the total number of pages

    Returns:
        Async ``(page, authz_input, request) -> {"result": [...], "page": {...}}``
    """
    page_size = max(page_size, 0)

    async def paginate(page: Optional[str], authz_input: Any, request: Optional[web.Request] = None) -> PageResult:
        if page:
            try:
                index = max(int(page), 1)
            except ValueError as e:
                raise InvalidInputError("'page' is not a valid number", e) from e
        else:
            index = 1

        total_pages = None
        if page_size == 0:
            total_pages = 1
        elif get_total_count is not None:
            total_count = await _maybe_await(get_total_count(authz_input, request))
            total_pages = -(-total_count // page_size)

        offset = (index - 1) * page_size
        result = await _maybe_await(producer(offset, page_size, authz_input, request))
        return {"result": result, "page": {"index": index, "total": total_pages}}

    return paginate


def sanitize_binding(body: str) -> List[str]:
    """
    Parse the body of a binding upsert.

    Raises:
        InvalidInputError: If the body is not a JSON list of role names
    """
    try:
        roles = json.loads(body) if body else None
    except ValueError as e:
        raise InvalidInputError("Binding data is not valid JSON", e) from e

    if not isinstance(roles, list):
        raise InvalidInputError("Binding data is not an array")
    if not all(isinstance(role, str) for role in roles):
        raise InvalidInputError("Binding roles must be strings")
    return roles


class RbacHandler:
    """
    aiohttp request handler for RBAC management.

    Routes, matched on the end of the request path:

    - ``GET .../roles``
    - ``GET .../user_bindings[?page=N]`` (only with a user paginator)
    - ``GET|PUT|DELETE .../user_bindings/<id>``

    A denied management check responds 403, malformed requests 400, unknown
    routes 404 and anything else, gateway-tier failures included, 500.
    """

    def __init__(
        self,
        manager: RbacManager,
        create_input: Callable[..., Any] = COOKIE,
        paginate_users: Optional[Paginator] = None,
        on_set_binding: Optional[Callable[..., Union[bool, Awaitable[bool]]]] = None,
    ):
        self.manager = manager
        self.create_input = create_input
        self.paginate_users = paginate_users
        self.on_set_binding = on_set_binding

    async def __call__(self, request: web.Request) -> web.Response:
        return await self.handle(request)

    async def handle(self, request: web.Request) -> web.Response:
        segments = [s for s in request.path.split("/") if s]
        last = segments[-1] if segments else None
        user_id = segments[-1] if len(segments) >= 2 and segments[-2] == "user_bindings" else None

        try:
            if request.method == "GET" and last == "roles":
                authz_input = await self._authz_input(request)
                roles = await self.manager.get_roles(authz_input)
                return web.json_response({"result": roles})

            if request.method == "GET" and last == "user_bindings" and self.paginate_users is not None:
                authz_input = await self._authz_input(request)
                paged = await self.paginate_users(request.query.get("page"), authz_input, request)
                bindings = await self.manager.list_user_bindings(authz_input, paged.get("result") or [])
                return web.json_response({"result": bindings, "page": paged.get("page")})

            if user_id is not None and request.method == "GET":
                authz_input = await self._authz_input(request)
                roles = await self.manager.get_user_binding(authz_input, user_id)
                return web.json_response({"result": roles})

            if user_id is not None and request.method == "PUT":
                authz_input = await self._authz_input(request)
                roles = sanitize_binding(await request.text())
                if self.on_set_binding is not None and await _maybe_await(self.on_set_binding(user_id, roles)) is not True:
                    raise InvalidInputError("Binding rejected")
                await self.manager.put_user_binding(authz_input, user_id, roles)
                return web.Response(status=200, content_type="application/json")

            if user_id is not None and request.method == "DELETE":
                authz_input = await self._authz_input(request)
                await self.manager.delete_user_binding(authz_input, user_id)
                return web.Response(status=200, content_type="application/json")
        except Exception as e:
            return self._error_response(e)

        return web.Response(status=404, text="Not Found")

    async def _authz_input(self, request: web.Request) -> Any:
        return await _maybe_await(self.create_input(request))

    def _error_response(self, error: Exception) -> web.Response:
        self.manager.client.signal_event(RBAC_EVENT, {"err": error})

        if isinstance(error, InvalidInputError):
            logger.info(f"Invalid RBAC management request: {error}")
            return web.Response(status=400, text="Invalid request")
        if isinstance(error, NotAllowedError):
            logger.warning(f"RBAC management request rejected: {error}")
            return web.Response(status=403, text="Forbidden")

        logger.error(f"RBAC management request failed: {error}", exc_info=True)
        return web.Response(status=500, text="Error")


def make_rbac_handler(manager: RbacManager, create_input=None, paginate_users=None, on_set_binding=None) -> RbacHandler:
    """Create an aiohttp handler for RBAC management; see :class:`RbacHandler`."""
    return RbacHandler(
        manager,
        create_input=create_input or COOKIE,
        paginate_users=paginate_users,
        on_set_binding=on_set_binding,
    )
