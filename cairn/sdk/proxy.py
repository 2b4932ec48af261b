"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Policy query proxy for front-end clients.

Exposes an aiohttp handler that accepts batched policy queries from a
browser, injects server-side session information into each query's input,
and forwards them as one batch query. Only decision results are returned to
the caller; errors and other response details are dropped.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from aiohttp import web

from cairn.exceptions import CairnError, InvalidInputError
from cairn.logging_config import get_logger

logger = get_logger(__name__)

PROXY_EVENT = "proxy"

SessionInputCallback = Callable[[web.Request, str, Any], Union[Any, Awaitable[Any]]]
DoneCallback = Callable[[web.Request, List[Any]], Union[Any, Awaitable[Any]]]
ErrorCallback = Callable[[web.Request, BaseException], Union[Any, Awaitable[Any]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _forwarded_result(item: Any) -> Dict[str, Any]:
    if not isinstance(item, dict):
        return {}
    decision = item.get("check", item)
    if isinstance(decision, dict) and "result" in decision:
        return {"result": decision["result"]}
    return {}


def _parse_proxy_body(body: str):
    """
    Parse a proxy request body.

    Accepts a JSON list of ``{"path", "input"}`` queries, or an object
    ``{"items": [...], "input": ...}`` carrying a shared input.

    Returns:
        Tuple of (queries, shared input, wrapped) where ``wrapped`` tells
        whether the response must be wrapped in ``{"result": ...}``

    Raises:
        InvalidInputError: If the body is not a valid proxy request
    """
    try:
        document = json.loads(body) if body else None
    except ValueError as e:
        raise InvalidInputError("invalid proxy request", e) from e

    if isinstance(document, list):
        return document, None, False
    if isinstance(document, dict) and isinstance(document.get("items"), list):
        return document["items"], document.get("input"), True
    raise InvalidInputError("invalid proxy request")


class PolicyProxy:
    """
    Request handler forwarding front-end batch queries to the policy service.

    Args:
        client: PolicyClient used for the batch query
        on_proxy: Session input callback ``(request, path, input) -> input``;
            defaults to passing the input through unchanged
        on_done: Optional callback ``(request, results)`` after a successful proxy
        on_error: Optional callback ``(request, error)`` after a failed proxy
    """

    def __init__(
        self,
        client,
        on_proxy: Optional[SessionInputCallback] = None,
        on_done: Optional[DoneCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.client = client
        self.on_proxy = on_proxy
        self.on_done = on_done
        self.on_error = on_error

    async def __call__(self, request: web.Request) -> web.Response:
        return await self.handle(request)

    async def handle(self, request: web.Request) -> web.Response:
        if request.method != "POST":
            return web.Response(status=405, text="Method Not Allowed!", content_type="text/html")

        try:
            queries, shared_input, wrapped = _parse_proxy_body(await request.text())
        except InvalidInputError as e:
            logger.info(f"Rejected proxy request: {e}")
            return web.Response(status=400, text="invalid proxy request", content_type="text/html")

        try:
            items = [await self._prepare(request, i, query) for i, query in enumerate(queries)]
            decisions = await self.client.batch_query(items, shared_input)
            results = [_forwarded_result(item) for item in decisions]
        except Exception as e:
            logger.error(f"Proxied policy check failed: {e}")
            self.client.signal_event(PROXY_EVENT, {"query": queries, "err": e})
            if self.on_error is not None:
                await _maybe_await(self.on_error(request, e))
            return web.Response(status=500, text="policy check failed", content_type="text/html")

        self.client.signal_event(PROXY_EVENT, {"query": queries, "result": decisions})
        if self.on_done is not None:
            await _maybe_await(self.on_done(request, results))

        return web.json_response({"result": results} if wrapped else results)

    async def _prepare(self, request: web.Request, index: int, query: Any) -> Dict[str, Any]:
        if not isinstance(query, dict) or not query.get("path"):
            raise InvalidInputError(f"proxied query with index {index} has missing 'path'")

        path = query["path"]
        query_input = query.get("input")

        try:
            if self.on_proxy is not None:
                query_input = await _maybe_await(self.on_proxy(request, path, query_input))

            transformer = self.client.input_transformers.get(path)
            if transformer is not None:
                query_input = await _maybe_await(transformer(path, query_input))
        except Exception as e:
            raise CairnError(f"Error transforming input for '{path}'", e) from e

        item: Dict[str, Any] = {"path": path}
        if query_input is not None:
            item["input"] = query_input
        return item


def make_proxy_handler(client, on_proxy=None, on_done=None, on_error=None) -> PolicyProxy:
    """
    Create an aiohttp request handler proxying front-end policy queries.

    Args:
        client: PolicyClient
        on_proxy: Session input callback, e.g. CookieSessionInputStrategy()
        on_done: Optional success callback
        on_error: Optional failure callback

    Returns:
        Handler usable with ``app.router.add_route("*", path, handler)``
    """
    return PolicyProxy(client, on_proxy=on_proxy, on_done=on_done, on_error=on_error)
