"""
Shared fixtures for Cairn tests.

Real loopback HTTP servers (aiohttp TestServer) stand in for the bootstrap
endpoint, the gateways and the instance metadata service.
"""

import asyncio
import json
from typing import Any, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from cairn.gateway.models import Gateway, LocalityMetadata
from cairn.gateway.transport import HttpTransport
from cairn.sdk.client import PolicyClient

# Nothing listens on port 1; connections are refused immediately.
UNREACHABLE_URL = "http://127.0.0.1:1"


class RecordedRequest:
    """A request received by a test server."""

    def __init__(self, method: str, path: str, query: str, headers, body: str):
        self.method = method
        self.path = path
        self.query = query
        self.headers = headers
        self.body = body

    def json(self) -> Any:
        return json.loads(self.body)


def server_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}"


@pytest_asyncio.fixture
async def start_server():
    """Start an aiohttp application on a loopback port; closed after the test."""
    servers: List[TestServer] = []

    async def start(app: web.Application) -> TestServer:
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.close()


@pytest.fixture
def gateway_app():
    """
    Factory for a gateway answering every request with a fixed response.

    The returned app records received requests in ``app["calls"]``.
    """

    def make(status: int = 200, body: str = "", handler=None) -> web.Application:
        calls: List[RecordedRequest] = []

        async def handle(request: web.Request) -> web.Response:
            calls.append(RecordedRequest(
                request.method,
                request.path,
                request.query_string,
                request.headers.copy(),
                await request.text(),
            ))
            if handler is not None:
                return await handler(request)
            return web.Response(status=status, text=body)

        app = web.Application()
        app["calls"] = calls
        app.router.add_route("*", "/{tail:.*}", handle)
        return app

    return make


@pytest.fixture
def bootstrap_app():
    """
    Factory for a service answering ``GET /gateways`` with the given entries.

    ``app["hits"]`` counts bootstrap calls; ``delay`` holds each response back.
    """

    def make(entries: List[Any], status: int = 200, delay: float = 0) -> web.Application:
        hits = {"count": 0, "authorization": None}

        async def handle(request: web.Request) -> web.Response:
            hits["count"] += 1
            hits["authorization"] = request.headers.get("Authorization")
            if delay:
                await asyncio.sleep(delay)
            if status != 200:
                return web.Response(status=status, text="bootstrap failed")
            return web.json_response({"result": entries})

        app = web.Application()
        app["hits"] = hits
        app.router.add_get("/gateways", handle)
        return app

    return make


@pytest_asyncio.fixture
async def transport():
    """HTTP transport closed after the test."""
    transport = HttpTransport(timeout=5)
    yield transport
    await transport.close()


def make_gateways(*localities: Optional[tuple]) -> List[Gateway]:
    """Build gateways ``https://g<i>.example.com`` from ``(region, zone_id)`` tuples."""
    gateways = []
    for i, locality in enumerate(localities):
        region, zone_id = locality if locality else (None, None)
        gateways.append(Gateway.from_url(
            f"https://g{i}.example.com",
            LocalityMetadata(region=region, zone_id=zone_id),
        ))
    return gateways


class PolicyService:
    """
    A fake policy service whose bootstrap lists itself as the only gateway.

    Responses are registered per ``(method, path)``, where path is relative
    to the gateway prefix ``/v1/``. Unregistered requests get 404.
    """

    def __init__(self):
        self.calls: List[RecordedRequest] = []
        self.bootstrap_hits = 0
        self.url: Optional[str] = None
        self._responses = {}

        self.app = web.Application()
        self.app.router.add_get("/gateways", self._gateways)
        self.app.router.add_route("*", "/v1/{tail:.*}", self._handle)

    def respond(self, method: str, path: str, status: int = 200, body: Any = "", handler=None) -> None:
        """Register a fixed response, or an async ``handler(request_json)`` returning a document."""
        if not isinstance(body, str):
            body = json.dumps(body)
        self._responses[(method, path)] = (status, body, handler)

    def calls_to(self, method: str, path: str) -> List[RecordedRequest]:
        return [c for c in self.calls if c.method == method and c.path == f"/v1/{path}"]

    async def _gateways(self, request: web.Request) -> web.Response:
        self.bootstrap_hits += 1
        return web.json_response({"result": [{"gateway_url": f"http://{request.host}/v1"}]})

    async def _handle(self, request: web.Request) -> web.Response:
        body = await request.text()
        self.calls.append(RecordedRequest(
            request.method,
            request.path,
            request.query_string,
            request.headers.copy(),
            body,
        ))

        response = self._responses.get((request.method, request.match_info["tail"]))
        if response is None:
            return web.Response(status=404, text="Not Found")

        status, text, handler = response
        if handler is not None:
            document = await handler(json.loads(body) if body else None)
            return web.json_response(document, status=status)
        return web.Response(status=status, text=text)


@pytest_asyncio.fixture
async def policy_service(start_server):
    """A running PolicyService."""
    service = PolicyService()
    server = await start_server(service.app)
    service.url = server_url(server)
    return service


@pytest_asyncio.fixture
async def policy_client(policy_service):
    """PolicyClient bound to the policy_service fixture, recording events."""
    events: List[tuple] = []
    client = PolicyClient(
        url=policy_service.url,
        token="sk_test",
        organize_gateways_strategy="none",
        event_listeners=[lambda event_type, info: events.append((event_type, info))],
    )
    client.events = events
    yield client
    await client.close()
