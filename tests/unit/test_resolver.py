"""
Unit tests for gateway resolution.

Covers single-flight bootstrap, failure recovery, synchronous and
asynchronous organization, and invalidation.
"""

import asyncio

import pytest

from cairn.exceptions import HttpError, NoGatewaysError, TransportError
from cairn.gateway.models import Gateway
from cairn.gateway.organizers import NONE_STRATEGY, OrganizerRegistry
from cairn.gateway.resolver import GatewayResolver, ResolutionState
from tests.conftest import UNREACHABLE_URL, make_gateways, server_url

ENTRIES = [
    {"gateway_url": "https://a.example.com", "aws": {"region": "r1", "zone_id": "1"}},
    {"gateway_url": "https://b.example.com", "aws": {"region": "r2", "zone_id": "2"}},
]


def make_resolver(base_url, transport, registry=None, strategies=(NONE_STRATEGY,), **kwargs):
    return GatewayResolver(
        base_url=base_url,
        token="sk_test",
        transport=transport,
        registry=registry or OrganizerRegistry(),
        strategy_names=strategies,
        **kwargs,
    )


def hosts(gateways):
    return [g.host for g in gateways]


class TestBootstrap:
    """Test fetching the gateway list."""

    @pytest.mark.asyncio
    async def test_fetches_and_parses(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        gateways = await resolver.get_gateways()

        assert hosts(gateways) == ["a.example.com", "b.example.com"]
        assert resolver.state is ResolutionState.POPULATED
        assert app["hits"]["authorization"] == "bearer sk_test"

    @pytest.mark.asyncio
    async def test_unparseable_entries_dropped(self, start_server, bootstrap_app, transport):
        app = bootstrap_app([
            {"gateway_url": "https://a.example.com"},
            {"gateway_url": "nope"},
            {"gateway_url": None},
            {"gateway_url": "https://d.example.com"},
        ])
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        assert hosts(await resolver.get_gateways()) == ["a.example.com", "d.example.com"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES, delay=0.05)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        results = await asyncio.gather(*(resolver.get_gateways() for _ in range(10)))

        assert app["hits"]["count"] == 1
        assert resolver.bootstrap_count == 1
        assert all(hosts(r) == ["a.example.com", "b.example.com"] for r in results)

    @pytest.mark.asyncio
    async def test_populated_list_is_not_refetched(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        for _ in range(3):
            await resolver.get_gateways()

        assert app["hits"]["count"] == 1

    @pytest.mark.asyncio
    async def test_failed_fetch_is_retried_on_next_call(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES, status=503)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        with pytest.raises(HttpError) as exc_info:
            await resolver.get_gateways()
        assert exc_info.value.status_code == 503
        assert resolver.state is ResolutionState.EMPTY

        with pytest.raises(HttpError):
            await resolver.get_gateways()
        assert app["hits"]["count"] == 2

    @pytest.mark.asyncio
    async def test_unreachable_bootstrap(self, transport):
        resolver = make_resolver(UNREACHABLE_URL, transport)

        with pytest.raises(TransportError):
            await resolver.get_gateways()
        assert resolver.state is ResolutionState.EMPTY

    @pytest.mark.asyncio
    async def test_empty_list_raises(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app([{"gateway_url": "bad"}]))
        resolver = make_resolver(server_url(server), transport)

        with pytest.raises(NoGatewaysError):
            await resolver.get_gateways()

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES, delay=0.05)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        first = asyncio.ensure_future(resolver.get_gateways())
        await asyncio.sleep(0.01)
        first.cancel()

        gateways = await resolver.get_gateways()

        assert hosts(gateways) == ["a.example.com", "b.example.com"]
        assert app["hits"]["count"] == 1


class TestOrganization:
    """Test synchronous and background organization."""

    @pytest.mark.asyncio
    async def test_sync_mode_returns_organized_list(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app(ENTRIES))
        registry = OrganizerRegistry()
        registry.register_strategy("reverse", lambda g: list(reversed(g)))
        resolver = make_resolver(server_url(server), transport, registry, ["reverse"], async_organization=False)

        assert hosts(await resolver.get_gateways()) == ["b.example.com", "a.example.com"]
        assert resolver.organizing is None

    @pytest.mark.asyncio
    async def test_sync_mode_failure_keeps_raw_order(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app(ENTRIES))
        registry = OrganizerRegistry()
        calls = {"count": 0}

        def failing(gateways):
            calls["count"] += 1
            raise RuntimeError("boom")

        registry.register_strategy("failing", failing)
        resolver = make_resolver(server_url(server), transport, registry, ["failing"], async_organization=False)

        assert hosts(await resolver.get_gateways()) == ["a.example.com", "b.example.com"]
        assert hosts(await resolver.get_gateways()) == ["a.example.com", "b.example.com"]
        assert calls["count"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("async_organization", [False, True])
    async def test_strategy_dropping_gateways_is_ignored(
        self, start_server, bootstrap_app, transport, async_organization
    ):
        server = await start_server(bootstrap_app(ENTRIES))
        registry = OrganizerRegistry()
        registry.register_strategy("drop", lambda g: [])
        resolver = make_resolver(
            server_url(server), transport, registry, ["drop", NONE_STRATEGY],
            async_organization=async_organization,
        )

        await resolver.get_gateways()
        if resolver.organizing is not None:
            await resolver.organizing

        assert hosts(await resolver.get_gateways()) == ["a.example.com", "b.example.com"]

    @pytest.mark.asyncio
    async def test_async_mode_serves_raw_list_until_organized(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app(ENTRIES))
        release = asyncio.Event()
        calls = {"count": 0}

        async def slow_reverse(gateways):
            calls["count"] += 1
            await release.wait()
            return list(reversed(gateways))

        registry = OrganizerRegistry()
        registry.register_strategy("slow", slow_reverse)
        resolver = make_resolver(server_url(server), transport, registry, ["slow"], async_organization=True)

        assert hosts(await resolver.get_gateways()) == ["a.example.com", "b.example.com"]
        await asyncio.sleep(0)
        assert hosts(await resolver.get_gateways()) == ["a.example.com", "b.example.com"]

        release.set()
        await resolver.organizing

        assert hosts(await resolver.get_gateways()) == ["b.example.com", "a.example.com"]
        assert hosts(await resolver.get_gateways()) == ["b.example.com", "a.example.com"]
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_async_mode_failure_keeps_raw_order(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app(ENTRIES))
        registry = OrganizerRegistry()
        registry.register_strategy("failing", lambda g: 1 / 0)
        resolver = make_resolver(server_url(server), transport, registry, ["failing"])

        await resolver.get_gateways()
        await resolver.organizing

        assert hosts(await resolver.get_gateways()) == ["a.example.com", "b.example.com"]


class TestSeedAndInvalidate:
    """Test explicit list management."""

    @pytest.mark.asyncio
    async def test_seed_bypasses_bootstrap(self, transport):
        resolver = make_resolver(UNREACHABLE_URL, transport)
        gateways = make_gateways(None, None)

        resolver.seed(gateways)

        assert await resolver.get_gateways() == gateways
        assert resolver.bootstrap_count == 0

    @pytest.mark.asyncio
    async def test_returned_list_is_a_copy(self, transport):
        resolver = make_resolver(UNREACHABLE_URL, transport)
        resolver.seed(make_gateways(None, None))

        first = await resolver.get_gateways()
        first.append(Gateway.from_url("https://evil.example.com"))

        assert len(await resolver.get_gateways()) == 2

    @pytest.mark.asyncio
    async def test_invalidate_refetches(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        await resolver.get_gateways()
        resolver.invalidate()
        assert resolver.state is ResolutionState.EMPTY

        await resolver.get_gateways()
        assert app["hits"]["count"] == 2

    @pytest.mark.asyncio
    async def test_invalidate_during_bootstrap_refetches_for_waiters(self, start_server, bootstrap_app, transport):
        app = bootstrap_app(ENTRIES, delay=0.1)
        server = await start_server(app)
        resolver = make_resolver(server_url(server), transport)

        waiter = asyncio.ensure_future(resolver.get_gateways())
        await asyncio.sleep(0.02)
        resolver.invalidate()

        assert hosts(await waiter) == ["a.example.com", "b.example.com"]
        assert resolver.state is ResolutionState.POPULATED
        assert app["hits"]["count"] == 2

    @pytest.mark.asyncio
    async def test_seed_during_bootstrap_serves_seeded_list(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app(ENTRIES, delay=0.1))
        resolver = make_resolver(server_url(server), transport)

        waiter = asyncio.ensure_future(resolver.get_gateways())
        await asyncio.sleep(0.02)
        resolver.seed(make_gateways(None))

        assert hosts(await waiter) == ["g0.example.com"]
        assert hosts(await resolver.get_gateways()) == ["g0.example.com"]

    @pytest.mark.asyncio
    async def test_invalidate_discards_stale_background_result(self, start_server, bootstrap_app, transport):
        server = await start_server(bootstrap_app(ENTRIES))
        release = asyncio.Event()

        async def slow_reverse(gateways):
            await release.wait()
            return list(reversed(gateways))

        registry = OrganizerRegistry()
        registry.register_strategy("slow", slow_reverse)
        resolver = make_resolver(server_url(server), transport, registry, ["slow"])

        await resolver.get_gateways()
        stale = resolver.organizing
        resolver.invalidate()
        resolver.seed(make_gateways(None))

        release.set()
        await stale

        assert hosts(await resolver.get_gateways()) == ["g0.example.com"]
