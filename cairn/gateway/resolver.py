"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Gateway resolution with single-flight bootstrap and cached organization.

The bootstrap endpoint is called at most once per resolver; concurrent
first-time callers share a single in-flight fetch. The gateway list is then
organized either before it is handed out (synchronous mode) or in the
background while the bootstrap order serves traffic (asynchronous mode).
"""

import asyncio
from enum import Enum
from typing import List, Optional, Sequence

from cairn.exceptions import HttpError, NoGatewaysError
from cairn.gateway.models import Gateway, parse_bootstrap_response
from cairn.gateway.organizers import OrganizerRegistry
from cairn.gateway.transport import HttpTransport
from cairn.logging_config import get_logger

logger = get_logger(__name__)

GATEWAYS_PATH = "/gateways"


class ResolutionState(Enum):
    """Population state of a resolver's gateway cache."""
    EMPTY = "empty"
    PENDING = "pending"
    POPULATED = "populated"


class GatewayResolver:
    """
    Provides a client's ordered gateway list.

    State is owned exclusively by the resolver: the raw (bootstrap order)
    list, the organized list once available, and the in-flight bootstrap
    task while one is pending. A failed bootstrap returns the resolver to
    EMPTY so that a later call tries again; a successful one is kept until
    invalidate() is called.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        transport: HttpTransport,
        registry: OrganizerRegistry,
        strategy_names: Sequence[str] = ("none",),
        strategy_timeout_ms: int = 0,
        async_organization: bool = True,
    ):
        """
        Initialize GatewayResolver.

        Args:
            base_url: Base URL of the service; the list is read from ``<base_url>/gateways``
            token: Bearer token for the bootstrap call
            transport: HTTP transport
            registry: Organizer registry applying the strategy chain
            strategy_names: Organizer strategy names, in order of preference
            strategy_timeout_ms: Per-strategy time budget; <= 0 disables it
            async_organization: Organize in the background instead of
                blocking the first resolution
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.transport = transport
        self.registry = registry
        self.strategy_names = list(strategy_names)
        self.strategy_timeout_ms = strategy_timeout_ms
        self.async_organization = async_organization

        self._state = ResolutionState.EMPTY
        self._raw: Optional[List[Gateway]] = None
        self._organized: Optional[List[Gateway]] = None
        self._pending: Optional[asyncio.Future] = None
        self._organizing: Optional[asyncio.Task] = None
        self._generation = 0
        self.bootstrap_count = 0

    @property
    def state(self) -> ResolutionState:
        return self._state

    @property
    def organizing(self) -> Optional[asyncio.Task]:
        """Background organization task, if one was started."""
        return self._organizing

    async def get_gateways(self) -> List[Gateway]:
        """
        Get the current gateway list.

        Returns:
            The organized list if organization has completed, else the
            bootstrap order

        Raises:
            NoGatewaysError: If the bootstrap yielded no usable gateway
            HttpError: If the bootstrap call was rejected
            TransportError: If the bootstrap call could not be sent
        """
        # A fetch made stale by invalidate() leaves the resolver unpopulated;
        # its waiters then join or start the fetch of the current generation.
        while self._state is not ResolutionState.POPULATED:
            if self._pending is None:
                self._state = ResolutionState.PENDING
                self._pending = asyncio.ensure_future(self._populate(self._generation))

            # Shielded so that a cancelled caller does not cancel the shared fetch.
            await asyncio.shield(self._pending)

        return self._current()

    def seed(self, gateways: Sequence[Gateway]) -> None:
        """
        Install a fixed gateway list, bypassing bootstrap and organization.

        Args:
            gateways: Gateway list to serve as-is
        """
        self._generation += 1
        self._raw = list(gateways)
        self._organized = None
        self._pending = None
        self._state = ResolutionState.POPULATED
        logger.info(f"Gateway list seeded with {len(self._raw)} gateway(s)")

    def invalidate(self) -> None:
        """
        Drop the cached gateway lists.

        The next get_gateways() call fetches a fresh list from the bootstrap
        endpoint. Results of work started before invalidation are discarded.
        """
        self._generation += 1
        self._raw = None
        self._organized = None
        self._pending = None
        self._organizing = None
        self._state = ResolutionState.EMPTY
        logger.info("Gateway list invalidated")

    def _current(self) -> List[Gateway]:
        gateways = self._organized if self._organized is not None else self._raw
        if not gateways:
            raise NoGatewaysError()
        return list(gateways)

    async def _populate(self, generation: int) -> None:
        try:
            raw = await self._fetch_gateways()
            if not raw:
                raise NoGatewaysError("Gateway list response contained no usable gateways")

            organized: Optional[List[Gateway]] = None
            if not self.async_organization:
                organized = await self.registry.organize(
                    raw, self.strategy_names, self.strategy_timeout_ms
                )
        except BaseException:
            if generation == self._generation:
                self._pending = None
                self._state = ResolutionState.EMPTY
            raise

        if generation != self._generation:
            return

        self._raw = raw
        self._organized = organized
        self._pending = None
        self._state = ResolutionState.POPULATED

        if self.async_organization:
            self._organizing = asyncio.ensure_future(self._organize_in_background(raw, generation))

    async def _organize_in_background(self, raw: List[Gateway], generation: int) -> None:
        try:
            organized = await self.registry.organize(
                raw, self.strategy_names, self.strategy_timeout_ms
            )
        except Exception:
            logger.error("Background gateway organization failed", exc_info=True)
            return

        if organized is not None and generation == self._generation:
            self._organized = organized
            logger.info(f"Gateway list organized: {[str(g) for g in organized]}")

    async def _fetch_gateways(self) -> List[Gateway]:
        url = f"{self.base_url}{GATEWAYS_PATH}"
        self.bootstrap_count += 1
        logger.info(f"Fetching gateway list from {url}")

        response = await self.transport.send(
            "GET",
            url,
            headers={"authorization": f"bearer {self.token}"},
        )
        if response.status != 200:
            raise HttpError(
                f"Unexpected status code: {response.status}",
                response.status,
                response.body,
            )

        gateways = parse_bootstrap_response(response.body)
        logger.info(f"Fetched {len(gateways)} gateway(s)")
        return gateways
