"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Gateway organizer strategies.

A strategy reorders a gateway list, most commonly by locality so that
requests go to the nearest gateway first. Strategies are registered by name
and applied as an ordered fallback chain: the first one that completes in
time wins.
"""

import asyncio
import inspect
import time
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from cairn.exceptions import OrganizerTimeoutError
from cairn.gateway.metadata import MetadataFetcher
from cairn.gateway.models import Gateway
from cairn.logging_config import get_logger, log_organizer_attempt

logger = get_logger(__name__)

ORGANIZE_GATEWAYS_EVENT = "organize-gateways"

NONE_STRATEGY = "none"
AWS_STRATEGY = "aws"

OrganizerStrategy = Callable[[List[Gateway]], Union[List[Gateway], Awaitable[List[Gateway]]]]
EventListener = Callable[[str, Dict[str, Any]], None]


def identity_strategy(gateways: List[Gateway]) -> List[Gateway]:
    """Keep the gateways in bootstrap order."""
    return list(gateways)


def make_locality_strategy(fetcher: MetadataFetcher) -> OrganizerStrategy:
    """
    Create a strategy that sorts gateways by proximity to this deployment.

    Gateways in the deployment's availability zone come first, then gateways
    in its region, then everything else. The sort is stable, so gateways of
    equal rank keep their bootstrap order. When neither region nor zone ID
    can be resolved the list is returned unchanged.

    Args:
        fetcher: Metadata fetcher resolving this deployment's locality

    Returns:
        Async organizer strategy
    """

    async def organize(gateways: List[Gateway]) -> List[Gateway]:
        metadata = await fetcher.get_metadata()
        if metadata.is_empty():
            return list(gateways)

        def rank(gateway: Gateway):
            zone_match = (
                metadata.zone_id is not None
                and gateway.locality.zone_id == metadata.zone_id
            )
            region_match = (
                metadata.region is not None
                and gateway.locality.region == metadata.region
            )
            return (not zone_match, not region_match)

        return sorted(gateways, key=rank)

    return organize


class OrganizerRegistry:
    """
    Named gateway organizer strategies with fallback-chain application.

    Built-in strategies ``none`` and ``aws`` are registered at construction;
    callers add their own with register_strategy().
    """

    def __init__(
        self,
        metadata_fetcher: Optional[MetadataFetcher] = None,
        on_event: Optional[EventListener] = None,
    ):
        """
        Initialize OrganizerRegistry.

        Args:
            metadata_fetcher: Fetcher backing the ``aws`` strategy; without
                one the ``aws`` strategy is not registered
            on_event: Optional listener called with ``(event_type, info)``
                for every strategy attempt
        """
        self.on_event = on_event
        self._strategies: Dict[str, OrganizerStrategy] = {
            NONE_STRATEGY: identity_strategy,
        }
        if metadata_fetcher is not None:
            self._strategies[AWS_STRATEGY] = make_locality_strategy(metadata_fetcher)

        # Strategies that lost a timeout race; referenced until they finish.
        self._abandoned: Set[asyncio.Task] = set()

    def register_strategy(self, name: str, strategy: OrganizerStrategy) -> None:
        """
        Register (or replace) a named strategy.

        Args:
            name: Strategy name used in configuration
            strategy: Sync or async callable taking and returning a gateway list
        """
        if not name:
            raise ValueError("Strategy name must not be empty")
        if not callable(strategy):
            raise TypeError(f"Strategy '{name}' is not callable")
        self._strategies[name] = strategy
        logger.debug(f"Registered gateway organizer strategy '{name}'")

    def get_strategy(self, name: str) -> Optional[OrganizerStrategy]:
        return self._strategies.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._strategies)

    async def organize(
        self,
        gateways: List[Gateway],
        strategy_names: Sequence[str],
        timeout_ms: int = 0,
    ) -> Optional[List[Gateway]]:
        """
        Apply the first strategy of the chain that succeeds in time.

        Args:
            gateways: Raw gateway list
            strategy_names: Strategy names, in order of preference
            timeout_ms: Per-strategy time budget in milliseconds; <= 0
                disables timing out

        Returns:
            Organized gateway list, or None if every strategy failed
        """
        for name in strategy_names:
            strategy = self._strategies.get(name)
            if strategy is None:
                self._emit(name, error=f"Unknown organizer strategy '{name}'")
                continue

            started = time.monotonic()
            try:
                organized = await self._run(name, strategy, list(gateways), timeout_ms)
            except Exception as e:
                self._emit(name, error=str(e) or repr(e), duration_ms=_elapsed_ms(started))
                continue

            problem = _reordering_problem(gateways, organized)
            if problem is not None:
                self._emit(name, error=problem, duration_ms=_elapsed_ms(started))
                continue

            self._emit(name, gateways=organized, duration_ms=_elapsed_ms(started))
            return organized

        logger.warning(
            f"No gateway organizer strategy succeeded ({list(strategy_names)}); "
            f"keeping bootstrap order"
        )
        return None

    async def _run(
        self,
        name: str,
        strategy: OrganizerStrategy,
        gateways: List[Gateway],
        timeout_ms: int,
    ) -> List[Gateway]:
        if timeout_ms <= 0:
            return await _call(strategy, gateways)

        task = asyncio.ensure_future(_call(strategy, gateways))
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        if task in done:
            return task.result()

        # The strategy keeps running; its eventual outcome is discarded.
        self._abandoned.add(task)
        task.add_done_callback(self._forget)
        raise OrganizerTimeoutError(name, timeout_ms)

    def _forget(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned organizer strategy failed: {task.exception()!r}")

    def _emit(self, strategy: str, **info: Any) -> None:
        log_organizer_attempt(logger, strategy, **info)
        if self.on_event is None:
            return

        event: Dict[str, Any] = {"strategy": strategy}
        if info.get("gateways") is not None:
            event["gateways"] = info["gateways"]
        if info.get("error") is not None:
            event["error"] = info["error"]
        try:
            self.on_event(ORGANIZE_GATEWAYS_EVENT, event)
        except Exception:
            logger.warning("Organizer event listener failed", exc_info=True)


async def _call(strategy: OrganizerStrategy, gateways: List[Gateway]) -> List[Gateway]:
    result = strategy(gateways)
    if inspect.isawaitable(result):
        result = await result
    return result


def _reordering_problem(gateways: List[Gateway], organized: Any) -> Optional[str]:
    if not isinstance(organized, list):
        return f"Strategy returned {type(organized).__name__}, expected list"
    if not all(isinstance(gateway, Gateway) for gateway in organized):
        return "Strategy returned entries that are not gateways"
    # Organizing may only reorder: same entries, same multiplicities.
    if Counter(organized) != Counter(gateways):
        return (
            f"Strategy returned {len(organized)} gateway(s) that are not a "
            f"reordering of the {len(gateways)} given"
        )
    return None


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)
