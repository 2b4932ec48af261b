"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Cairn Policy Client.

Builds policy query, batch and data requests and delegates transport to the
retrying request executor, which fails over across the discovered gateways.

Quick start::

    async with PolicyClient(url="https://policy.example.com/v1/projects/p1/envs/prod",
                            token="sk_test_123") as client:
        if await client.check("app/allow", {"subject": "alice"}):
            ...
"""

import asyncio
import dataclasses
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from cairn.config.settings import ClientConfig, normalize_strategies
from cairn.exceptions import (
    CairnError,
    HttpError,
    NotAllowedError,
    RequestFailedError,
    SDKConfigurationError,
)
from cairn.gateway.executor import RetryingRequestExecutor
from cairn.gateway.metadata import MetadataFetcher
from cairn.gateway.models import Gateway
from cairn.gateway.organizers import OrganizerRegistry, OrganizerStrategy
from cairn.gateway.resolver import GatewayResolver
from cairn.gateway.transport import HttpTransport
from cairn.logging_config import get_logger, log_policy_decision
from cairn.sdk.proxy import PolicyProxy, make_proxy_handler
from cairn.sdk.rbac import RbacHandler, RbacManager, make_rbac_handler

logger = get_logger(__name__)

EventListener = Callable[[str, Dict[str, Any]], None]
InputTransformer = Callable[[str, Any], Any]
DecisionPredicate = Callable[[Any], Union[bool, Awaitable[bool]]]

DATA_PATH = "data"
BATCH_PATH = "data_batch"


def DEFAULT_PREDICATE(decision: Any) -> bool:
    """Allow when the decision document's ``result`` is exactly True."""
    return isinstance(decision, dict) and decision.get("result") is True


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise CairnError("JSON serialization failed", e) from e


def _from_json(body: str) -> Any:
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError as e:
        raise CairnError("Invalid JSON", e) from e


def _data_path(path: str) -> str:
    return f"{DATA_PATH}/{path.strip('/')}"


class PolicyClient:
    """Client for a remote policy-decision service.

    Args:
        url: Base URL of the policy service.
        token: API bearer token.
        config: Optional ClientConfig; explicit keyword arguments override it.
        batch_max_items: Maximum items per batch request; larger batches are split.
        input_transformers: Per-path callables ``(path, input) -> input`` applied to proxied queries.
        event_listeners: Callables ``(event_type, info)`` notified of every operation.
        organize_gateways_strategy: Strategy name or ordered list of names.
        organize_gateways_strategy_timeout: Per-strategy budget in ms; <= 0 disables it.
        async_gateway_organization: Organize gateways in the background.
        max_retries: Upper bound of gateway failover retries per request.
        metadata_url: Instance metadata service URL for the ``aws`` strategy.
        request_timeout: Per-request HTTP timeout in seconds.

    Raises:
        SDKConfigurationError: If url or token is missing or a setting is invalid.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        batch_max_items: Optional[int] = None,
        input_transformers: Optional[Dict[str, InputTransformer]] = None,
        event_listeners: Optional[Sequence[EventListener]] = None,
        organize_gateways_strategy: Union[str, List[str], None] = None,
        organize_gateways_strategy_timeout: Optional[int] = None,
        async_gateway_organization: Optional[bool] = None,
        max_retries: Optional[int] = None,
        metadata_url: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        overrides = {
            "url": url,
            "token": token,
            "batch_max_items": batch_max_items,
            "organize_gateways_strategy": organize_gateways_strategy,
            "organize_gateways_strategy_timeout": organize_gateways_strategy_timeout,
            "async_gateway_organization": async_gateway_organization,
            "max_retries": max_retries,
            "metadata_url": metadata_url,
            "request_timeout": request_timeout,
        }
        settings = dataclasses.replace(
            config or ClientConfig(),
            **{k: v for k, v in overrides.items() if v is not None},
        )

        if not settings.url:
            raise SDKConfigurationError("url is required")
        if not settings.token:
            raise SDKConfigurationError("token is required")
        if settings.batch_max_items <= 0:
            raise SDKConfigurationError("batch_max_items must be positive")
        if settings.max_retries < 0:
            raise SDKConfigurationError("max_retries must be non-negative")

        try:
            strategies = normalize_strategies(settings.organize_gateways_strategy)
        except CairnError as e:
            raise SDKConfigurationError(e.message) from e

        self.config = settings
        self.batch_max_items = settings.batch_max_items
        self.input_transformers: Dict[str, InputTransformer] = dict(input_transformers or {})
        self.event_listeners: List[EventListener] = list(event_listeners or [])

        self._transport = HttpTransport(timeout=settings.request_timeout)
        self._metadata_fetcher = MetadataFetcher(
            self._transport,
            url=settings.metadata_url,
            token_ttl=settings.metadata_token_ttl,
        )
        self._registry = OrganizerRegistry(self._metadata_fetcher, on_event=self.signal_event)
        self._resolver = GatewayResolver(
            base_url=settings.url,
            token=settings.token,
            transport=self._transport,
            registry=self._registry,
            strategy_names=strategies,
            strategy_timeout_ms=settings.organize_gateways_strategy_timeout,
            async_organization=settings.async_gateway_organization,
        )
        self._executor = RetryingRequestExecutor(
            resolver=self._resolver,
            token=settings.token,
            transport=self._transport,
            max_retries=settings.max_retries,
        )

        logger.info(
            f"PolicyClient initialized: url={settings.url}, strategies={strategies}, "
            f"async_organization={settings.async_gateway_organization}, "
            f"max_retries={settings.max_retries}"
        )

    # -- Components ----------------------------------------------------------

    @property
    def resolver(self) -> GatewayResolver:
        return self._resolver

    @property
    def executor(self) -> RetryingRequestExecutor:
        return self._executor

    @property
    def registry(self) -> OrganizerRegistry:
        return self._registry

    # -- Events and configuration hooks --------------------------------------

    def signal_event(self, event_type: str, info: Dict[str, Any]) -> None:
        """Notify every event listener. Listener errors are logged, not raised."""
        for listener in self.event_listeners:
            try:
                listener(event_type, info)
            except Exception:
                logger.warning(f"Event listener failed for '{event_type}'", exc_info=True)

    def add_event_listener(self, listener: EventListener) -> None:
        self.event_listeners.append(listener)

    def set_input_transformer(self, path: str, transformer: InputTransformer) -> None:
        """Register a transformer applied to the input of proxied queries for ``path``."""
        self.input_transformers[path] = transformer

    def register_strategy(self, name: str, strategy: OrganizerStrategy) -> None:
        """Register a named gateway organizer strategy."""
        self._registry.register_strategy(name, strategy)

    async def get_gateways(self) -> List[Gateway]:
        """Return the gateway list requests are currently sent to."""
        return await self._resolver.get_gateways()

    def invalidate_gateways(self) -> None:
        """Discard the cached gateway list; the next request re-bootstraps."""
        self._resolver.invalidate()

    # -- Policy queries ------------------------------------------------------

    async def query(self, path: str, input: Any = None) -> Dict[str, Any]:
        """
        Query the policy rule at ``path``.

        Args:
            path: Policy rule path, relative to the service's data root
            input: Optional input document

        Returns:
            Decision document, e.g. ``{"result": true}``

        Raises:
            RequestFailedError: If the request or response decoding failed
        """
        query = {"input": input} if input is not None else {}

        try:
            response = await self._executor.post(_data_path(path), _to_json(query))
            decision = _from_json(response)
        except CairnError as e:
            self.signal_event("query", {"path": path, "query": query, "err": e})
            raise RequestFailedError("Query failed", e, path=path, query=query) from e

        self.signal_event("query", {"path": path, "query": query, "decision": decision})
        return decision

    async def check(
        self,
        path: str,
        input: Any = None,
        predicate: DecisionPredicate = DEFAULT_PREDICATE,
    ) -> bool:
        """
        Check the policy rule at ``path`` against a decision predicate.

        Args:
            path: Policy rule path
            input: Optional input document
            predicate: Sync or async callable deciding whether a decision
                document allows the request

        Returns:
            True if the predicate accepts the decision

        Raises:
            RequestFailedError: If the query or the predicate failed
        """
        try:
            decision = await self.query(path, input)
            allowed = bool(await _resolve(predicate(decision)))
        except Exception as e:
            self.signal_event("check", {"path": path, "input": input, "err": e})
            log_policy_decision(logger, "check", path, error=str(e))
            raise RequestFailedError("Check failed", e, path=path, query=input) from e

        self.signal_event("check", {"allowed": allowed, "path": path, "input": input})
        log_policy_decision(logger, "check", path, allowed=allowed)
        return allowed

    async def assert_allowed(
        self,
        path: str,
        input: Any = None,
        predicate: DecisionPredicate = DEFAULT_PREDICATE,
    ) -> None:
        """
        Like check(), but raise instead of returning False.

        Raises:
            NotAllowedError: If the predicate rejects the decision
            RequestFailedError: If the check itself failed
        """
        try:
            allowed = await self.check(path, input, predicate)
        except RequestFailedError as e:
            self.signal_event("assert", {"asserted": False, "path": path, "input": input, "err": e})
            raise RequestFailedError("Assert failed", e, path=path, query=input) from e

        self.signal_event("assert", {"asserted": allowed, "path": path, "input": input})
        if not allowed:
            raise NotAllowedError()

    async def assert_allowed_and_return(
        self,
        data: Any,
        path: str,
        input: Any = None,
        predicate: DecisionPredicate = DEFAULT_PREDICATE,
    ) -> Any:
        """Assert the rule at ``path`` and return ``data`` when allowed."""
        await self.assert_allowed(path, input, predicate)
        return data

    async def batch_query(self, items: Sequence[Dict[str, Any]], input: Any = None) -> List[Any]:
        """
        Query several policy rules at once.

        Items are ``{"path": ..., "input": ...}`` dicts. They are split into
        chunks of at most batch_max_items, sent concurrently, and the results
        are returned in item order. A global ``input`` applies to every item
        that has none of its own.

        Args:
            items: Queries to batch
            input: Optional input document shared by the whole batch

        Returns:
            One result per item

        Raises:
            RequestFailedError: If any chunk failed
        """
        items = list(items)
        chunks = [
            items[i:i + self.batch_max_items]
            for i in range(0, len(items), self.batch_max_items)
        ]

        async def send(chunk: List[Dict[str, Any]]) -> List[Any]:
            query: Dict[str, Any] = {"items": chunk}
            if input is not None:
                query["input"] = input

            try:
                response = await self._executor.post(BATCH_PATH, _to_json(query))
                result = _from_json(response).get("result")
            except (CairnError, AttributeError) as e:
                self.signal_event("batch-query", {"items": chunk, "input": input, "err": e})
                raise RequestFailedError("Batched query failed", e, query=query) from e
            return result if isinstance(result, list) else []

        results = await asyncio.gather(*(send(chunk) for chunk in chunks))
        decisions = [decision for chunk in results for decision in chunk]

        self.signal_event("batch-query", {"items": items, "input": input, "decisions": decisions})
        return decisions

    async def filter(
        self,
        items: Sequence[Any],
        predicate: DecisionPredicate = DEFAULT_PREDICATE,
        path: Optional[str] = None,
        to_input: Optional[Callable[[Any, int], Any]] = None,
        to_path: Optional[Callable[[Any, int], Optional[str]]] = None,
    ) -> List[Any]:
        """
        Filter ``items`` by one policy decision per entry, made in a single batch.

        Args:
            items: Entries to filter
            predicate: Decision predicate applied to each entry's decision
            path: Policy rule path used for every entry
            to_input: Optional ``(entry, index) -> input`` callback
            to_path: Optional ``(entry, index) -> path`` callback overriding ``path``

        Returns:
            Entries whose decision the predicate accepted, in input order

        Raises:
            RequestFailedError: If an entry has no path or the batch failed
        """
        items = list(items)
        if not items:
            return []

        try:
            queries = []
            for i, entry in enumerate(items):
                query: Dict[str, Any] = {}
                entry_input = to_input(entry, i) if to_input else None
                if entry_input is not None:
                    query["input"] = entry_input

                entry_path = to_path(entry, i) if to_path else None
                query["path"] = entry_path if entry_path is not None else path
                if query["path"] is None:
                    raise CairnError(f"No 'path' provided for list entry at {i}")
                queries.append(query)

            decisions = await self.batch_query(queries)
        except CairnError as e:
            self.signal_event("filter", {"list": items, "path": path, "err": e})
            raise RequestFailedError("Filtering failed", e, path=path) from e

        if len(decisions) != len(items):
            error = RequestFailedError(
                f"Returned decision list size ({len(decisions)}) not equal to "
                f"provided list size ({len(items)})",
                path=path,
            )
            self.signal_event("filter", {"list": items, "decisions": decisions, "path": path, "err": error})
            raise error

        try:
            filtered = []
            for entry, decision in zip(items, decisions):
                if isinstance(decision, dict) and "check" in decision:
                    decision = decision["check"]
                if await _resolve(predicate(decision)):
                    filtered.append(entry)
        except Exception as e:
            self.signal_event("filter", {"list": items, "decisions": decisions, "path": path, "err": e})
            raise RequestFailedError("Allow filtering failed", e, path=path) from e

        self.signal_event(
            "filter",
            {"list": items, "decisions": decisions, "filtered": filtered, "path": path},
        )
        return filtered

    # -- Data API ------------------------------------------------------------

    async def get_data(self, path: str, default: Any = None) -> Dict[str, Any]:
        """
        Fetch the data document at ``path``.

        Args:
            path: Data path
            default: Value returned as ``result`` when the path does not exist

        Returns:
            ``{"result": ...}`` response document

        Raises:
            RequestFailedError: On any failure other than 404
        """
        try:
            response = await self._executor.get(_data_path(path))
            return _from_json(response)
        except CairnError as e:
            if isinstance(e, HttpError) and e.is_not_found():
                return {"result": default}
            raise RequestFailedError("GET data request failed", e, path=path) from e

    async def put_data(self, path: str, data: Any) -> Dict[str, Any]:
        """
        Upload the data document at ``path``.

        Returns:
            ``{"version": ...}`` response document

        Raises:
            RequestFailedError: If the upload failed
        """
        try:
            response = await self._executor.put(_data_path(path), _to_json(data))
            return _from_json(response)
        except CairnError as e:
            raise RequestFailedError("PUT data request failed", e, path=path, query=data) from e

    async def delete_data(self, path: str) -> Dict[str, Any]:
        """
        Remove the data document at ``path``.

        Returns:
            ``{"version": ...}`` response document

        Raises:
            RequestFailedError: If the removal failed
        """
        try:
            response = await self._executor.delete(_data_path(path))
            return _from_json(response)
        except CairnError as e:
            raise RequestFailedError("DELETE data request failed", e, path=path) from e

    # -- HTTP handlers -------------------------------------------------------

    def proxy(self, on_proxy=None, on_done=None, on_error=None) -> PolicyProxy:
        """Return an aiohttp handler proxying front-end batch queries. See :mod:`cairn.sdk.proxy`."""
        return make_proxy_handler(self, on_proxy=on_proxy, on_done=on_done, on_error=on_error)

    def manage_rbac(self, create_input=None, paginate_users=None, on_set_binding=None) -> RbacHandler:
        """Return an aiohttp handler for RBAC management. See :mod:`cairn.sdk.rbac`."""
        return make_rbac_handler(
            RbacManager(self),
            create_input=create_input,
            paginate_users=paginate_users,
            on_set_binding=on_set_binding,
        )

    # -- Lifecycle -----------------------------------------------------------

    async def close(self) -> None:
        """Release the HTTP session."""
        await self._transport.close()
        logger.info("PolicyClient closed")

    async def __aenter__(self) -> "PolicyClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
