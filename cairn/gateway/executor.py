"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Retrying request executor.

Executes one logical HTTP request against the gateway list with bounded,
deterministic failover: attempt n goes to gateway (n - 1) mod len(gateways),
and a request is retried only for failures that indicate a gateway-tier
problem (no response, or status 421/500/502/503/504).
"""

from typing import Dict, Optional, Protocol, List, Union

from cairn.exceptions import HttpError, NoGatewaysError, TransportError
from cairn.gateway.models import Gateway
from cairn.gateway.transport import HttpTransport
from cairn.logging_config import get_logger, log_gateway_attempt

logger = get_logger(__name__)

OK = 200


class GatewaySource(Protocol):
    async def get_gateways(self) -> List[Gateway]:
        ...


class RetryingRequestExecutor:
    """
    Sends requests to the best available gateway, failing over to the next.

    The number of retries for one request is min(max_retries,
    len(gateways) - 1), so a gateway is never tried twice for the same
    request. Attempts are strictly sequential.
    """

    def __init__(
        self,
        resolver: GatewaySource,
        token: str,
        transport: HttpTransport,
        max_retries: int = 3,
    ):
        """
        Initialize RetryingRequestExecutor.

        Args:
            resolver: Source of the ordered gateway list
            token: Bearer token attached to every request
            transport: HTTP transport
            max_retries: Upper bound of retries per request
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self.resolver = resolver
        self.token = token
        self.transport = transport
        self.max_retries = max_retries

    async def request(
        self,
        method: str,
        path: str,
        data: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Execute one logical request with gateway failover.

        Args:
            method: HTTP method
            path: Request path relative to the gateway's path prefix
            data: Serialized JSON request body
            headers: Extra request headers

        Returns:
            Response body of the first 200 response

        Raises:
            NoGatewaysError: If no gateway is available
            HttpError: On a non-retryable status or once retries are exhausted
            TransportError: If the last attempt produced no response
        """
        gateways = await self.resolver.get_gateways()
        if not gateways:
            raise NoGatewaysError()

        max_retries = min(self.max_retries, len(gateways) - 1)
        request_headers = self._build_headers(data, headers)

        attempt = 1
        while True:
            gateway = gateways[(attempt - 1) % len(gateways)]
            url = gateway.url_for(path)

            try:
                return await self._attempt(method, url, request_headers, data)
            except (HttpError, TransportError) as e:
                e.attempts = attempt
                retryable = e.is_retryable() and attempt <= max_retries
                log_gateway_attempt(
                    logger,
                    method,
                    url,
                    attempt,
                    max_retries + 1,
                    status_code=e.status_code,
                    retryable=retryable,
                    error=str(e),
                )
                if not retryable:
                    raise
                attempt += 1

    async def _attempt(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[str],
    ) -> str:
        response = await self.transport.send(method, url, headers=headers, data=data)
        if response.status != OK:
            raise HttpError(
                f"Unexpected status code: {response.status}",
                response.status,
                response.body,
            )
        return response.body

    def _build_headers(
        self,
        data: Optional[str],
        headers: Optional[Dict[str, str]],
    ) -> Dict[str, str]:
        request_headers: Dict[str, str] = dict(headers or {})
        request_headers["authorization"] = f"bearer {self.token}"
        if data is not None:
            request_headers.setdefault("content-type", "application/json")
        return request_headers

    async def get(self, path: str) -> str:
        return await self.request("GET", path)

    async def post(self, path: str, data: Optional[Union[str, bytes]] = None) -> str:
        return await self.request("POST", path, _text(data))

    async def put(self, path: str, data: Optional[Union[str, bytes]] = None) -> str:
        return await self.request("PUT", path, _text(data))

    async def delete(self, path: str) -> str:
        return await self.request("DELETE", path)


def _text(data: Optional[Union[str, bytes]]) -> Optional[str]:
    if isinstance(data, bytes):
        return data.decode("utf-8")
    return data
