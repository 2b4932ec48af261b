"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

HTTP transport shared by the gateway resolver, metadata fetcher and
request executor.

Owns one aiohttp session per client. The session is created on first use so
that clients can be constructed outside a running event loop.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

from cairn._version import __version__
from cairn.exceptions import TransportError
from cairn.logging_config import get_logger

logger = get_logger(__name__)

USER_AGENT = f"Cairn-Policy-SDK/{__version__}"


@dataclass(frozen=True)
class HttpResponse:
    """Status and decoded body of a completed HTTP exchange."""

    status: int
    body: str


class HttpTransport:
    """
    Thin async HTTP transport over a lazily created aiohttp session.

    Any response, whatever its status, is returned as an HttpResponse;
    interpreting status codes is left to the caller. Failures that produce no
    response are raised as TransportError.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_connections: int = 100,
    ):
        """
        Initialize the transport.

        Args:
            timeout: Total per-request timeout in seconds, None disables it
            max_connections: Maximum number of concurrent connections
        """
        self.timeout = ClientTimeout(total=timeout)
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
                connector=TCPConnector(limit=self.max_connections),
            )
        return self._session

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[str] = None,
    ) -> HttpResponse:
        """
        Send one HTTP request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, ...)
            url: Absolute target URL
            headers: Request headers
            data: Already-serialized request body

        Returns:
            HttpResponse with status and text body

        Raises:
            TransportError: If no response was received
        """
        session = await self._get_session()
        logger.debug(f"Sending {method} request to {url}")

        try:
            async with session.request(
                method=method,
                url=url,
                headers=headers,
                data=data.encode("utf-8") if data is not None else None,
            ) as response:
                # Gateway-tier error pages are not always valid in their declared charset.
                body = await response.text(errors="replace")
                return HttpResponse(status=response.status, body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"{method} request to {url} failed: {e!r}")
            raise TransportError("Failed to send request", e) from e

    async def close(self) -> None:
        """Close the HTTP session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed HTTP transport session")
