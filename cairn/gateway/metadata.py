"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Instance metadata fetcher for locality-aware gateway ordering.

Resolves the region and availability-zone ID of the current deployment from
an EC2-style instance metadata service. Both the session-token protocol and
the legacy tokenless protocol are supported; a service that does not know
the token endpoint is used tokenless.
"""

import asyncio
from typing import Dict, Optional

from cairn.exceptions import HttpError, TransportError
from cairn.gateway.models import LocalityMetadata
from cairn.gateway.transport import HttpTransport
from cairn.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_METADATA_URL = "http://169.254.169.254"
DEFAULT_TOKEN_TTL_SECONDS = 21600

TOKEN_PATH = "/latest/api/token"
METADATA_PATH = "/latest/meta-data"
TOKEN_HEADER = "X-aws-ec2-metadata-token"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"

REGION_CATEGORY = "placement/region"
ZONE_ID_CATEGORY = "placement/availability-zone-id"


def _strip_trailing_slash(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if value.endswith("/"):
        value = value[:-1]
    return value or None


class MetadataFetcher:
    """
    Fetches locality metadata from the instance metadata service.

    The session token is requested lazily, cached, and replaced only after a
    metadata call presenting it was rejected with 401. Attribute failures
    other than an expired token yield None for that attribute; this class
    never raises for an unreachable attribute.
    """

    def __init__(
        self,
        transport: HttpTransport,
        url: str = DEFAULT_METADATA_URL,
        token_ttl: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        """
        Initialize MetadataFetcher.

        Args:
            transport: HTTP transport used for metadata calls
            url: Base URL of the metadata service
            token_ttl: Requested session token lifetime in seconds
        """
        self.transport = transport
        self.url = url.rstrip("/")
        self.token_ttl = token_ttl

        self.token: Optional[str] = None
        self.token_unsupported = False
        self.metadata: Optional[LocalityMetadata] = None

        self._token_lock = asyncio.Lock()

    async def get_metadata(self) -> LocalityMetadata:
        """
        Get the region and zone ID of the current deployment.

        Returns:
            LocalityMetadata, with None for every attribute that could not be
            resolved
        """
        if self.metadata is not None:
            return self.metadata

        token = await self._get_token()
        region, zone_id = await asyncio.gather(
            self._get_attribute(REGION_CATEGORY, token),
            self._get_attribute(ZONE_ID_CATEGORY, token),
        )

        metadata = LocalityMetadata(region=region, zone_id=zone_id)
        logger.info(f"Resolved locality metadata: region={region}, zone_id={zone_id}")

        if not metadata.is_empty():
            self.metadata = metadata
        return metadata

    async def _get_token(self) -> Optional[str]:
        async with self._token_lock:
            return await self._request_token()

    async def _request_token(self) -> Optional[str]:
        """Return the cached token, requesting one if needed. Caller holds the lock."""
        if self.token_unsupported:
            return None
        if self.token:
            return self.token

        try:
            response = await self.transport.send(
                "PUT",
                f"{self.url}{TOKEN_PATH}",
                headers={TOKEN_TTL_HEADER: str(self.token_ttl)},
            )
        except TransportError as e:
            logger.debug(f"Metadata token request failed, continuing without token: {e}")
            return None

        if response.status == 404:
            logger.info("Metadata service does not support session tokens; using tokenless requests")
            self.token_unsupported = True
            return None
        if response.status != 200:
            logger.debug(
                f"Metadata token request returned status {response.status}, "
                f"continuing without token"
            )
            return None

        self.token = response.body or None
        return self.token

    async def _refresh_token(self, stale_token: str) -> Optional[str]:
        """
        Replace a rejected token.

        Concurrent callers that saw the same stale token share one refresh.
        """
        async with self._token_lock:
            if self.token is not None and self.token != stale_token:
                return self.token
            self.token = None
            return await self._request_token()

    async def _get_attribute(self, category: str, token: Optional[str]) -> Optional[str]:
        try:
            return await self._request_attribute(category, token)
        except HttpError as e:
            if not (e.is_unauthorized() and token is not None):
                logger.debug(f"Metadata attribute {category} unavailable: {e}")
                return None
        except TransportError as e:
            logger.debug(f"Metadata attribute {category} unavailable: {e}")
            return None

        logger.info(f"Metadata token rejected while fetching {category}; refreshing token")
        new_token = await self._refresh_token(token)

        try:
            return await self._request_attribute(category, new_token)
        except (HttpError, TransportError) as e:
            logger.debug(f"Metadata attribute {category} unavailable after token refresh: {e}")
            return None

    async def _request_attribute(self, category: str, token: Optional[str]) -> Optional[str]:
        headers: Dict[str, str] = {}
        if token:
            headers[TOKEN_HEADER] = token

        response = await self.transport.send(
            "GET",
            f"{self.url}{METADATA_PATH}/{category}",
            headers=headers,
        )
        if response.status != 200:
            raise HttpError(
                f"Unexpected status code: {response.status}",
                response.status,
                response.body,
            )
        return _strip_trailing_slash(response.body)
