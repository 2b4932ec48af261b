"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Gateway data model and bootstrap response parsing.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional
from urllib.parse import urlsplit

from cairn.exceptions import CairnError
from cairn.logging_config import get_logger

logger = get_logger(__name__)

_SUPPORTED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class LocalityMetadata:
    """
    Region and availability-zone identifiers of a gateway or of the caller's
    own deployment.

    Attributes:
        region: Region name (e.g. "eu-west-1"), None if unknown
        zone_id: Availability zone ID (e.g. "euw1-az2"), None if unknown
    """
    region: Optional[str] = None
    zone_id: Optional[str] = None

    def is_empty(self) -> bool:
        return self.region is None and self.zone_id is None


@dataclass(frozen=True)
class Gateway:
    """
    A candidate backend endpoint, parsed from its base URL.

    Attributes:
        scheme: "http" or "https"
        host: Host name or address
        port: Explicit port, None for the scheme default
        path: Path prefix prepended to every request path (no trailing slash)
        locality: Locality metadata announced for this gateway
    """
    scheme: str
    host: str
    port: Optional[int] = None
    path: str = ""
    locality: LocalityMetadata = field(default_factory=LocalityMetadata)

    @classmethod
    def from_url(cls, url: str, locality: Optional[LocalityMetadata] = None) -> "Gateway":
        """
        Parse a gateway base URL.

        Args:
            url: Absolute http(s) URL, optionally with a path prefix
            locality: Optional locality metadata

        Returns:
            Parsed Gateway

        Raises:
            ValueError: If the URL is not an absolute http(s) URL
        """
        parts = urlsplit(url)
        if parts.scheme not in _SUPPORTED_SCHEMES:
            raise ValueError(f"Unsupported gateway URL scheme: {url!r}")
        if not parts.hostname:
            raise ValueError(f"Gateway URL has no host: {url!r}")

        return cls(
            scheme=parts.scheme,
            host=parts.hostname,
            port=parts.port,
            path=parts.path.rstrip("/"),
            locality=locality or LocalityMetadata(),
        )

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        netloc = f"{host}:{self.port}" if self.port is not None else host
        return f"{self.scheme}://{netloc}{self.path}"

    def url_for(self, path: str) -> str:
        """
        Build the absolute URL of a request path on this gateway.

        The gateway's path prefix is prepended to the request path; a query
        string on the request path is kept.
        """
        request = urlsplit(path)
        url = f"{self.base_url}/{request.path.lstrip('/')}"
        if request.query:
            url = f"{url}?{request.query}"
        return url

    def __str__(self) -> str:
        return self.base_url


def _parse_locality(entry: dict) -> LocalityMetadata:
    aws = entry.get("aws")
    if not isinstance(aws, dict):
        return LocalityMetadata()

    region = aws.get("region")
    zone_id = aws.get("zone_id")
    return LocalityMetadata(
        region=region if isinstance(region, str) else None,
        zone_id=zone_id if isinstance(zone_id, str) else None,
    )


def parse_gateways(entries: Iterable[Any]) -> List[Gateway]:
    """
    Parse bootstrap gateway entries, dropping every invalid one.

    An entry is kept when it is an object with a string ``gateway_url`` that
    parses as an absolute http(s) URL. Input order is preserved.

    Args:
        entries: Items of the bootstrap response ``result`` list

    Returns:
        Parsed gateways
    """
    gateways: List[Gateway] = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.debug(f"Dropping non-object gateway entry: {entry!r}")
            continue

        url = entry.get("gateway_url")
        if not isinstance(url, str):
            logger.debug(f"Dropping gateway entry without string gateway_url: {entry!r}")
            continue

        try:
            gateways.append(Gateway.from_url(url, _parse_locality(entry)))
        except ValueError as e:
            logger.debug(f"Dropping unparseable gateway entry: {e}")

    return gateways


def parse_bootstrap_response(body: str) -> List[Gateway]:
    """
    Parse the body of a ``GET /gateways`` response.

    Args:
        body: Raw JSON response body

    Returns:
        Parsed gateways, possibly empty

    Raises:
        CairnError: If the body is not valid JSON
    """
    try:
        document = json.loads(body) if body else {}
    except ValueError as e:
        raise CairnError("Invalid gateway list response", e) from e

    result = document.get("result") if isinstance(document, dict) else None
    if not isinstance(result, list):
        return []
    return parse_gateways(result)
