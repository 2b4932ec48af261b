"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Gateway discovery, ordering and failover.

This package provides:
- Gateway model and bootstrap response parsing
- Instance metadata lookup for locality-aware ordering
- Named organizer strategies applied as a fallback chain
- Single-flight gateway resolution with cached organization
- Bounded, status-classified request failover
"""

from cairn.gateway.models import (
    Gateway,
    LocalityMetadata,
    parse_gateways,
    parse_bootstrap_response,
)
from cairn.gateway.transport import HttpTransport, HttpResponse
from cairn.gateway.metadata import MetadataFetcher
from cairn.gateway.organizers import (
    OrganizerRegistry,
    identity_strategy,
    make_locality_strategy,
)
from cairn.gateway.resolver import GatewayResolver, ResolutionState
from cairn.gateway.executor import RetryingRequestExecutor

__all__ = [
    "Gateway",
    "LocalityMetadata",
    "parse_gateways",
    "parse_bootstrap_response",
    "HttpTransport",
    "HttpResponse",
    "MetadataFetcher",
    "OrganizerRegistry",
    "identity_strategy",
    "make_locality_strategy",
    "GatewayResolver",
    "ResolutionState",
    "RetryingRequestExecutor",
]
