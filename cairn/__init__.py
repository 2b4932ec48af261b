"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Cairn Policy SDK - client library for a remote policy-decision service.

Cairn provides authorization checks, batched checks, data CRUD and
proxy/management endpoints, executed against a dynamically discovered,
locality-ordered set of gateways with bounded failover.
"""

from cairn._version import __version__

__all__ = ["__version__"]
