"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Cairn Policy SDK client, front-end proxy and RBAC management.
"""

from cairn.sdk.client import DEFAULT_PREDICATE, PolicyClient
from cairn.sdk.proxy import PolicyProxy, make_proxy_handler
from cairn.sdk.rbac import RbacHandler, RbacManager, make_indexed_paginator, make_rbac_handler
from cairn.sdk.session import CookieSessionInputStrategy, NoneSessionInputStrategy

__all__ = [
    "DEFAULT_PREDICATE",
    "PolicyClient",
    "PolicyProxy",
    "make_proxy_handler",
    "RbacHandler",
    "RbacManager",
    "make_indexed_paginator",
    "make_rbac_handler",
    "CookieSessionInputStrategy",
    "NoneSessionInputStrategy",
]
