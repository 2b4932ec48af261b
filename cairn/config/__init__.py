"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Configuration for the Cairn SDK.
"""

from cairn.config.settings import (
    CairnConfig,
    ClientConfig,
    LoggingConfig,
    load_config,
    normalize_strategies,
    validate_config,
)

__all__ = [
    "CairnConfig",
    "ClientConfig",
    "LoggingConfig",
    "load_config",
    "normalize_strategies",
    "validate_config",
]
