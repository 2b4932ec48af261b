"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Version information for the Cairn Policy SDK.
"""

__version__ = "0.3.0"


def get_version() -> str:
    """Return the installed Cairn SDK version string."""
    return __version__
