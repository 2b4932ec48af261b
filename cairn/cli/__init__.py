"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Cairn command-line interface.
"""
