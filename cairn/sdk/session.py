"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Session input strategies for proxied policy queries.

A strategy is called with ``(request, path, input)`` and returns the input
that should be used for the proxied query.
"""

from typing import Any, Optional

from aiohttp import web

DEFAULT_COOKIE_NAME = "user"
SESSION_SEPARATOR = " / "


def get_cookie(request: web.Request, name: str) -> Optional[str]:
    """
    Read a cookie from the raw ``Cookie`` header.

    Values are taken verbatim up to the next ``;`` so that unquoted values
    containing spaces survive.
    """
    header = request.headers.get("Cookie", "")
    for pair in header.split(";"):
        key, sep, value = pair.partition("=")
        if sep and key.strip() == name:
            return value.strip()
    return None


class CookieSessionInputStrategy:
    """
    Injects ``tenant`` and ``subject`` read from a session cookie.

    The cookie value has the format ``<tenant> / <subject>``. Session
    properties override incoming input properties of the same name. Input
    that is not an object is returned unchanged.
    """

    def __init__(self, cookie_name: str = DEFAULT_COOKIE_NAME):
        self.cookie_name = cookie_name

    def __call__(self, request: web.Request, path: Optional[str] = None, input: Any = None) -> Any:
        if input is not None and not isinstance(input, dict):
            return input

        cookie = get_cookie(request, self.cookie_name)
        if not cookie:
            return input

        tenant, _, subject = cookie.partition(SESSION_SEPARATOR)
        session = {"tenant": tenant, "subject": subject or None}

        if input is None:
            return session
        return {**input, **session}


class NoneSessionInputStrategy:
    """Uses the input provided by the client, if any."""

    def __call__(self, request: web.Request, path: Optional[str] = None, input: Any = None) -> Any:
        return input


COOKIE = CookieSessionInputStrategy()
NONE = NoneSessionInputStrategy()
