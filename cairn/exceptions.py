"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Exception hierarchy for the Cairn Policy SDK.

Gateway-tier failures (HttpError, TransportError) carry the number of
attempts made so callers can tell a single rejection from an exhausted
failover. Organizer failures never leave the gateway package.
"""

from typing import Any, Optional

NOT_ALLOWED = "Not allowed!"

RETRYABLE_STATUS_CODES = frozenset({421, 500, 502, 503, 504})


class CairnError(Exception):
    """Base class for all Cairn SDK errors.

    Attributes:
        message: Message describing this error, without the cause.
        cause: Underlying exception, if any.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.message = message
        self.cause = cause
        if cause is not None and str(cause):
            super().__init__(f"{message}: {cause}")
        else:
            super().__init__(message)


class SDKConfigurationError(CairnError):
    """Raised when a client is constructed with invalid arguments."""


class InvalidConfigurationError(CairnError):
    """Raised when a configuration file or environment is invalid."""


class NoGatewaysError(CairnError):
    """Raised when gateway resolution yields no usable gateway."""

    def __init__(self, message: str = "No gateways available") -> None:
        super().__init__(message)


class HttpError(CairnError):
    """An HTTP response with an unexpected status code.

    Attributes:
        status_code: HTTP status code of the response.
        body: Raw response body.
        attempts: Number of gateway attempts made before giving up.
    """

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.attempts = 1

    def is_not_found(self) -> bool:
        return self.status_code == 404

    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    def is_retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class TransportError(CairnError):
    """A request that never produced an HTTP response (connection refused, reset, ...)."""

    status_code: Optional[int] = None
    body: Any = None

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)
        self.attempts = 1

    def is_retryable(self) -> bool:
        return True


class OrganizerTimeoutError(CairnError, TimeoutError):
    """Raised when a gateway organizer strategy exceeds its time budget."""

    def __init__(self, strategy: str, timeout_ms: int) -> None:
        super().__init__(f"Organizer strategy '{strategy}' timed out after {timeout_ms}ms")
        self.strategy = strategy
        self.timeout_ms = timeout_ms


class RequestFailedError(CairnError):
    """A Policy Client operation failed; wraps the gateway-tier error with request context.

    Attributes:
        path: Policy or data path of the failed request.
        query: Request document sent, if any.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        path: Optional[str] = None,
        query: Any = None,
    ) -> None:
        super().__init__(message, cause)
        self.path = path
        self.query = query

    def _root(self) -> Optional[BaseException]:
        cause = self.cause
        while isinstance(cause, RequestFailedError):
            cause = cause.cause
        return cause

    @property
    def status_code(self) -> Optional[int]:
        return getattr(self._root(), "status_code", None)

    @property
    def body(self) -> Any:
        return getattr(self._root(), "body", None)

    @property
    def attempts(self) -> Optional[int]:
        return getattr(self._root(), "attempts", None)


class NotAllowedError(CairnError):
    """Raised when an assert predicate rejects a policy decision."""

    def __init__(self) -> None:
        super().__init__(NOT_ALLOWED)


class InvalidInputError(CairnError):
    """Raised when proxy or RBAC request input is malformed."""
