"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Logging for the Cairn Policy SDK.

Every SDK module logs through structlog under the ``cairn`` logger
hierarchy. setup_logging() attaches a single handler to that hierarchy and
leaves the host application's root logger alone. A correlation ID, when one
is active, ties the gateway attempts of one logical request together.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO, Union

import structlog
from structlog.types import EventDict

SDK_LOGGER_NAME = "cairn"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("cairn_correlation_id", default=None)


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor stamping the active correlation ID, if any."""
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Activate a correlation ID in the current context.

    Args:
        correlation_id: ID to use; a random UUID4 when omitted

    Returns:
        The active correlation ID
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Activate a correlation ID for the duration of a ``with`` block.

    The previously active ID, if any, is restored on exit.
    """
    token = correlation_id_var.set(correlation_id or str(uuid.uuid4()))
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


def _build_handler(log_file: Optional[Union[str, Path]]) -> logging.Handler:
    if log_file is None:
        return logging.StreamHandler(sys.stderr)

    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path)


def _is_terminal(stream: Optional[TextIO]) -> bool:
    return stream is not None and hasattr(stream, "isatty") and stream.isatty()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    json_format: bool = True,
) -> None:
    """
    Configure structured logging for the SDK.

    Replaces any handler a previous call installed on the ``cairn`` logger.
    SDK records do not propagate to the root logger once configured.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Write to this file instead of stderr
        json_format: Render JSON lines; otherwise a console format,
            colored only when writing to a terminal
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    sdk_logger = logging.getLogger(SDK_LOGGER_NAME)
    for handler in list(sdk_logger.handlers):
        sdk_logger.removeHandler(handler)
        handler.close()

    handler = _build_handler(log_file)
    handler.setFormatter(logging.Formatter("%(message)s"))
    sdk_logger.addHandler(handler)
    sdk_logger.setLevel(numeric_level)
    sdk_logger.propagate = False

    if json_format:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=_is_terminal(getattr(handler, "stream", None)))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            add_correlation_id,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger inside the ``cairn`` hierarchy.

    Args:
        name: Module name, usually ``__name__``; prefixed with ``cairn.``
            when it is outside the package
    """
    if name == SDK_LOGGER_NAME or name.startswith(f"{SDK_LOGGER_NAME}."):
        return structlog.get_logger(name)
    return structlog.get_logger(f"{SDK_LOGGER_NAME}.{name}")


# Domain logging helpers


def _describe_gateways(gateways: Optional[List[Any]]) -> Optional[List[str]]:
    if gateways is None:
        return None
    return [str(gateway) for gateway in gateways]


def log_gateway_attempt(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    gateway: str,
    attempt: int,
    max_attempts: int,
    status_code: Optional[int] = None,
    retryable: Optional[bool] = None,
    error: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log a single attempt of a logical request against one gateway.

    Args:
        logger: Logger instance
        method: HTTP method of the request
        gateway: Target URL the attempt was sent to
        attempt: 1-based attempt number
        max_attempts: Upper bound of attempts for this request
        status_code: Response status code, None for transport failures
        retryable: Whether the failure allows another attempt
        error: Error message if the attempt failed
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "gateway_attempt",
        "method": method,
        "gateway": gateway,
        "attempt": attempt,
        "max_attempts": max_attempts,
    }

    if status_code is not None:
        log_data["status_code"] = status_code
    if retryable is not None:
        log_data["retryable"] = retryable
    if error is not None:
        log_data["error"] = error

    log_data.update(kwargs)

    if error is None:
        logger.debug("gateway_attempt", **log_data)
    elif retryable:
        logger.warning("gateway_attempt_failed", **log_data)
    else:
        logger.error("gateway_attempt_failed", **log_data)


def log_organizer_attempt(
    logger: structlog.stdlib.BoundLogger,
    strategy: str,
    gateways: Optional[List[Any]] = None,
    error: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs: Any,
) -> None:
    """
    Log the outcome of one gateway organizer strategy attempt.

    Args:
        logger: Logger instance
        strategy: Name of the organizer strategy
        gateways: Organized gateway list, if the strategy succeeded
        error: Error message, if the strategy failed or timed out
        duration_ms: Time spent waiting on the strategy
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "organize_gateways",
        "strategy": strategy,
    }

    if gateways is not None:
        log_data["gateways"] = _describe_gateways(gateways)
    if error is not None:
        log_data["error"] = error
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms

    log_data.update(kwargs)

    if error is None:
        logger.info("organize_gateways", **log_data)
    else:
        logger.warning("organize_gateways_failed", **log_data)


def log_policy_decision(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    path: str,
    allowed: Optional[bool] = None,
    error: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log a policy decision made through the Policy Client.

    Args:
        logger: Logger instance
        operation: Client operation ("check", "assert", "filter", ...)
        path: Policy rule path
        allowed: Decision outcome, if one was reached
        error: Error message if the decision could not be made
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "policy_decision",
        "operation": operation,
        "path": path,
    }

    if allowed is not None:
        log_data["allowed"] = allowed
    if error is not None:
        log_data["error"] = error

    log_data.update(kwargs)

    if error is not None:
        logger.error("policy_decision_failed", **log_data)
    elif allowed is False:
        logger.warning("policy_decision", **log_data)
    else:
        logger.debug("policy_decision", **log_data)
