"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Configuration loading for the Cairn SDK.

Configuration is read from a YAML file (default ``~/.cairn/config.yaml``)
with two sections, ``client`` and ``logging``. A few settings can be
overridden from the environment:

- ``CAIRN_URL``: service base URL
- ``CAIRN_TOKEN``: API bearer token
- ``CAIRN_LOG_LEVEL``: log level
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from cairn.exceptions import InvalidConfigurationError
from cairn.gateway.metadata import DEFAULT_METADATA_URL, DEFAULT_TOKEN_TTL_SECONDS
from cairn.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.cairn/config.yaml")

DEFAULT_URL = "http://localhost:8000"
DEFAULT_STRATEGIES = ["aws"]
DEFAULT_STRATEGY_TIMEOUT_MS = 3000
DEFAULT_MAX_RETRIES = 3
DEFAULT_BATCH_MAX_ITEMS = 20

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def normalize_strategies(value: Union[str, List[str], None]) -> List[str]:
    """
    Normalize an organizer strategy setting to a list of names.

    Args:
        value: A single strategy name, a list of names, or None

    Returns:
        List of strategy names (the default chain for None)
    """
    if value is None:
        return list(DEFAULT_STRATEGIES)
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise InvalidConfigurationError(
        f"organize_gateways_strategy must be a string or a list of strings, got {value!r}"
    )


@dataclass
class ClientConfig:
    """
    Settings consumed by PolicyClient.

    Attributes:
        url: Base URL of the policy service (gateway list is read from ``<url>/gateways``)
        token: API bearer token
        batch_max_items: Maximum items per batch query request
        organize_gateways_strategy: Organizer strategy names, in order of preference
        organize_gateways_strategy_timeout: Per-strategy time budget in ms; <= 0 disables it
        async_gateway_organization: Organize gateways in the background
        max_retries: Upper bound of gateway failover retries per request
        metadata_url: Instance metadata service URL for the ``aws`` strategy
        metadata_token_ttl: Requested metadata token lifetime in seconds
        request_timeout: Per-request HTTP timeout in seconds, None for no timeout
    """
    url: str = DEFAULT_URL
    token: Optional[str] = None
    batch_max_items: int = DEFAULT_BATCH_MAX_ITEMS
    organize_gateways_strategy: List[str] = field(default_factory=lambda: list(DEFAULT_STRATEGIES))
    organize_gateways_strategy_timeout: int = DEFAULT_STRATEGY_TIMEOUT_MS
    async_gateway_organization: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    metadata_url: str = DEFAULT_METADATA_URL
    metadata_token_ttl: int = DEFAULT_TOKEN_TTL_SECONDS
    request_timeout: Optional[float] = None


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: Optional[str] = None
    json_format: bool = True


@dataclass
class CairnConfig:
    """Top-level SDK configuration."""
    client: ClientConfig = field(default_factory=ClientConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_section(cls, data: Any, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Configuration section '{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfigurationError(
            f"Unknown setting(s) in '{section}': {', '.join(unknown)}"
        )
    return cls(**data)


def _apply_env_overrides(config: CairnConfig) -> None:
    url = os.environ.get("CAIRN_URL")
    if url:
        config.client.url = url
    token = os.environ.get("CAIRN_TOKEN")
    if token:
        config.client.token = token
    level = os.environ.get("CAIRN_LOG_LEVEL")
    if level:
        config.logging.level = level


def validate_config(config: CairnConfig) -> None:
    """
    Validate a configuration.

    Raises:
        InvalidConfigurationError: If any setting is out of range
    """
    client = config.client
    if not client.url:
        raise InvalidConfigurationError("client.url is required")
    if client.batch_max_items <= 0:
        raise InvalidConfigurationError("client.batch_max_items must be positive")
    if client.max_retries < 0:
        raise InvalidConfigurationError("client.max_retries must be non-negative")
    if client.request_timeout is not None and client.request_timeout <= 0:
        raise InvalidConfigurationError("client.request_timeout must be positive")
    if config.logging.level.upper() not in _VALID_LOG_LEVELS:
        raise InvalidConfigurationError(f"Invalid log level: {config.logging.level}")


def load_config(config_path: Optional[Union[str, Path]] = None) -> CairnConfig:
    """
    Load configuration from a YAML file and the environment.

    A missing file at the default location yields the default
    configuration; a missing file at an explicit path is an error.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated CairnConfig

    Raises:
        InvalidConfigurationError: If the file is unreadable or invalid
    """
    explicit = config_path is not None
    path = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()

    raw: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigurationError(f"Failed to read configuration file {path}", e) from e
        if not isinstance(raw, dict):
            raise InvalidConfigurationError(f"Configuration file {path} must contain a mapping")
        logger.debug(f"Loaded configuration from {path}")
    elif explicit:
        raise InvalidConfigurationError(f"Configuration file not found: {path}")

    client_data = raw.get("client")
    if isinstance(client_data, dict) and "organize_gateways_strategy" in client_data:
        client_data = dict(client_data)
        client_data["organize_gateways_strategy"] = normalize_strategies(
            client_data["organize_gateways_strategy"]
        )

    try:
        config = CairnConfig(
            client=_build_section(ClientConfig, client_data, "client"),
            logging=_build_section(LoggingConfig, raw.get("logging"), "logging"),
        )
    except TypeError as e:
        raise InvalidConfigurationError("Invalid configuration", e) from e

    _apply_env_overrides(config)
    validate_config(config)
    return config
