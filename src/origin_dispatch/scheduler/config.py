# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher Configuration

This module provides the configuration dataclass for the dispatcher: the
origin, its authorization source, scheduling cadence, retry and freeze
settings, and metrics export.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from ..exceptions import ConfigurationError
from ..transport.httpx_transport import DEFAULT_TIMEOUT
from .retry import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_AFTER_HEADER,
    DEFAULT_RETRY_AFTER_SECONDS,
)

# camelCase option name -> (field name, divisor applied to the value)
_LEGACY_KEYS: dict[str, tuple[str, float | None]] = {
    "getAuthorisation": ("get_authorisation", None),
    "repeatedTriggerDelay": ("repeated_trigger_delay", 1000.0),
    "checkedOutMax": ("checked_out_max", None),
    "postAuthFetchFreeze": ("post_auth_fetch_freeze", 1000.0),
    "maxAttemptsPerRequest": ("max_attempts_per_request", None),
    "verifyTransportCertificates": ("verify_transport_certificates", None),
    "logRequests": ("log_requests", None),
    "retryAfterHeader": ("retry_after_header_name", None),
    "retryAfterHeaderName": ("retry_after_header_name", None),
}


@dataclass
class DispatcherConfig:
    """
    Configuration for a Dispatcher bound to one origin.

    Durations are in seconds.
    """

    # === Origin ===

    origin: str = ""
    """Base URL every request path is appended to."""

    get_authorisation: Any = None
    """Authorization descriptor: a mapping with ``auth_method``, a refresh
    function, a CredentialStrategy, or None for no managed credential."""

    # === Scheduling ===

    repeated_trigger_delay: float = 0.01
    """Interval between dispatch loop ticks."""

    checked_out_max: int = 3
    """Maximum number of concurrently in-flight requests."""

    # === Retry and Backoff ===

    post_auth_fetch_freeze: float = 2.0
    """Freeze applied after every credential refresh (0 disables)."""

    max_attempts_per_request: int = DEFAULT_MAX_ATTEMPTS
    """Default attempt ceiling per request."""

    retry_after_header_name: str = DEFAULT_RETRY_AFTER_HEADER
    """Header read from rate-limit responses."""

    default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS
    """Freeze used when a rate-limit response carries no usable header."""

    # === Transport ===

    verify_transport_certificates: bool = True
    """Verify TLS certificates (default transport only)."""

    transport_timeout: float = DEFAULT_TIMEOUT
    """Per-call timeout (default transport only)."""

    log_requests: bool = True
    """Log each outbound request at INFO."""

    # === Metrics and Monitoring ===

    metrics_enabled: bool = True
    """Enable metrics collection."""

    prometheus_enabled: bool = False
    """Mirror metrics into prometheus_client objects."""

    start_prometheus_server: bool = False
    """Start the prometheus_client HTTP exporter on dispatcher start."""

    prometheus_host: str = "0.0.0.0"  # noqa: S104  # nosec B104  # Prometheus metrics server needs to bind to all interfaces for monitoring access
    """Prometheus metrics host."""

    prometheus_port: int = 9090
    """Prometheus metrics port."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.origin, str) or not self.origin:
            raise ConfigurationError("origin must be a non-empty string")
        if self.repeated_trigger_delay <= 0:
            raise ConfigurationError("repeated_trigger_delay must be positive")
        if isinstance(self.checked_out_max, bool) or self.checked_out_max < 1:
            raise ConfigurationError("checked_out_max must be at least 1")
        if self.post_auth_fetch_freeze < 0:
            raise ConfigurationError("post_auth_fetch_freeze must be non-negative")
        if (
            isinstance(self.max_attempts_per_request, bool)
            or self.max_attempts_per_request < 1
        ):
            raise ConfigurationError("max_attempts_per_request must be at least 1")
        if not self.retry_after_header_name:
            raise ConfigurationError("retry_after_header_name must be non-empty")
        if self.default_retry_after < 0:
            raise ConfigurationError("default_retry_after must be non-negative")
        if self.transport_timeout <= 0:
            raise ConfigurationError("transport_timeout must be positive")
        if not 0 < self.prometheus_port < 65536:
            raise ConfigurationError("prometheus_port must be between 1 and 65535")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "DispatcherConfig":
        """
        Build a config from a plain mapping.

        Field names are accepted as-is. The camelCase option names of older
        callers are also accepted; their delays are given in milliseconds
        and converted to seconds.

        Raises:
            ConfigurationError: For unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}

        for key, value in options.items():
            if key in known:
                values[key] = value
            elif key in _LEGACY_KEYS:
                name, divisor = _LEGACY_KEYS[key]
                if divisor is not None and value is not None:
                    value = value / divisor
                values[name] = value
            else:
                raise ConfigurationError(f"Unknown dispatcher option: {key!r}")

        return cls(**values)


__all__ = ["DispatcherConfig"]
