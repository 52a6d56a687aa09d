# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Origin Dispatch - Throttled, authorized request dispatch to one HTTP origin.

This library sits between application code and a remote HTTP origin. It
serializes and throttles requests, keeps a shared auto-refreshing
authorization credential, retries failed attempts a bounded number of
times, and freezes all dispatch when the origin signals rate limiting.

Key Features:
    - Bounded concurrency with FIFO and priority submission
    - Single-flight credential refresh (none, basic, OAuth2, custom function)
    - Version-guarded credential invalidation on 401 responses
    - Global freeze honoring Retry-After on 429 responses
    - Prometheus metrics via prometheus_client

Quick Start:
    >>> from origin_dispatch import RequestOptions, create_dispatcher
    >>>
    >>> dispatcher = create_dispatcher(
    ...     "https://api.example.com",
    ...     get_authorisation={
    ...         "auth_method": "oauth2",
    ...         "uri": "https://auth.example.com/token",
    ...         "client_id": "my-client",
    ...         "client_secret": "...",
    ...     },
    ... )
    >>> async with dispatcher:
    ...     response = await dispatcher.submit(RequestOptions("GET", "/items"))

Main Exports:
    - Dispatcher, create_dispatcher: Core scheduling components
    - DispatcherConfig: Configuration options
    - RequestOptions, Response: Request and response types
    - CredentialManager and the credential strategies
    - TransportProtocol, HttpxTransport: Transport interface and default

Version: 1.0.0
"""

__version__ = "1.0.0"

from .auth import (
    BaseCredentialStrategy,
    BasicAuthStrategy,
    CredentialManager,
    CredentialStrategy,
    FunctionStrategy,
    NoAuthStrategy,
    OAuth2ClientCredentialsStrategy,
    create_credential_strategy,
)
from .exceptions import (
    AuthError,
    AuthorizationFailure,
    ConfigurationError,
    DispatchError,
    DispatcherStoppedError,
    RateLimited,
    RequestFailedError,
    TerminalError,
    TransportFailure,
)
from .observability import MetricsCollector, get_metrics_collector
from .protocols import TransportProtocol
from .scheduler import (
    BackoffController,
    Dispatcher,
    DispatcherConfig,
    FailureKind,
    RequestQueue,
    RetryPolicy,
    create_dispatcher,
)
from .transport import HttpxTransport
from .types import (
    AuthHeader,
    Credential,
    CredentialGrant,
    OutboundRequest,
    RequestOptions,
    Response,
)

__all__ = [
    "AuthError",
    "AuthHeader",
    "AuthorizationFailure",
    "BackoffController",
    "BaseCredentialStrategy",
    "BasicAuthStrategy",
    "ConfigurationError",
    "Credential",
    "CredentialGrant",
    "CredentialManager",
    "CredentialStrategy",
    "DispatchError",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherStoppedError",
    "FailureKind",
    "FunctionStrategy",
    "HttpxTransport",
    "MetricsCollector",
    "NoAuthStrategy",
    "OAuth2ClientCredentialsStrategy",
    "OutboundRequest",
    "RateLimited",
    "RequestFailedError",
    "RequestOptions",
    "Response",
    "RequestQueue",
    "RetryPolicy",
    "TerminalError",
    "TransportFailure",
    "TransportProtocol",
    "__version__",
    "create_credential_strategy",
    "create_dispatcher",
    "get_metrics_collector",
]
