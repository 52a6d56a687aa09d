# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the origin dispatch library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from DispatchError, making it easy to catch
all dispatcher-related exceptions with a single except clause.

Only a subset ever reaches the submitting caller: ``TerminalError`` when an
item exhausts its attempts, and ``AuthError`` / ``ConfigurationError`` when
authorization cannot be resolved at all. The others are raised by transports
and consumed by the retry policy.
"""

from collections.abc import Mapping
from typing import Any


class DispatchError(Exception):
    """Base exception for all dispatcher errors.

    Example:
        try:
            response = await dispatcher.submit(options)
        except DispatchError as e:
            logger.error(f"Request to origin failed: {e}")
    """

    pass


class ConfigurationError(DispatchError):
    """Raised when configuration is invalid.

    Common causes include:
    - Missing or empty origin
    - Unknown ``auth_method`` in an authorization descriptor
    - Missing ``client_id`` / ``client_secret`` / ``uri`` fields
    - Non-positive concurrency ceiling or attempt limits
    - A managed credential requested with no refresh strategy configured
    """

    pass


class AuthError(DispatchError):
    """Raised when a credential refresh fails or returns malformed data.

    Every caller waiting on the same refresh receives the same AuthError
    instance. It is not retried internally.
    """

    pass


class RequestFailedError(DispatchError):
    """Raised by a transport when the origin answered with a failure status.

    Attributes:
        status_code: HTTP status code returned by the origin.
        headers: Response headers (case-insensitive lookups are the
            caller's responsibility; transports pass what they received).
        body: Response body, parsed if the request was JSON.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers: dict[str, str] = dict(headers or {})
        self.body = body


class AuthorizationFailure(RequestFailedError):
    """The origin rejected the credentials (HTTP 401)."""

    def __init__(
        self,
        message: str = "Origin rejected the request credentials",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ):
        super().__init__(message, 401, headers=headers, body=body)


class RateLimited(RequestFailedError):
    """The origin signalled throttling (HTTP 429).

    Attributes:
        retry_after: Seconds the origin asked us to wait, if it said so.
    """

    def __init__(
        self,
        message: str = "Origin is rate limiting requests",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, 429, headers=headers, body=body)
        self.retry_after = retry_after


class TransportFailure(DispatchError):
    """Raised when a call failed without any structured status.

    Connection resets, DNS failures, TLS errors and timeouts end up here.
    The original exception is kept as ``__cause__``.
    """

    status_code = None


class TerminalError(DispatchError):
    """Raised to the caller once an item has used up its attempts.

    Attributes:
        last_error: The failure from the final attempt.
        attempts: Number of dispatch attempts made.
    """

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(
            f"Request failed after {attempts} attempt(s): {last_error}"
        )
        self.last_error = last_error
        self.attempts = attempts


class DispatcherStoppedError(DispatchError):
    """Raised when submitting to, or still queued on, a stopped dispatcher."""

    pass


__all__ = [
    "AuthError",
    "AuthorizationFailure",
    "ConfigurationError",
    "DispatchError",
    "DispatcherStoppedError",
    "RateLimited",
    "RequestFailedError",
    "TerminalError",
    "TransportFailure",
]
