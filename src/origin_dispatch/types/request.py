# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request description types for the dispatcher.

This module defines what a caller submits (RequestOptions) and what the
dispatcher hands to the transport once a request has been assembled
(OutboundRequest).
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from ..exceptions import ConfigurationError

AuthRefreshFunc = Callable[[bool], Union[str, Awaitable[str]]]
"""Custom auth callback: receives ``force_refresh`` and returns a header value."""

AuthOption = Union[str, AuthRefreshFunc, None]


class AuthSource(Enum):
    """Where the Authorization header for an attempt came from."""

    NONE = "none"
    CUSTOM_STATIC = "custom_static"
    CUSTOM_FUNCTION = "custom_function"
    MANAGED = "managed"


@dataclass
class RequestOptions:
    """
    A caller's description of one request against the origin.

    Attributes:
        method: HTTP method, e.g. "GET"
        path: Path appended verbatim to the configured origin
        data: Request body (serialized as JSON unless not_json is set)
        headers: Extra request headers
        auth: A fixed Authorization header value, or a callable taking
            ``force_refresh`` and returning one (sync or async). When None the
            dispatcher's managed credential is used, if any.
        not_json: When False the body is sent as JSON and the response body
            is parsed as JSON
        max_attempts: Per-request override of the attempt ceiling
    """

    method: str
    path: str
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    auth: AuthOption = None
    not_json: bool = False
    max_attempts: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.method, str) or not self.method:
            raise ConfigurationError("method must be a non-empty string")
        if not isinstance(self.path, str):
            raise ConfigurationError("path must be a string")
        if self.headers is None or not isinstance(self.headers, Mapping):
            self.headers = {}
        else:
            self.headers = dict(self.headers)
        if self.auth is not None and not (
            isinstance(self.auth, str) or callable(self.auth)
        ):
            raise ConfigurationError(
                f"auth must be a header string or a callable, got {type(self.auth).__name__}"
            )
        if self.max_attempts is not None and (
            isinstance(self.max_attempts, bool)
            or not isinstance(self.max_attempts, int)
            or self.max_attempts < 1
        ):
            raise ConfigurationError("max_attempts must be a positive integer")

    @property
    def auth_source(self) -> AuthSource | None:
        """Custom auth source for this request, or None to defer to the manager."""
        if self.auth is None:
            return None
        if isinstance(self.auth, str):
            return AuthSource.CUSTOM_STATIC
        return AuthSource.CUSTOM_FUNCTION

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "RequestOptions":
        """
        Build options from a plain mapping.

        Accepts both snake_case keys and the camelCase keys used by older
        callers (``notJson``, ``maxAttempts``).
        """
        try:
            method = options["method"]
            path = options["path"]
        except KeyError as e:
            raise ConfigurationError(f"Request options missing {e.args[0]!r}") from e

        return cls(
            method=method,
            path=path,
            data=options.get("data"),
            headers=dict(options.get("headers") or {}),
            auth=options.get("auth"),
            not_json=bool(options.get("not_json", options.get("notJson", False))),
            max_attempts=options.get("max_attempts", options.get("maxAttempts")),
        )


@dataclass
class OutboundRequest:
    """
    A fully assembled request ready for the transport.

    Attributes:
        method: HTTP method
        url: Absolute URL (origin + path)
        body: Body as supplied by the caller
        headers: Final headers including Authorization, if any
        json: Whether the body is JSON and the response should be parsed as JSON
    """

    method: str
    url: str
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    json: bool = True

    def redacted_headers(self) -> dict[str, str]:
        """Headers safe to log: the Authorization value is masked."""
        return {
            name: ("<redacted>" if name.lower() == "authorization" else value)
            for name, value in self.headers.items()
        }


__all__ = [
    "AuthOption",
    "AuthRefreshFunc",
    "AuthSource",
    "OutboundRequest",
    "RequestOptions",
]
