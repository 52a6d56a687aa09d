# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Credential refresh strategies.

Each strategy has one capability: produce a CredentialGrant. The set is
closed (none / basic / oauth2 / custom function) and selected from an
authorization descriptor by ``create_credential_strategy``.
"""

import base64
import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..exceptions import AuthError, ConfigurationError, DispatchError
from ..types.credential import NEVER_EXPIRES, CredentialGrant
from ..types.request import OutboundRequest

if TYPE_CHECKING:
    from ..protocols.transport import TransportProtocol

logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialStrategy(Protocol):
    """Anything that can fetch a fresh credential grant."""

    async def fetch(self) -> CredentialGrant:
        """Fetch a fresh grant. Raise AuthError on failure."""
        ...


class BaseCredentialStrategy(ABC):
    """
    Common base for the built-in strategies.

    Subclasses implement ``_fetch_raw``; ``fetch`` validates its output
    against the grant contract.
    """

    async def fetch(self) -> CredentialGrant:
        raw = await self._fetch_raw()
        return CredentialGrant.coerce(raw)

    @abstractmethod
    async def _fetch_raw(self) -> Any:
        """Return grant data in any shape CredentialGrant.coerce accepts."""


class NoAuthStrategy(BaseCredentialStrategy):
    """Produces an empty credential that never expires (no Authorization header)."""

    async def _fetch_raw(self) -> CredentialGrant:
        return CredentialGrant(
            token_type="none", access_token="", expires_at=NEVER_EXPIRES
        )

    def __repr__(self) -> str:
        return "NoAuthStrategy()"


class BasicAuthStrategy(BaseCredentialStrategy):
    """HTTP basic credentials, encoded once, never expiring."""

    def __init__(self, client_id: str, client_secret: str) -> None:
        if not isinstance(client_id, str) or not isinstance(client_secret, str):
            raise ConfigurationError(
                "basic auth requires string client_id and client_secret"
            )
        self.client_id = client_id
        self._encoded = base64.b64encode(
            f"{client_id}:{client_secret}".encode()
        ).decode("ascii")

    async def _fetch_raw(self) -> CredentialGrant:
        return CredentialGrant(
            token_type="basic", access_token=self._encoded, expires_at=NEVER_EXPIRES
        )

    def __repr__(self) -> str:
        return f"BasicAuthStrategy(client_id={self.client_id!r})"


class OAuth2ClientCredentialsStrategy(BaseCredentialStrategy):
    """
    OAuth2 client-credentials exchange performed through a transport.

    POSTs ``grant_type=client_credentials`` (form encoded) to the token
    endpoint, authenticating the client with HTTP basic auth, and expects a
    JSON body with ``token_type``, ``access_token`` and ``expires_in``.
    """

    def __init__(
        self,
        uri: str,
        client_id: str,
        client_secret: str,
        transport: "TransportProtocol | None" = None,
        scope: str | None = None,
    ) -> None:
        if not uri or not isinstance(uri, str):
            raise ConfigurationError("oauth2 auth requires a token endpoint uri")
        if not isinstance(client_id, str) or not isinstance(client_secret, str):
            raise ConfigurationError(
                "oauth2 auth requires string client_id and client_secret"
            )
        self.uri = uri
        self.client_id = client_id
        self.scope = scope
        self.transport = transport
        self._client_auth = base64.b64encode(
            f"{client_id}:{client_secret}".encode()
        ).decode("ascii")

    async def _fetch_raw(self) -> Any:
        if self.transport is None:
            raise ConfigurationError("oauth2 auth needs a transport to reach its uri")

        form = {"grant_type": "client_credentials"}
        if self.scope:
            form["scope"] = self.scope
        request = OutboundRequest(
            method="POST",
            url=self.uri,
            body=form,
            headers={
                "Authorization": f"Basic {self._client_auth}",
                "Accept": "application/json",
            },
            json=False,
        )

        try:
            response = await self.transport.send(request)
        except DispatchError as e:
            raise AuthError(f"Token request to {self.uri} failed: {e}") from e

        body = response.body
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except ValueError as e:
                raise AuthError(
                    f"Token endpoint {self.uri} did not return JSON"
                ) from e

        logger.debug(f"Fetched OAuth2 token from {self.uri}")
        return body

    def __repr__(self) -> str:
        return (
            f"OAuth2ClientCredentialsStrategy(uri={self.uri!r}, "
            f"client_id={self.client_id!r})"
        )


class FunctionStrategy(BaseCredentialStrategy):
    """
    Wraps a user-provided refresh function.

    The function takes no arguments and may be sync or async. It returns a
    mapping, a CredentialGrant, or an object with the grant fields as
    attributes. Exceptions it raises become AuthError.
    """

    def __init__(self, func: Callable[[], Any]) -> None:
        if not callable(func):
            raise ConfigurationError("refresh function must be callable")
        self.func = func

    async def _fetch_raw(self) -> Any:
        try:
            result = self.func()
            if inspect.isawaitable(result):
                result = await result
        except AuthError:
            raise
        except Exception as e:
            raise AuthError(f"Credential refresh function failed: {e}") from e
        return result

    def __repr__(self) -> str:
        name = getattr(self.func, "__qualname__", type(self.func).__name__)
        return f"FunctionStrategy({name})"


def create_credential_strategy(
    descriptor: Any,
    transport: "TransportProtocol | None" = None,
) -> CredentialStrategy | None:
    """
    Factory function to build a strategy from an authorization descriptor.

    Args:
        descriptor: One of
            - None: no managed authorization
            - an existing CredentialStrategy (returned as-is)
            - a callable refresh function
            - ``{"auth_method": "none"}``
            - ``{"auth_method": "basic", "client_id": ..., "client_secret": ...}``
            - ``{"auth_method": "oauth2", "uri": ..., "client_id": ...,
              "client_secret": ...}``
        transport: Transport used by network-based strategies

    Returns:
        The strategy, or None when descriptor is None

    Raises:
        ConfigurationError: If the descriptor is unknown or incomplete
    """
    if descriptor is None:
        return None

    if isinstance(descriptor, CredentialStrategy):
        return descriptor

    if isinstance(descriptor, Mapping):
        method = str(descriptor.get("auth_method", "")).lower()

        if method == "none":
            return NoAuthStrategy()

        elif method == "basic":
            _require(descriptor, "basic", ("client_id", "client_secret"))
            return BasicAuthStrategy(
                descriptor["client_id"], descriptor["client_secret"]
            )

        elif method == "oauth2":
            _require(descriptor, "oauth2", ("uri", "client_id", "client_secret"))
            return OAuth2ClientCredentialsStrategy(
                descriptor["uri"],
                descriptor["client_id"],
                descriptor["client_secret"],
                transport=transport,
                scope=descriptor.get("scope"),
            )

        else:
            raise ConfigurationError(
                f"Unknown auth_method in authorization descriptor: {method!r}"
            )

    if callable(descriptor):
        return FunctionStrategy(descriptor)

    raise ConfigurationError(
        f"Unsupported authorization descriptor of type {type(descriptor).__name__}"
    )


def _require(descriptor: Mapping[str, Any], method: str, keys: tuple[str, ...]) -> None:
    missing = [key for key in keys if descriptor.get(key) in (None, "")]
    if missing:
        raise ConfigurationError(
            f"{method} authorization descriptor is missing: {', '.join(missing)}"
        )


__all__ = [
    "BaseCredentialStrategy",
    "BasicAuthStrategy",
    "CredentialStrategy",
    "FunctionStrategy",
    "NoAuthStrategy",
    "OAuth2ClientCredentialsStrategy",
    "create_credential_strategy",
]
