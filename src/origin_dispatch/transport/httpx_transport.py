# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Default transport built on httpx.

Translates an OutboundRequest into an ``httpx.AsyncClient.request`` call and
maps the outcome onto the dispatcher's contract: a Response for success,
RequestFailedError subclasses for failure statuses, TransportFailure when the
call never produced a status.
"""

import logging
import time
from collections.abc import Mapping
from typing import Any

import httpx

from ..exceptions import (
    AuthorizationFailure,
    RateLimited,
    RequestFailedError,
    TransportFailure,
)
from ..types.request import OutboundRequest
from ..types.response import Response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class HttpxTransport:
    """
    TransportProtocol implementation using a shared ``httpx.AsyncClient``.

    Example:
        >>> transport = HttpxTransport(verify=True, timeout=10.0)
        >>> response = await transport.send(
        ...     OutboundRequest("GET", "https://api.example.com/items")
        ... )
        >>> await transport.aclose()
    """

    def __init__(
        self,
        verify: bool = True,
        timeout: float | None = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            verify: Verify TLS certificates of the origin
            timeout: Per-call timeout in seconds (None disables it)
            client: Pre-built client to use instead of creating one. A client
                passed in is not closed by ``aclose()``.
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            verify=verify, timeout=timeout, follow_redirects=True
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def send(self, request: OutboundRequest) -> Response:
        """
        Perform the request.

        Raises:
            AuthorizationFailure: On HTTP 401
            RateLimited: On HTTP 429
            RequestFailedError: On any other status >= 400
            TransportFailure: When httpx raised before a status was available
        """
        kwargs: dict[str, Any] = {
            "method": request.method.upper(),
            "url": request.url,
            "headers": request.headers,
        }
        body = request.body
        if body is not None:
            if request.json:
                kwargs["json"] = body
            elif isinstance(body, (str, bytes)):
                kwargs["content"] = body
            elif isinstance(body, Mapping):
                kwargs["data"] = dict(body)
            else:
                kwargs["content"] = str(body)

        started = time.monotonic()
        try:
            raw = await self._client.request(**kwargs)
        except httpx.HTTPError as e:
            raise TransportFailure(
                f"{request.method.upper()} {request.url} failed: {e!r}"
            ) from e
        elapsed = time.monotonic() - started

        headers = {name.lower(): value for name, value in raw.headers.items()}
        parsed = self._parse_body(raw, request.json)

        if raw.status_code >= 400:
            raise self._failure_for(raw.status_code, request, headers, parsed)

        return Response(
            status_code=raw.status_code,
            headers=headers,
            body=parsed,
            elapsed=elapsed,
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    def _parse_body(self, raw: httpx.Response, as_json: bool) -> Any:
        """Parse JSON when asked to, falling back to text for empty/invalid bodies."""
        if not as_json:
            return raw.text
        if not raw.content:
            return None
        try:
            return raw.json()
        except ValueError:
            logger.debug(
                f"Response from {raw.request.url} was not valid JSON, returning text"
            )
            return raw.text

    def _failure_for(
        self,
        status_code: int,
        request: OutboundRequest,
        headers: dict[str, str],
        body: Any,
    ) -> RequestFailedError:
        message = f"{request.method.upper()} {request.url} returned {status_code}"
        if status_code == 401:
            return AuthorizationFailure(message, headers=headers, body=body)
        if status_code == 429:
            return RateLimited(message, headers=headers, body=body)
        return RequestFailedError(message, status_code, headers=headers, body=body)


__all__ = ["DEFAULT_TIMEOUT", "HttpxTransport"]
