# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for the transport that performs HTTP calls."""

from typing import Protocol, runtime_checkable

from ..types.request import OutboundRequest
from ..types.response import Response


@runtime_checkable
class TransportProtocol(Protocol):
    """
    Minimal protocol for the component that talks to the network.

    The dispatcher never speaks HTTP itself. It hands a fully assembled
    OutboundRequest to the transport and expects one of:

    1. A Response for any successful (2xx/3xx) answer
    2. RequestFailedError (or a subclass) carrying ``status_code``, headers
       and body when the origin answered with a failure status
    3. Any other exception when no structured status is available; the
       dispatcher treats those as transport-level failures
    """

    async def send(self, request: OutboundRequest) -> Response:
        """Perform the call described by ``request``."""
        ...

    async def aclose(self) -> None:
        """Release any pooled connections."""
        ...
