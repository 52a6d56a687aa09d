"""
Shared fixtures for benchmark tests.
"""

import pytest

from origin_dispatch.scheduler.config import DispatcherConfig
from origin_dispatch.types import OutboundRequest, Response


class InstantTransport:
    """Transport that answers immediately, for measuring overhead only."""

    def __init__(self) -> None:
        self.calls = 0

    async def send(self, request: OutboundRequest) -> Response:
        self.calls += 1
        return Response(status_code=200, body={"result": "instant"})

    async def aclose(self) -> None:
        pass


@pytest.fixture
def instant_transport():
    """Instant transport instance."""
    return InstantTransport()


@pytest.fixture
def benchmark_config():
    """Configuration optimized for benchmarking."""
    return DispatcherConfig(
        origin="https://benchmark.test",
        checked_out_max=100,
        post_auth_fetch_freeze=0,
        log_requests=False,
        metrics_enabled=False,
    )
