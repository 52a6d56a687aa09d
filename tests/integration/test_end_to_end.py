"""
End-to-end integration tests for the dispatcher.

These tests drive the full stack (Dispatcher, HttpxTransport, credential
strategies) against an in-process origin served through httpx.MockTransport,
covering complete request flows including throttling, credential rotation
and retry exhaustion.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest

from origin_dispatch import (
    Dispatcher,
    DispatcherConfig,
    HttpxTransport,
    MetricsCollector,
    RequestOptions,
    TerminalError,
)
from origin_dispatch.exceptions import RateLimited, RequestFailedError

ORIGIN = "https://api.example.com"
TOKEN_URI = "https://auth.example.com/oauth/token"
OAUTH2 = {
    "auth_method": "oauth2",
    "uri": TOKEN_URI,
    "client_id": "client",
    "client_secret": "secret",
}

ApiHandler = Callable[[httpx.Request], Awaitable[httpx.Response]]


async def always_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"path": request.url.path})


class OriginStub:
    """In-process origin plus token endpoint for httpx.MockTransport."""

    def __init__(self, api: ApiHandler = always_ok, token_lifetime: int = 3600):
        self.api = api
        self.token_lifetime = token_lifetime
        self.token_calls = 0
        self.calls: list[tuple[float, httpx.Request]] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URI:
            self.token_calls += 1
            return httpx.Response(
                200,
                json={
                    "token_type": "bearer",
                    "access_token": f"tok-{self.token_calls}",
                    "expires_in": self.token_lifetime,
                },
            )

        self.calls.append((time.monotonic(), request))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            return await self.api(request)
        finally:
            self.active -= 1

    @property
    def paths(self) -> list[str]:
        return [request.url.path for _, request in self.calls]

    @property
    def auth_headers(self) -> list[str | None]:
        return [request.headers.get("authorization") for _, request in self.calls]


def make_dispatcher(stub: OriginStub, **overrides: Any) -> Dispatcher:
    overrides.setdefault("post_auth_fetch_freeze", 0)
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return Dispatcher(
        DispatcherConfig(origin=ORIGIN, **overrides),
        transport=HttpxTransport(client=client),
        metrics_collector=MetricsCollector(enable_prometheus=False),
    )


class TestConcurrencyAndOrdering:
    """Ceiling and priority behaviour across the full stack."""

    @pytest.mark.asyncio
    async def test_in_flight_bounded_by_ceiling(self):
        """Concurrent calls against the origin never exceed checked_out_max."""

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.02)
            return httpx.Response(200, json={})

        stub = OriginStub(slow)
        async with make_dispatcher(stub, checked_out_max=3) as dispatcher:
            await asyncio.gather(
                *(dispatcher.request("GET", f"/items/{i}") for i in range(10))
            )

        assert len(stub.calls) == 10
        assert stub.max_active == 3

    @pytest.mark.asyncio
    async def test_priority_overtakes_queued_items(self):
        """A priority submission is dispatched before the N items queued ahead of it."""
        gate = asyncio.Event()

        async def api(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/blocker":
                await gate.wait()
            return httpx.Response(200, json={})

        stub = OriginStub(api)
        async with make_dispatcher(stub, checked_out_max=1) as dispatcher:
            futures = [dispatcher.submit({"method": "GET", "path": "/blocker"})]
            while not stub.calls:
                await asyncio.sleep(0.005)

            futures += [
                dispatcher.submit({"method": "GET", "path": f"/queued/{i}"})
                for i in range(4)
            ]
            futures.append(
                dispatcher.submit_priority({"method": "GET", "path": "/urgent"})
            )
            gate.set()
            await asyncio.gather(*futures)

        assert stub.paths == [
            "/blocker",
            "/urgent",
            "/queued/0",
            "/queued/1",
            "/queued/2",
            "/queued/3",
        ]


class TestManagedCredentials:
    """OAuth2 client-credentials flows through the dispatcher."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_refresh(self):
        """Two requests needing an absent credential trigger one token call."""
        stub = OriginStub()
        async with make_dispatcher(stub, get_authorisation=OAUTH2) as dispatcher:
            await asyncio.gather(
                dispatcher.request("GET", "/a"), dispatcher.request("GET", "/b")
            )
            assert stub.token_calls == 1

            # A valid credential is reused without refreshing
            await asyncio.gather(
                dispatcher.request("GET", "/c"), dispatcher.request("GET", "/d")
            )

        assert stub.token_calls == 1
        assert stub.auth_headers == ["Bearer tok-1"] * 4

    @pytest.mark.asyncio
    async def test_token_request_shape(self):
        """The token exchange is a form-encoded POST with client basic auth."""
        seen: list[httpx.Request] = []
        stub = OriginStub()

        async def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == TOKEN_URI:
                seen.append(request)
            return await stub(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = Dispatcher(
            DispatcherConfig(
                origin=ORIGIN, get_authorisation=OAUTH2, post_auth_fetch_freeze=0
            ),
            transport=HttpxTransport(client=client),
            metrics_collector=MetricsCollector(enable_prometheus=False),
        )
        async with dispatcher:
            await dispatcher.request("GET", "/")
        await client.aclose()

        token_request = seen[0]
        assert token_request.method == "POST"
        assert token_request.content == b"grant_type=client_credentials"
        assert token_request.headers["authorization"] == "Basic Y2xpZW50OnNlY3JldA=="

    @pytest.mark.asyncio
    async def test_expired_credential_refreshed(self):
        """A credential with no remaining lifetime is refreshed on next use."""
        stub = OriginStub(token_lifetime=0)
        async with make_dispatcher(stub, get_authorisation=OAUTH2) as dispatcher:
            await dispatcher.request("GET", "/a")
            await dispatcher.request("GET", "/b")

        assert stub.token_calls == 2
        assert stub.auth_headers == ["Bearer tok-1", "Bearer tok-2"]

    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries(self):
        """401 with version 1, refresh to version 2, success on attempt 2."""

        async def api(request: httpx.Request) -> httpx.Response:
            if request.headers.get("authorization") == "Bearer tok-1":
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(200, json={"ok": True})

        stub = OriginStub(api)
        async with make_dispatcher(stub, get_authorisation=OAUTH2) as dispatcher:
            response = await dispatcher.request("GET", "/resource")
            metrics = dispatcher.get_metrics()

        assert response.body == {"ok": True}
        assert len(stub.calls) == 2
        assert stub.auth_headers == ["Bearer tok-1", "Bearer tok-2"]
        assert metrics["attempts"] == 2
        assert metrics["credential_version"] == 2
        assert metrics["credential_invalidations"] == 1

    @pytest.mark.asyncio
    async def test_stale_401_keeps_newer_credential(self):
        """A late 401 carrying version 1 does not discard version 2."""
        rotated = asyncio.Event()

        async def api(request: httpx.Request) -> httpx.Response:
            auth = request.headers.get("authorization")
            if auth == "Bearer tok-1":
                if request.url.path == "/slow":
                    await rotated.wait()
                return httpx.Response(401, json={})
            rotated.set()
            return httpx.Response(200, json={})

        stub = OriginStub(api)
        async with make_dispatcher(
            stub, get_authorisation=OAUTH2, checked_out_max=2
        ) as dispatcher:
            await asyncio.gather(
                dispatcher.request("GET", "/fast"), dispatcher.request("GET", "/slow")
            )
            current = dispatcher.credentials.current

        assert stub.token_calls == 2
        assert current is not None and current.version == 2
        assert stub.auth_headers.count("Bearer tok-2") == 2
        assert dispatcher.credentials.invalidation_count == 1

    @pytest.mark.asyncio
    async def test_settling_freeze_after_refresh(self):
        """Dispatch pauses for post_auth_fetch_freeze after a token fetch."""
        stub = OriginStub()
        dispatcher = make_dispatcher(
            stub, get_authorisation=OAUTH2, post_auth_fetch_freeze=0.2
        )
        started = time.monotonic()
        async with dispatcher:
            await dispatcher.request("GET", "/")

        assert stub.calls[0][0] - started >= 0.19

    @pytest.mark.asyncio
    async def test_basic_auth(self):
        """Basic credentials are sent on every request without a token call."""
        stub = OriginStub()
        dispatcher = make_dispatcher(
            stub,
            get_authorisation={
                "auth_method": "basic",
                "client_id": "client",
                "client_secret": "secret",
            },
        )
        async with dispatcher:
            await dispatcher.request("GET", "/a")
            await dispatcher.request("GET", "/b")

        assert stub.token_calls == 0
        assert stub.auth_headers == ["Basic Y2xpZW50OnNlY3JldA=="] * 2


class TestRateLimiting:
    """Freeze behaviour driven by 429 responses."""

    @pytest.mark.asyncio
    async def test_429_delays_next_item(self):
        """An item submitted right after a 429 waits out the freeze."""
        limited = set()

        async def api(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/first" and "first" not in limited:
                limited.add("first")
                return httpx.Response(429, headers={"Retry-After": "1"})
            return httpx.Response(200, json={})

        stub = OriginStub(api)
        async with make_dispatcher(stub) as dispatcher:
            first = dispatcher.submit(RequestOptions(method="GET", path="/first"))
            while not dispatcher.backoff.is_frozen:
                await asyncio.sleep(0.005)
            frozen_at = time.monotonic()
            second = dispatcher.submit(RequestOptions(method="GET", path="/second"))
            await asyncio.gather(first, second)

        second_call = next(t for t, r in stub.calls if r.url.path == "/second")
        assert second_call - frozen_at >= 0.95
        assert stub.paths.count("/first") == 2

    @staticmethod
    def overlapping_limits(
        delays: dict[str, str],
    ) -> tuple[ApiHandler, dict[str, float]]:
        """
        Origin where the first calls to /a and /b are both in flight before
        either answers 429; /b answers 50 ms after /a. Retries succeed.
        """
        responded: dict[str, float] = {}
        arrived: list[str] = []
        both_arrived = asyncio.Event()

        async def api(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path in responded:
                return httpx.Response(200, json={})

            arrived.append(path)
            if len(arrived) == 2:
                both_arrived.set()
            await both_arrived.wait()
            if path == "/b":
                await asyncio.sleep(0.05)
            responded[path] = time.monotonic()
            return httpx.Response(429, headers={"Retry-After": delays[path]})

        return api, responded

    @pytest.mark.asyncio
    async def test_overlapping_freeze_extends(self):
        """A later, longer Retry-After extends the freeze for everyone."""
        api, responded = self.overlapping_limits({"/a": "0.2", "/b": "0.5"})
        stub = OriginStub(api)
        async with make_dispatcher(stub, checked_out_max=2) as dispatcher:
            await asyncio.gather(
                dispatcher.request("GET", "/a"), dispatcher.request("GET", "/b")
            )

        retries = [t for t, _ in stub.calls[2:]]
        assert len(retries) == 2
        assert min(retries) >= responded["/b"] + 0.49

    @pytest.mark.asyncio
    async def test_shorter_freeze_does_not_shorten(self):
        """A shorter Retry-After arriving later leaves the longer freeze in place."""
        api, responded = self.overlapping_limits({"/a": "0.5", "/b": "0.1"})
        stub = OriginStub(api)
        async with make_dispatcher(stub, checked_out_max=2) as dispatcher:
            await asyncio.gather(
                dispatcher.request("GET", "/a"), dispatcher.request("GET", "/b")
            )

        retries = [t for t, _ in stub.calls[2:]]
        assert len(retries) == 2
        assert min(retries) >= responded["/a"] + 0.49

    @pytest.mark.asyncio
    async def test_custom_retry_after_header(self):
        """retry_after_header_name selects which header carries the delay."""
        limited = []

        async def api(request: httpx.Request) -> httpx.Response:
            if not limited:
                limited.append(time.monotonic())
                return httpx.Response(
                    429, headers={"X-Backoff-Seconds": "0.3", "Retry-After": "60"}
                )
            return httpx.Response(200, json={})

        stub = OriginStub(api)
        async with make_dispatcher(
            stub, retry_after_header_name="X-Backoff-Seconds"
        ) as dispatcher:
            await asyncio.wait_for(dispatcher.request("GET", "/"), timeout=5)

        assert stub.calls[1][0] - limited[0] >= 0.29


class TestRetryExhaustion:
    """Attempt accounting across the full stack."""

    @pytest.mark.asyncio
    async def test_single_attempt_rejected(self):
        """maxAttempts=1 fails terminally without a second call."""

        async def api(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        stub = OriginStub(api)
        async with make_dispatcher(stub) as dispatcher:
            with pytest.raises(TerminalError) as exc_info:
                await dispatcher.submit(
                    {"method": "GET", "path": "/", "maxAttempts": 1, "notJson": True}
                )

        assert len(stub.calls) == 1
        assert isinstance(exc_info.value.last_error, RequestFailedError)
        assert exc_info.value.last_error.status_code == 500
        assert exc_info.value.last_error.body == "boom"

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self):
        """With the default ceiling, two failures then success resolves on attempt 3."""
        outcomes = ["error", "connect", "ok"]

        async def api(request: httpx.Request) -> httpx.Response:
            outcome = outcomes.pop(0)
            if outcome == "connect":
                raise httpx.ConnectError("connection refused", request=request)
            if outcome == "error":
                return httpx.Response(502, json={})
            return httpx.Response(200, json={"done": True})

        stub = OriginStub(api)
        async with make_dispatcher(stub) as dispatcher:
            response = await dispatcher.request("POST", "/jobs", {"name": "x"})
            metrics = dispatcher.get_metrics()

        assert response.body == {"done": True}
        assert len(stub.calls) == 3
        assert metrics["attempts"] == 3
        assert metrics["requests_retried"] == 2

    @pytest.mark.asyncio
    async def test_rate_limits_count_toward_ceiling(self):
        """Throttled attempts use up the ceiling like any other failure."""

        async def api(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "0"})

        stub = OriginStub(api)
        async with make_dispatcher(stub, max_attempts_per_request=2) as dispatcher:
            with pytest.raises(TerminalError) as exc_info:
                await dispatcher.request("GET", "/")

        assert len(stub.calls) == 2
        assert isinstance(exc_info.value.last_error, RateLimited)

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self):
        """Terminal failures do not stop later items from being served."""

        async def api(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/bad":
                return httpx.Response(500, json={})
            return httpx.Response(200, json={})

        stub = OriginStub(api)
        async with make_dispatcher(stub) as dispatcher:
            with pytest.raises(TerminalError):
                await dispatcher.request("GET", "/bad")
            response = await dispatcher.request("GET", "/good")

        assert response.status_code == 200
