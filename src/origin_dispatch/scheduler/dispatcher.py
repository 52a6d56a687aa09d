# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher: the outbound request scheduling loop.

Requests are queued on submission and drained by a background loop that
keeps at most ``checked_out_max`` of them in flight. Each dispatch resolves
the Authorization header, waits out any active freeze, calls the transport,
and then either completes the caller's future or feeds the failure to the
RetryPolicy, which invalidates credentials, freezes the dispatcher, and
requeues the item at the head or fails it terminally.
"""

import asyncio
import contextlib
import dataclasses
import inspect
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from typing_extensions import Self

from ..auth.manager import CredentialManager
from ..auth.strategies import create_credential_strategy
from ..exceptions import (
    AuthError,
    ConfigurationError,
    DispatcherStoppedError,
    TerminalError,
)
from ..observability.collector import MetricsCollector, get_metrics_collector
from ..observability.constants import (
    ATTEMPT_DURATION_SECONDS,
    ATTEMPT_FAILURES_TOTAL,
    CREDENTIAL_INVALIDATIONS_TOTAL,
    CREDENTIAL_REFRESHES_TOTAL,
    FREEZES_TOTAL,
    IN_FLIGHT_REQUESTS,
    QUEUE_DEPTH,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_RETRIED_TOTAL,
    REQUESTS_SUBMITTED_TOTAL,
)
from ..protocols.transport import TransportProtocol
from ..transport.httpx_transport import HttpxTransport
from ..types.credential import Credential
from ..types.queue import QueueItem, new_future
from ..types.request import AuthSource, OutboundRequest, RequestOptions
from ..types.response import Response
from .backoff import BackoffController
from .config import DispatcherConfig
from .queue import RequestQueue
from .retry import FailureKind, RetryPolicy

logger = logging.getLogger(__name__)

# Per-dispatcher metric names
METRIC_REQUESTS_SUBMITTED = "requests_submitted"
METRIC_REQUESTS_COMPLETED = "requests_completed"
METRIC_REQUESTS_FAILED = "requests_failed"
METRIC_REQUESTS_RETRIED = "requests_retried"
METRIC_ATTEMPTS = "attempts"
METRIC_FREEZES = "freezes"
METRIC_CREDENTIAL_REFRESHES = "credential_refreshes"
METRIC_CREDENTIAL_INVALIDATIONS = "credential_invalidations"
METRIC_LOOP_TICKS = "loop_ticks"


class Dispatcher:
    """
    Queue, throttle and retry requests against a single origin.

    Submissions return an ``asyncio.Future`` that resolves to a Response or
    raises TerminalError, AuthError or ConfigurationError. Items may be
    submitted before ``start()``; they are dispatched once the loop runs.

    Thread Safety:
        Designed for a single event loop. The in-flight counter is guarded by
        a threading.Lock; the queue, credential and freeze state each carry
        their own.

    Example:
        >>> config = DispatcherConfig(
        ...     origin="https://api.example.com",
        ...     get_authorisation={"auth_method": "oauth2", "uri": token_uri,
        ...                        "client_id": "id", "client_secret": "secret"},
        ... )
        >>> async with Dispatcher(config) as dispatcher:
        ...     response = await dispatcher.submit(
        ...         RequestOptions(method="GET", path="/items")
        ...     )
    """

    def __init__(
        self,
        config: DispatcherConfig,
        transport: TransportProtocol | None = None,
        metrics_collector: MetricsCollector | None = None,
    ):
        """
        Initialize the Dispatcher.

        Args:
            config: Dispatcher configuration
            transport: Transport used for every call, including token
                requests. Defaults to an HttpxTransport owned (and closed) by
                this dispatcher.
            metrics_collector: Collector to report into. Defaults to the
                global collector when metrics are enabled.
        """
        self.config = config

        self._owns_transport = transport is None
        if transport is None:
            transport = HttpxTransport(
                verify=config.verify_transport_certificates,
                timeout=config.transport_timeout,
            )
        self.transport: TransportProtocol = transport

        strategy = create_credential_strategy(
            config.get_authorisation, transport=self.transport
        )
        self.credentials = CredentialManager(strategy)
        self.credentials.add_refresh_listener(self._on_credential_refresh)

        self.backoff = BackoffController()
        self.queue = RequestQueue()
        self.retry_policy = RetryPolicy(
            max_attempts_per_request=config.max_attempts_per_request,
            retry_after_header_name=config.retry_after_header_name,
            default_retry_after=config.default_retry_after,
        )

        self._setup_execution_control()
        self._setup_metrics(metrics_collector)

        logger.info(
            f"Initialized {self.__class__.__name__} for {config.origin} "
            f"(checked_out_max={config.checked_out_max}, "
            f"auth={strategy!r})"
        )

    def _setup_execution_control(self) -> None:
        self._lock = threading.Lock()
        self._in_flight = 0
        self._item_counter = 0
        self._running = False
        self._stopped = False
        self._loop_task: asyncio.Task[None] | None = None
        self._active_tasks: set[asyncio.Task[None]] = set()
        self._wakeup_event = asyncio.Event()
        self._shutdown_lock = asyncio.Lock()

    def _setup_metrics(self, metrics_collector: MetricsCollector | None) -> None:
        self.metrics_enabled = self.config.metrics_enabled
        self.metrics: dict[str, int] = defaultdict(int)
        self._metric_labels = {"origin": self.config.origin}

        if not self.metrics_enabled:
            self.metrics_collector = None
        elif metrics_collector is not None:
            self.metrics_collector = metrics_collector
        else:
            self.metrics_collector = get_metrics_collector(
                enable_prometheus=self.config.prometheus_enabled
            )

    # ===== LIFECYCLE =====

    async def start(self) -> None:
        """Start the dispatch loop."""
        if self._stopped:
            raise DispatcherStoppedError("Dispatcher has been stopped")
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(
            self._run_loop(), name="origin_dispatch_loop"
        )

        collector = self.metrics_collector
        if (
            collector is not None
            and self.config.prometheus_enabled
            and self.config.start_prometheus_server
            and not collector.server_running
        ):
            collector.start_http_server(
                self.config.prometheus_host, self.config.prometheus_port
            )

        logger.info(f"{self.__class__.__name__} started for {self.config.origin}")

    async def stop(self) -> None:
        """
        Stop the dispatcher.

        Cancels the loop and every in-flight dispatch, and fails every item
        still queued with DispatcherStoppedError. Further submissions raise.
        """
        async with self._shutdown_lock:
            if self._stopped:
                return

            self._stopped = True
            self._running = False

            if self._loop_task:
                self._loop_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._loop_task
                self._loop_task = None

            if self._active_tasks:
                for task in list(self._active_tasks):
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*self._active_tasks, return_exceptions=True)
            self._active_tasks.clear()

            dropped = self.queue.drain()
            for item in dropped:
                if item.reject(DispatcherStoppedError("Dispatcher stopped")):
                    self._record_failure_metric("stopped")
            if dropped:
                logger.warning(
                    f"Dispatcher stopped with {len(dropped)} request(s) still queued"
                )
            self._update_gauges()

            await self.credentials.close()
            if self._owns_transport:
                await self.transport.aclose()

            logger.info(f"{self.__class__.__name__} stopped for {self.config.origin}")

    def is_running(self) -> bool:
        """Check if the dispatch loop is running."""
        return self._running

    async def __aenter__(self) -> Self:
        """
        Async context manager entry.

        Example:
            async with Dispatcher(config) as dispatcher:
                response = await dispatcher.submit(options)
        """
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Stop the dispatcher even if the block raised."""
        await self.stop()

    # ===== SUBMISSION =====

    def submit(
        self, request: RequestOptions | Mapping[str, Any]
    ) -> "asyncio.Future[Response]":
        """
        Queue a request at the tail.

        Never blocks; await the returned future for the outcome.

        Raises:
            DispatcherStoppedError: If the dispatcher has been stopped
            ConfigurationError: If the request description is invalid
        """
        return self._enqueue(request, priority=False)

    def submit_priority(
        self, request: RequestOptions | Mapping[str, Any]
    ) -> "asyncio.Future[Response]":
        """Queue a request at the head, ahead of everything already waiting."""
        return self._enqueue(request, priority=True)

    async def request(
        self,
        method: str,
        path: str,
        data: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        auth: Any = None,
        not_json: bool = False,
        max_attempts: int | None = None,
        priority: bool = False,
    ) -> Response:
        """Build RequestOptions from arguments, submit, and await the response."""
        options = RequestOptions(
            method=method,
            path=path,
            data=data,
            headers=dict(headers or {}),
            auth=auth,
            not_json=not_json,
            max_attempts=max_attempts,
        )
        future = self._enqueue(options, priority=priority)
        return await future

    def _enqueue(
        self, request: RequestOptions | Mapping[str, Any], priority: bool
    ) -> "asyncio.Future[Response]":
        if self._stopped:
            raise DispatcherStoppedError("Cannot submit to a stopped dispatcher")

        if isinstance(request, RequestOptions):
            options = request
        elif isinstance(request, Mapping):
            options = RequestOptions.from_mapping(request)
        else:
            raise ConfigurationError(
                f"Expected RequestOptions or a mapping, got {type(request).__name__}"
            )

        with self._lock:
            self._item_counter += 1
            item_id = self._item_counter

        item = QueueItem(options=options, future=new_future(), item_id=item_id)
        if priority:
            self.queue.push_front(item)
        else:
            self.queue.push(item)

        logger.debug(
            f"Queued {item.describe()} (priority={priority}, pending={len(self.queue)})"
        )
        self._record(
            METRIC_REQUESTS_SUBMITTED,
            REQUESTS_SUBMITTED_TOTAL,
            {"priority": "true" if priority else "false"},
        )
        self._update_gauges()
        self._nudge()
        return item.future

    # ===== INTROSPECTION =====

    @property
    def pending(self) -> int:
        """Number of queued requests."""
        return len(self.queue)

    @property
    def in_flight(self) -> int:
        """Number of requests currently checked out."""
        return self._in_flight

    def queue_snapshot(self) -> list[RequestOptions]:
        """Options of every queued request, head first."""
        return [item.options for item in self.queue.snapshot()]

    def get_metrics(self) -> dict[str, Any]:
        """Flat snapshot of this dispatcher's counters and state."""
        snapshot: dict[str, Any] = dict(self.metrics)
        snapshot.update(
            {
                "pending": self.pending,
                "in_flight": self.in_flight,
                "frozen_for": self.backoff.remaining(),
                "credential_version": self.credentials.version,
                "running": self._running,
            }
        )
        return snapshot

    # ===== MAIN LOOP =====

    async def _run_loop(self) -> None:
        """Trigger on every tick and whenever nudged, until stopped."""
        tick = self.config.repeated_trigger_delay
        while self._running:
            self._wakeup_event.clear()
            try:
                self._trigger()
            except Exception as e:
                logger.exception(f"Dispatch trigger failed: {e}")

            try:
                await asyncio.wait_for(self._wakeup_event.wait(), timeout=tick)
            except asyncio.TimeoutError:
                pass

    def _trigger(self) -> int:
        """Check out queued items into free slots. Returns how many started."""
        if self.metrics_enabled:
            self.metrics[METRIC_LOOP_TICKS] += 1

        started = 0
        while True:
            with self._lock:
                if self._in_flight >= self.config.checked_out_max:
                    break
                item = self.queue.pop()
                if item is None:
                    break
                if item.done:
                    # Caller cancelled its future while the item was queued
                    logger.debug(f"Dropping {item.describe()}: caller no longer waiting")
                    continue
                self._in_flight += 1

            task = asyncio.create_task(
                self._process_item(item), name=f"origin_dispatch_item_{item.item_id}"
            )
            self._active_tasks.add(task)
            task.add_done_callback(self._active_tasks.discard)
            started += 1

        if started:
            self._update_gauges()
        return started

    def _nudge(self) -> None:
        self._wakeup_event.set()

    def _release(self) -> None:
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)
        self._update_gauges()
        self._nudge()

    # ===== PER-ITEM PROCESSING =====

    async def _process_item(self, item: QueueItem) -> None:
        """Run one attempt for ``item``. Never raises except on cancellation."""
        try:
            await self._attempt(item)
        except asyncio.CancelledError:
            item.reject(DispatcherStoppedError("Dispatcher stopped while in flight"))
            raise
        except Exception as e:
            logger.exception(f"Unexpected error dispatching {item.describe()}")
            self._fail(item, TerminalError(e, max(item.attempts, 1)), "internal")
        finally:
            self._release()

    async def _attempt(self, item: QueueItem) -> None:
        try:
            request, source, version = await self._prepare(item)
        except (AuthError, ConfigurationError) as e:
            logger.error(f"Authorization for {item.describe()} failed: {e}")
            self._fail(item, e, "auth")
            return

        await self.backoff.wait_until_unfrozen()

        if self.config.log_requests:
            logger.info(
                f"{request.method} {request.url} "
                f"(attempt {item.attempts + 1}, headers={request.redacted_headers()})"
            )

        if self.metrics_enabled:
            self.metrics[METRIC_ATTEMPTS] += 1
        started = time.monotonic()
        try:
            response = await self.transport.send(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._observe_duration(started)
            self._handle_failure(item, e, source, version)
            return

        self._observe_duration(started)
        if item.resolve(response):
            self._record(METRIC_REQUESTS_COMPLETED, REQUESTS_COMPLETED_TOTAL)
        logger.debug(
            f"Completed {item.describe()} with status {response.status_code} "
            f"after {item.attempts + 1} attempt(s)"
        )

    async def _prepare(
        self, item: QueueItem
    ) -> tuple[OutboundRequest, AuthSource, int | None]:
        """Assemble the outbound request and resolve its Authorization header."""
        options = item.options
        headers = dict(options.headers)
        force = item.force_auth_refresh
        version: int | None = None

        try:
            if options.auth_source is AuthSource.CUSTOM_STATIC:
                source = AuthSource.CUSTOM_STATIC
                value = options.auth
            elif options.auth_source is AuthSource.CUSTOM_FUNCTION:
                source = AuthSource.CUSTOM_FUNCTION
                value = await self._call_auth_function(options.auth, force)
            elif self.credentials.strategy is not None:
                source = AuthSource.MANAGED
                header = await self.credentials.get_header(force_refresh=force)
                value = header.value
                version = header.version
            else:
                source = AuthSource.NONE
                value = ""
        finally:
            item.force_auth_refresh = False

        if value:
            for name in [n for n in headers if n.lower() == "authorization"]:
                del headers[name]
            headers["Authorization"] = value

        request = OutboundRequest(
            method=options.method.upper(),
            url=f"{self.config.origin}{options.path}",
            body=options.data,
            headers=headers,
            json=not options.not_json,
        )
        return request, source, version

    async def _call_auth_function(self, func: Any, force_refresh: bool) -> str:
        try:
            value = func(force_refresh)
            if inspect.isawaitable(value):
                value = await value
        except (AuthError, ConfigurationError):
            raise
        except Exception as e:
            raise AuthError(f"Custom authorization function failed: {e}") from e

        if value is None:
            return ""
        if not isinstance(value, str):
            raise AuthError(
                f"Custom authorization function returned {type(value).__name__}, "
                f"expected a header string"
            )
        return value

    def _handle_failure(
        self,
        item: QueueItem,
        error: BaseException,
        source: AuthSource,
        version: int | None,
    ) -> None:
        """Apply the retry policy to a failed attempt."""
        try:
            kind = self.retry_policy.classify(error)
            self._record(None, ATTEMPT_FAILURES_TOTAL, {"kind": kind.value})

            if kind is FailureKind.AUTHORIZATION:
                if source is AuthSource.MANAGED and version is not None:
                    if self.credentials.invalidate(version):
                        self._record(
                            METRIC_CREDENTIAL_INVALIDATIONS,
                            CREDENTIAL_INVALIDATIONS_TOTAL,
                        )
                elif source is AuthSource.CUSTOM_FUNCTION:
                    item.force_auth_refresh = True
            elif kind is FailureKind.RATE_LIMITED:
                self._freeze(self.retry_policy.retry_after_seconds(error))

            if item.done:
                logger.debug(f"Not retrying {item.describe()}: caller no longer waiting")
                return

            if self.retry_policy.record_failure(item, error):
                ceiling = self.retry_policy.ceiling_for(item)
                logger.warning(
                    f"Attempt {item.attempts}/{ceiling} for {item.describe()} "
                    f"failed ({kind.value}): {error}; retrying"
                )
                self.queue.requeue(item)
                self._record(METRIC_REQUESTS_RETRIED, REQUESTS_RETRIED_TOTAL)
                self._update_gauges()
                self._nudge()
            else:
                logger.error(
                    f"{item.describe()} failed after {item.attempts} attempt(s): {error}"
                )
                self._fail(item, TerminalError(error, item.attempts), "exhausted")
        except Exception as e:
            logger.exception(f"Failed to handle failure of {item.describe()}: {e}")
            self._fail(item, TerminalError(error, max(item.attempts, 1)), "internal")

    def _fail(self, item: QueueItem, error: BaseException, reason: str) -> None:
        if item.reject(error):
            self._record_failure_metric(reason)

    # ===== BACKOFF AND CREDENTIALS =====

    def _freeze(self, seconds: float) -> None:
        before = self.backoff.freeze_count
        self.backoff.freeze_for(seconds)
        if self.backoff.freeze_count != before:
            self._record(METRIC_FREEZES, FREEZES_TOTAL)

    def _on_credential_refresh(self, credential: Credential) -> None:
        self._record(METRIC_CREDENTIAL_REFRESHES, CREDENTIAL_REFRESHES_TOTAL)
        if self.config.post_auth_fetch_freeze > 0:
            logger.debug(
                f"Settling for {self.config.post_auth_fetch_freeze}s after "
                f"credential version {credential.version}"
            )
            self._freeze(self.config.post_auth_fetch_freeze)

    # ===== METRICS =====

    def _record(
        self,
        local_name: str | None,
        metric_name: str,
        extra_labels: dict[str, str] | None = None,
    ) -> None:
        if not self.metrics_enabled:
            return
        if local_name is not None:
            self.metrics[local_name] += 1
        if self.metrics_collector is not None:
            labels = dict(self._metric_labels)
            if extra_labels:
                labels.update(extra_labels)
            self.metrics_collector.inc_counter(metric_name, labels=labels)

    def _record_failure_metric(self, reason: str) -> None:
        self._record(METRIC_REQUESTS_FAILED, REQUESTS_FAILED_TOTAL, {"reason": reason})

    def _update_gauges(self) -> None:
        if self.metrics_collector is None:
            return
        self.metrics_collector.set_gauge(
            IN_FLIGHT_REQUESTS, self._in_flight, labels=self._metric_labels
        )
        self.metrics_collector.set_gauge(
            QUEUE_DEPTH, len(self.queue), labels=self._metric_labels
        )

    def _observe_duration(self, started: float) -> None:
        if self.metrics_collector is None:
            return
        self.metrics_collector.observe_histogram(
            ATTEMPT_DURATION_SECONDS,
            time.monotonic() - started,
            labels=self._metric_labels,
        )


def create_dispatcher(
    origin: str | None = None,
    config: DispatcherConfig | None = None,
    transport: TransportProtocol | None = None,
    **overrides: Any,
) -> Dispatcher:
    """
    Factory function to create a Dispatcher.

    Args:
        origin: Base URL; overrides ``config.origin`` when both are given
        config: Base configuration
        transport: Custom transport (defaults to HttpxTransport)
        **overrides: DispatcherConfig fields to set

    Returns:
        A Dispatcher, not yet started

    Example:
        >>> dispatcher = create_dispatcher(
        ...     "https://api.example.com",
        ...     get_authorisation={"auth_method": "basic",
        ...                        "client_id": "id", "client_secret": "s"},
        ...     checked_out_max=5,
        ... )
    """
    if origin is not None:
        overrides["origin"] = origin

    if config is None:
        config = DispatcherConfig(**overrides)
    elif overrides:
        config = dataclasses.replace(config, **overrides)

    return Dispatcher(config, transport=transport)


__all__ = ["Dispatcher", "create_dispatcher"]
