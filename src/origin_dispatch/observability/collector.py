# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher metrics, kept in memory and optionally exported to Prometheus.

Every update lands in an in-process series table first, so
``get_metrics()`` works whether or not Prometheus is enabled. With export
enabled, the matching prometheus_client object is created on first use,
from METRIC_DEFINITIONS when the name is known, and updated alongside.

Each metric name accepts at most MAX_LABEL_COMBINATIONS distinct label sets;
further label sets are dropped with a warning.

Usage:
    >>> from origin_dispatch.observability.collector import get_metrics_collector
    >>> collector = get_metrics_collector()
    >>> collector.inc_counter(
    ...     "origin_dispatch_freezes_total",
    ...     labels={"origin": "https://api.example.com"},
    ... )
    >>> collector.get_counter(
    ...     "origin_dispatch_freezes_total", {"origin": "https://api.example.com"}
    ... )
    1
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from .constants import (
    ATTEMPT_DURATION_SECONDS,
    ATTEMPT_FAILURES_TOTAL,
    CREDENTIAL_INVALIDATIONS_TOTAL,
    CREDENTIAL_REFRESHES_TOTAL,
    FREEZES_TOTAL,
    IN_FLIGHT_REQUESTS,
    LATENCY_BUCKETS,
    QUEUE_DEPTH,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_RETRIED_TOTAL,
    REQUESTS_SUBMITTED_TOTAL,
)

logger = logging.getLogger(__name__)

COUNTER = "counter"
GAUGE = "gauge"
HISTOGRAM = "histogram"

# Observations retained per histogram series for get_metrics() summaries
HISTOGRAM_WINDOW = 5000

PromMetric = Union[Counter, Gauge, Histogram]


@dataclass(frozen=True)
class MetricDefinition:
    """Name, kind, help text and label names of a predefined metric."""

    name: str
    metric_type: str
    description: str
    label_names: tuple[str, ...] = ("origin",)
    buckets: tuple[float, ...] | None = None


def _define(*definitions: MetricDefinition) -> dict[str, MetricDefinition]:
    return {d.name: d for d in definitions}


METRIC_DEFINITIONS: dict[str, MetricDefinition] = _define(
    MetricDefinition(
        REQUESTS_SUBMITTED_TOTAL,
        COUNTER,
        "Requests accepted by submit() or submit_priority()",
        ("origin", "priority"),
    ),
    MetricDefinition(
        REQUESTS_COMPLETED_TOTAL, COUNTER, "Requests resolved with a response"
    ),
    MetricDefinition(
        REQUESTS_FAILED_TOTAL,
        COUNTER,
        "Requests rejected with a terminal error",
        ("origin", "reason"),
    ),
    MetricDefinition(
        REQUESTS_RETRIED_TOTAL, COUNTER, "Failed attempts put back at the queue head"
    ),
    MetricDefinition(
        ATTEMPT_FAILURES_TOTAL,
        COUNTER,
        "Failed dispatch attempts by failure kind",
        ("origin", "kind"),
    ),
    MetricDefinition(FREEZES_TOTAL, COUNTER, "Times the freeze deadline was extended"),
    MetricDefinition(
        CREDENTIAL_REFRESHES_TOTAL, COUNTER, "Successful managed credential refreshes"
    ),
    MetricDefinition(
        CREDENTIAL_INVALIDATIONS_TOTAL,
        COUNTER,
        "Managed credentials dropped after an authorization failure",
    ),
    MetricDefinition(IN_FLIGHT_REQUESTS, GAUGE, "Requests checked out for dispatch"),
    MetricDefinition(QUEUE_DEPTH, GAUGE, "Requests waiting to be dispatched"),
    MetricDefinition(
        ATTEMPT_DURATION_SECONDS,
        HISTOGRAM,
        "Wall time of transport calls",
        buckets=tuple(LATENCY_BUCKETS),
    ),
)


@dataclass
class _Series:
    """In-memory values of one metric, keyed by label key."""

    metric_type: str
    values: dict[str, Any] = field(default_factory=dict)


def label_key(labels: dict[str, str] | None) -> str:
    """Order-independent string form of a label set ("a=1,b=2")."""
    if not labels:
        return ""
    return ",".join(f"{name}={value}" for name, value in sorted(labels.items()))


class MetricsCollector:
    """
    Counter, gauge and histogram store with optional Prometheus export.

    Thread Safety:
        The series table, the label-set index and the Prometheus object
        cache share one RLock.

    Example:
        >>> collector = MetricsCollector(registry=CollectorRegistry())
        >>> collector.set_gauge(
        ...     "origin_dispatch_in_flight_requests", 2,
        ...     labels={"origin": "https://api.example.com"},
        ... )
    """

    MAX_LABEL_COMBINATIONS: ClassVar[int] = 1000

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Args:
            enable_prometheus: Mirror updates into prometheus_client objects
            registry: Registry for those objects; the process-wide default
                when omitted
        """
        self._enable_prometheus = enable_prometheus
        self._registry = REGISTRY if registry is None else registry
        self._lock = threading.RLock()
        self._series: dict[str, _Series] = {}
        self._seen_label_keys: dict[str, set[str]] = {}
        self._prom: dict[str, PromMetric | None] = {}
        self._server_running = False

        logger.debug(
            f"{self.__class__.__name__} created "
            f"(prometheus={'on' if enable_prometheus else 'off'})"
        )

    @property
    def prometheus_enabled(self) -> bool:
        return self._enable_prometheus

    @property
    def server_running(self) -> bool:
        """Whether start_http_server() has succeeded."""
        return self._server_running

    # ===== UPDATES =====

    def inc_counter(
        self, name: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        """
        Add ``value`` to a counter.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError(f"Counter {name} increment must be non-negative, got {value}")

        def apply(values: dict[str, Any], key: str) -> None:
            values[key] = values.get(key, 0) + value

        if self._update(name, COUNTER, labels, apply):
            self._export(name, COUNTER, labels, lambda metric: metric.inc(value))

    def set_gauge(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        """Set a gauge to ``value``."""

        def apply(values: dict[str, Any], key: str) -> None:
            values[key] = value

        if self._update(name, GAUGE, labels, apply):
            self._export(name, GAUGE, labels, lambda metric: metric.set(value))

    def observe_histogram(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        """Record one histogram observation."""

        def apply(values: dict[str, Any], key: str) -> None:
            window = values.get(key)
            if window is None:
                window = values[key] = deque(maxlen=HISTOGRAM_WINDOW)
            window.append(value)

        if self._update(name, HISTOGRAM, labels, apply):
            self._export(name, HISTOGRAM, labels, lambda metric: metric.observe(value))

    def _update(
        self,
        name: str,
        metric_type: str,
        labels: dict[str, str] | None,
        apply: Any,
    ) -> bool:
        key = label_key(labels)
        with self._lock:
            seen = self._seen_label_keys.setdefault(name, set())
            if key not in seen:
                if len(seen) >= self.MAX_LABEL_COMBINATIONS:
                    logger.warning(
                        f"Metric {name} reached {self.MAX_LABEL_COMBINATIONS} label "
                        f"sets; dropping {key!r}"
                    )
                    return False
                seen.add(key)
            series = self._series.setdefault(name, _Series(metric_type))
            apply(series.values, key)
        return True

    # ===== PROMETHEUS =====

    def _export(
        self,
        name: str,
        metric_type: str,
        labels: dict[str, str] | None,
        update: Any,
    ) -> None:
        if not self._enable_prometheus:
            return
        metric = self._prom_metric(name, metric_type, labels)
        if metric is None:
            return
        try:
            update(metric.labels(**labels) if labels else metric)
        except ValueError as e:
            logger.debug(f"Skipping Prometheus update of {name}: {e}")

    def _prom_metric(
        self, name: str, metric_type: str, labels: dict[str, str] | None
    ) -> PromMetric | None:
        with self._lock:
            if name in self._prom:
                return self._prom[name]

            definition = METRIC_DEFINITIONS.get(name)
            if definition is not None and definition.metric_type == metric_type:
                description = definition.description
                label_names = list(definition.label_names)
            else:
                # Unknown metric: label names come from its first update
                description = f"{metric_type} {name}"
                label_names = sorted(labels or {})

            kwargs: dict[str, Any] = {"registry": self._registry}
            if metric_type == HISTOGRAM:
                kwargs["buckets"] = (
                    definition.buckets
                    if definition is not None and definition.buckets
                    else LATENCY_BUCKETS
                )
            factory = {COUNTER: Counter, GAUGE: Gauge, HISTOGRAM: Histogram}[metric_type]

            metric: PromMetric | None
            try:
                metric = factory(name, description, label_names, **kwargs)
            except ValueError as e:
                # Already registered, typically by another collector on the
                # same registry; keep the in-memory series only
                logger.warning(f"Cannot register Prometheus {metric_type} {name}: {e}")
                metric = None
            self._prom[name] = metric
            return metric

    def start_http_server(self, host: str = "127.0.0.1", port: int = 9090) -> bool:
        """
        Serve this collector's registry for scraping.

        Args:
            host: Bind address; "0.0.0.0" exposes it beyond localhost
            port: Bind port

        Returns:
            True once the exporter is running, False if binding failed
        """
        if self._server_running:
            logger.debug("Prometheus exporter already running")
            return True

        try:
            start_http_server(port, addr=host, registry=self._registry)
        except OSError as e:
            logger.error(f"Could not start Prometheus exporter on {host}:{port}: {e}")
            return False

        self._server_running = True
        logger.info(f"Serving Prometheus metrics on {host}:{port}")
        return True

    # ===== READS =====

    def _value(self, name: str, labels: dict[str, str] | None, default: Any) -> Any:
        with self._lock:
            series = self._series.get(name)
            if series is None:
                return default
            return series.values.get(label_key(labels), default)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        """Current counter value for a label set, 0 if never incremented."""
        return int(self._value(name, labels, 0))

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current gauge value for a label set, 0.0 if never set."""
        return float(self._value(name, labels, 0.0))

    def get_metrics(self) -> dict[str, Any]:
        """
        JSON-friendly snapshot.

        Shape: ``{"counters": {name: {label_key: value}}, "gauges": {...},
        "histograms": {name: {label_key: {"count", "sum", "avg", "min",
        "max"}}}}``. Histogram summaries cover the retained window only.
        """
        snapshot: dict[str, dict[str, Any]] = {
            "counters": {},
            "gauges": {},
            "histograms": {},
        }
        with self._lock:
            for name, series in self._series.items():
                if series.metric_type == HISTOGRAM:
                    snapshot["histograms"][name] = {
                        key: _summarize(window)
                        for key, window in series.values.items()
                        if window
                    }
                else:
                    section = "counters" if series.metric_type == COUNTER else "gauges"
                    snapshot[section][name] = dict(series.values)
        return snapshot

    def reset(self) -> None:
        """Forget every in-memory value. Prometheus objects stay registered."""
        with self._lock:
            self._series.clear()
            self._seen_label_keys.clear()
        logger.debug("Cleared in-memory metrics")


def _summarize(observations: deque[float]) -> dict[str, float]:
    total = sum(observations)
    return {
        "count": len(observations),
        "sum": total,
        "avg": total / len(observations),
        "min": min(observations),
        "max": max(observations),
    }


# =============================================================================
# Process-wide collector
# =============================================================================

_global_collector: MetricsCollector | None = None
_global_lock = threading.Lock()


def get_metrics_collector(enable_prometheus: bool = True) -> MetricsCollector:
    """
    Return the shared collector, creating it on first call.

    ``enable_prometheus`` only takes effect when the collector is created.
    """
    global _global_collector
    with _global_lock:
        if _global_collector is None:
            _global_collector = MetricsCollector(enable_prometheus=enable_prometheus)
        return _global_collector


def reset_metrics_collector() -> None:
    """Drop the shared collector so the next call creates a fresh one."""
    global _global_collector
    with _global_lock:
        if _global_collector is not None:
            _global_collector.reset()
        _global_collector = None


__all__ = [
    "METRIC_DEFINITIONS",
    "MetricDefinition",
    "MetricsCollector",
    "get_metrics_collector",
    "label_key",
    "reset_metrics_collector",
]
