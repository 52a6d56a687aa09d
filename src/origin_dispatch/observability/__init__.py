# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metrics for the dispatcher.

Classes:
    MetricsCollector: In-memory counters, gauges and histograms, mirrored to
        prometheus_client when export is enabled.
    MetricDefinition: Kind, help text and labels of a predefined metric.

Functions:
    get_metrics_collector: Shared collector used when none is injected.
    reset_metrics_collector: Drop the shared collector (tests).

Constants:
    The ``origin_dispatch_*`` metric names and LATENCY_BUCKETS.
"""

from .collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from .constants import (
    ATTEMPT_DURATION_SECONDS,
    ATTEMPT_FAILURES_TOTAL,
    CREDENTIAL_INVALIDATIONS_TOTAL,
    CREDENTIAL_REFRESHES_TOTAL,
    FREEZES_TOTAL,
    IN_FLIGHT_REQUESTS,
    LATENCY_BUCKETS,
    METRIC_PREFIX,
    QUEUE_DEPTH,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_RETRIED_TOTAL,
    REQUESTS_SUBMITTED_TOTAL,
)

__all__ = [
    "ATTEMPT_DURATION_SECONDS",
    "ATTEMPT_FAILURES_TOTAL",
    "CREDENTIAL_INVALIDATIONS_TOTAL",
    "CREDENTIAL_REFRESHES_TOTAL",
    "FREEZES_TOTAL",
    "IN_FLIGHT_REQUESTS",
    "LATENCY_BUCKETS",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "QUEUE_DEPTH",
    "REQUESTS_COMPLETED_TOTAL",
    "REQUESTS_FAILED_TOTAL",
    "REQUESTS_RETRIED_TOTAL",
    "REQUESTS_SUBMITTED_TOTAL",
    "MetricDefinition",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
