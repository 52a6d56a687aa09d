# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `origin_dispatch_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`
    - Gauges use present-tense descriptive names

Label Best Practices:
    To prevent label cardinality explosion, use only:
    - `origin` - Configured origin (one per dispatcher)
    - `kind` - Failure kind (enum: authorization, rate_limited, other, transport)
    - `reason` - Terminal failure reason (enum: exhausted, auth, stopped, internal)
    - `priority` - Boolean as string (true, false)

    NEVER use the request path, item id or credential version as a label.

Usage:
    >>> from origin_dispatch.observability.constants import REQUESTS_SUBMITTED_TOTAL
    >>> print(REQUESTS_SUBMITTED_TOTAL)
    'origin_dispatch_requests_submitted_total'
"""


# =============================================================================
# Global Prefix
# =============================================================================

METRIC_PREFIX = "origin_dispatch"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Request Lifecycle Metrics (scheduler/dispatcher.py)
# =============================================================================

REQUESTS_SUBMITTED_TOTAL = f"{METRIC_PREFIX}_requests_submitted_total"
"""Total requests accepted by submit / submit_priority."""

REQUESTS_COMPLETED_TOTAL = f"{METRIC_PREFIX}_requests_completed_total"
"""Total requests resolved with a response."""

REQUESTS_FAILED_TOTAL = f"{METRIC_PREFIX}_requests_failed_total"
"""Total requests rejected with a terminal error."""

REQUESTS_RETRIED_TOTAL = f"{METRIC_PREFIX}_requests_retried_total"
"""Total failed attempts that were put back at the head of the queue."""

ATTEMPT_FAILURES_TOTAL = f"{METRIC_PREFIX}_attempt_failures_total"
"""Total failed dispatch attempts, by failure kind."""


# =============================================================================
# Backoff and Credential Metrics
# =============================================================================

FREEZES_TOTAL = f"{METRIC_PREFIX}_freezes_total"
"""Total freezes applied (rate limiting and post-refresh settling)."""

CREDENTIAL_REFRESHES_TOTAL = f"{METRIC_PREFIX}_credential_refreshes_total"
"""Total successful credential refreshes."""

CREDENTIAL_INVALIDATIONS_TOTAL = f"{METRIC_PREFIX}_credential_invalidations_total"
"""Total credentials dropped after the origin rejected them."""


# =============================================================================
# Active State Gauges
# =============================================================================

IN_FLIGHT_REQUESTS = f"{METRIC_PREFIX}_in_flight_requests"
"""Number of requests currently checked out for dispatch."""

QUEUE_DEPTH = f"{METRIC_PREFIX}_queue_depth"
"""Number of requests waiting in the queue."""


# =============================================================================
# Histograms
# =============================================================================

ATTEMPT_DURATION_SECONDS = f"{METRIC_PREFIX}_attempt_duration_seconds"
"""Duration of transport calls, successful or not."""

LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
"""Buckets for transport latency histograms."""


__all__ = [
    "ATTEMPT_DURATION_SECONDS",
    "ATTEMPT_FAILURES_TOTAL",
    "CREDENTIAL_INVALIDATIONS_TOTAL",
    "CREDENTIAL_REFRESHES_TOTAL",
    "FREEZES_TOTAL",
    "IN_FLIGHT_REQUESTS",
    "LATENCY_BUCKETS",
    "METRIC_PREFIX",
    "QUEUE_DEPTH",
    "REQUESTS_COMPLETED_TOTAL",
    "REQUESTS_FAILED_TOTAL",
    "REQUESTS_RETRIED_TOTAL",
    "REQUESTS_SUBMITTED_TOTAL",
]
