# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Scheduling components for origin dispatch.

- Dispatcher: the queue-draining loop with bounded concurrency
- BackoffController: the shared freeze deadline
- RequestQueue: pending items, with head insertion for priority and retries
- RetryPolicy: failure classification and attempt accounting
"""

from .backoff import BackoffController
from .config import DispatcherConfig
from .dispatcher import Dispatcher, create_dispatcher
from .queue import RequestQueue
from .retry import FailureKind, RetryPolicy, parse_retry_after

__all__ = [
    "BackoffController",
    "Dispatcher",
    "DispatcherConfig",
    "FailureKind",
    "RequestQueue",
    "RetryPolicy",
    "create_dispatcher",
    "parse_retry_after",
]
