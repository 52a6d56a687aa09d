# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Queue types for the dispatcher.

This module defines the work item that travels between the request queue
and the dispatch path.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .request import RequestOptions

if TYPE_CHECKING:
    from asyncio import Future


@dataclass
class QueueItem:
    """
    A submitted request waiting for (or undergoing) dispatch.

    Wraps the caller's options with the bookkeeping the dispatcher mutates
    between attempts, plus the future through which the caller receives the
    outcome.

    Attributes:
        options: The caller's request description
        future: Completed exactly once with a Response or a terminal error
        item_id: Per-dispatcher sequence number, for logs
        attempts: Failed dispatch attempts so far
        force_auth_refresh: Ask the auth source for a fresh value next attempt
        last_error: Failure from the most recent attempt, if any
        queue_entry_time: UTC timestamp of submission
    """

    options: RequestOptions
    future: "Future[Any]"
    item_id: int = 0
    attempts: int = 0
    force_auth_refresh: bool = False
    last_error: BaseException | None = None
    queue_entry_time: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def done(self) -> bool:
        """True once the caller's future has been settled or cancelled."""
        return self.future.done()

    def resolve(self, result: Any) -> bool:
        """Deliver a successful result. Returns False if already settled."""
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def reject(self, error: BaseException) -> bool:
        """Deliver a terminal error. Returns False if already settled."""
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True

    def describe(self) -> str:
        """Short description for log lines."""
        return f"#{self.item_id} {self.options.method} {self.options.path}"


def new_future() -> "asyncio.Future[Any]":
    """Create a future bound to the running loop."""
    return asyncio.get_running_loop().create_future()


__all__ = ["QueueItem", "new_future"]
