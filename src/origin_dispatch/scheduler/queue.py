# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Pending-request queue for the dispatcher."""

import logging
import threading
from collections import deque

from ..types.queue import QueueItem

logger = logging.getLogger(__name__)


class RequestQueue:
    """
    Ordered sequence of pending QueueItems.

    Normal submissions go to the tail; priority submissions and retried items
    go to the head, so retries are served before newer, unrelated work. There
    is no duplicate detection: an item is owned by the queue only while it is
    pending and is removed before it is dispatched.

    Thread Safety:
        All operations hold a threading.Lock for their whole (non-blocking)
        duration, making the deque a single mutually-exclusive sequence.
    """

    def __init__(self) -> None:
        self._items: deque[QueueItem] = deque()
        self._lock = threading.Lock()
        self.total_enqueued = 0
        self.total_requeued = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    def push(self, item: QueueItem) -> None:
        """Append a new item at the tail."""
        with self._lock:
            self._items.append(item)
            self.total_enqueued += 1

    def push_front(self, item: QueueItem) -> None:
        """Insert a priority item at the head."""
        with self._lock:
            self._items.appendleft(item)
            self.total_enqueued += 1

    def requeue(self, item: QueueItem) -> None:
        """Put a failed-but-retryable item back at the head."""
        with self._lock:
            self._items.appendleft(item)
            self.total_requeued += 1
        logger.debug(f"Requeued {item.describe()} at head (attempts={item.attempts})")

    def pop(self) -> QueueItem | None:
        """Remove and return the head item, or None if empty."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def drain(self) -> list[QueueItem]:
        """Remove and return every pending item, head first."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def snapshot(self) -> list[QueueItem]:
        """Copy of the pending items, head first."""
        with self._lock:
            return list(self._items)


__all__ = ["RequestQueue"]
