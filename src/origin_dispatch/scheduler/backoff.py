# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Global freeze controller for the dispatcher.

Holds a single "frozen until" deadline shared by every in-flight request.
Rate-limit responses (and credential refreshes, when configured) push the
deadline out; every request waits it out before touching the network.
"""

import asyncio
import logging
import threading
import time

logger = logging.getLogger(__name__)


class BackoffController:
    """
    Owns the shared freeze deadline.

    The deadline is a ``time.monotonic()`` instant. It only ever moves later:
    overlapping freezes compose by taking the maximum. It is cleared by the
    waiter that sees its exact deadline elapse with no later extension.

    Thread Safety:
        Reads, compare-and-extend and compare-and-clear of the deadline are
        done under a threading.Lock. Sleeping happens outside the lock.

    Example:
        >>> backoff = BackoffController()
        >>> backoff.freeze_for(5.0)
        >>> await backoff.wait_until_unfrozen()  # returns after ~5s
    """

    def __init__(self) -> None:
        self._frozen_until: float | None = None
        self._lock = threading.Lock()
        self.freeze_count = 0

    @property
    def frozen_until(self) -> float | None:
        """Monotonic deadline, or None when not frozen."""
        return self._frozen_until

    @property
    def is_frozen(self) -> bool:
        return self.remaining() > 0

    def remaining(self) -> float:
        """Seconds until the current deadline (0.0 if none or elapsed)."""
        deadline = self._frozen_until
        if deadline is None:
            return 0.0
        return max(0.0, deadline - time.monotonic())

    def freeze_for(self, seconds: float) -> float | None:
        """
        Extend the freeze to now + ``seconds`` unless it already reaches further.

        Args:
            seconds: Freeze duration. Non-positive values are ignored.

        Returns:
            The effective deadline after the call
        """
        if seconds <= 0:
            return self._frozen_until

        candidate = time.monotonic() + seconds
        with self._lock:
            if self._frozen_until is None or self._frozen_until < candidate:
                self._frozen_until = candidate
                self.freeze_count += 1
                extended = True
            else:
                extended = False
            deadline = self._frozen_until

        if extended:
            logger.info(f"Dispatch frozen for {seconds:.2f}s")
        else:
            logger.debug(
                f"Freeze of {seconds:.2f}s already covered by existing deadline"
            )
        return deadline

    async def wait_until_unfrozen(self) -> None:
        """
        Suspend until the freeze deadline (if any) has passed.

        If the deadline is extended while waiting, keep waiting for the new
        one. Once a wait completes without a further extension, clear the
        deadline unless someone has moved it past the value just observed.
        """
        observed: float | None = None

        while True:
            with self._lock:
                deadline = self._frozen_until
            if deadline is None:
                return

            observed = deadline
            delay = deadline - time.monotonic()
            if delay <= 0:
                break

            logger.debug(f"Waiting {delay:.3f}s for freeze to lift")
            await asyncio.sleep(delay)

        with self._lock:
            if self._frozen_until == observed:
                self._frozen_until = None
                logger.debug("Freeze lifted")

    def clear(self) -> None:
        """Drop any freeze immediately."""
        with self._lock:
            self._frozen_until = None


__all__ = ["BackoffController"]
