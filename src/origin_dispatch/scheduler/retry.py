# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Failure classification and attempt accounting.

The RetryPolicy turns a transport failure into a FailureKind, works out how
long a rate-limit response asked us to wait, and decides whether an item has
attempts left.
"""

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum

from ..exceptions import ConfigurationError
from ..types.queue import QueueItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_AFTER_HEADER = "Retry-After"
DEFAULT_RETRY_AFTER_SECONDS = 10.0


class FailureKind(Enum):
    """How a failed attempt is handled."""

    AUTHORIZATION = "authorization"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"
    TRANSPORT = "transport"


def _status_of(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if isinstance(status, bool) or not isinstance(status, int):
        return None
    return status


def _lookup_header(headers: Mapping[str, str], name: str) -> str | None:
    target = name.lower()
    for key, value in headers.items():
        if isinstance(key, str) and key.lower() == target:
            return value
    return None


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a Retry-After value.

    Accepts delta-seconds (integer or decimal) and the HTTP-date form. Dates
    in the past give 0.0.

    Returns:
        Seconds to wait, or None when the value is absent or unusable
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        seconds = None

    if seconds is not None:
        if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
            return None
        return seconds

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class RetryPolicy:
    """
    Decides what a failed attempt means for its item.

    Args:
        max_attempts_per_request: Default ceiling on attempts per item
        retry_after_header_name: Header read from rate-limit responses
        default_retry_after: Freeze used when the header is absent or invalid
    """

    def __init__(
        self,
        max_attempts_per_request: int = DEFAULT_MAX_ATTEMPTS,
        retry_after_header_name: str = DEFAULT_RETRY_AFTER_HEADER,
        default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS,
    ) -> None:
        if max_attempts_per_request < 1:
            raise ConfigurationError("max_attempts_per_request must be at least 1")
        if default_retry_after < 0:
            raise ConfigurationError("default_retry_after must be non-negative")
        self.max_attempts_per_request = max_attempts_per_request
        self.retry_after_header_name = retry_after_header_name
        self.default_retry_after = default_retry_after

    def classify(self, error: BaseException) -> FailureKind:
        status = _status_of(error)
        if status is None:
            return FailureKind.TRANSPORT
        if status == 401:
            return FailureKind.AUTHORIZATION
        if status == 429:
            return FailureKind.RATE_LIMITED
        return FailureKind.OTHER

    def retry_after_seconds(self, error: BaseException) -> float:
        """
        Freeze duration requested by a rate-limit failure.

        The configured header wins; an explicit ``retry_after`` attribute on
        the error is used next; otherwise the configured default.
        """
        headers = getattr(error, "headers", None)
        if isinstance(headers, Mapping):
            raw = _lookup_header(headers, self.retry_after_header_name)
            parsed = parse_retry_after(raw)
            if parsed is not None:
                return parsed
            if raw is not None:
                logger.debug(
                    f"Unusable {self.retry_after_header_name} value {raw!r}, "
                    f"using default of {self.default_retry_after}s"
                )

        explicit = getattr(error, "retry_after", None)
        if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
            if explicit >= 0:
                return float(explicit)

        return self.default_retry_after

    def ceiling_for(self, item: QueueItem) -> int:
        if item.options.max_attempts is not None:
            return item.options.max_attempts
        return self.max_attempts_per_request

    def record_failure(self, item: QueueItem, error: BaseException) -> bool:
        """
        Count a failed attempt against the item.

        Returns:
            True if the item may be retried, False if it reached its ceiling
        """
        item.attempts += 1
        item.last_error = error
        return item.attempts < self.ceiling_for(item)


__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RETRY_AFTER_HEADER",
    "DEFAULT_RETRY_AFTER_SECONDS",
    "FailureKind",
    "RetryPolicy",
    "parse_retry_after",
]
