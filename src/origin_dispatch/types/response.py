# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Response type returned to callers on success."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Response:
    """
    A successful response from the origin.

    Attributes:
        status_code: HTTP status code
        headers: Response headers, keys lower-cased
        body: Parsed JSON for JSON requests, otherwise text
        elapsed: Seconds the transport call took, if known
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    elapsed: float | None = None

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)


__all__ = ["Response"]
