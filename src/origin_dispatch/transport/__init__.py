# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Transport implementations."""

from .httpx_transport import DEFAULT_TIMEOUT, HttpxTransport

__all__ = ["DEFAULT_TIMEOUT", "HttpxTransport"]
