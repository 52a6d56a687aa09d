# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Type definitions for requests, responses, credentials and queue items."""

from .credential import NEVER_EXPIRES, AuthHeader, Credential, CredentialGrant
from .queue import QueueItem, new_future
from .request import (
    AuthOption,
    AuthRefreshFunc,
    AuthSource,
    OutboundRequest,
    RequestOptions,
)
from .response import Response

__all__ = [
    "NEVER_EXPIRES",
    "AuthHeader",
    "AuthOption",
    "AuthRefreshFunc",
    "AuthSource",
    # Credentials
    "Credential",
    "CredentialGrant",
    # Requests
    "OutboundRequest",
    # Queue
    "QueueItem",
    "RequestOptions",
    "Response",
    "new_future",
]
