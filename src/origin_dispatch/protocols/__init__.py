# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Protocol definitions for dispatcher collaborators.

Available protocols:
- TransportProtocol: Interface for the component that performs HTTP calls
- CredentialStrategy: Interface for anything that can produce a credential grant
"""

from ..auth.strategies import CredentialStrategy
from .transport import TransportProtocol

__all__ = [
    "CredentialStrategy",
    "TransportProtocol",
]
