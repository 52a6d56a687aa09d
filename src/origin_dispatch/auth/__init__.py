# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Managed authorization for outbound requests.

- CredentialManager: cached, versioned credential with single-flight refresh
- Strategies: none / basic / oauth2 / custom function credential sources
"""

from .manager import CredentialManager, RefreshListener, format_header
from .strategies import (
    BaseCredentialStrategy,
    BasicAuthStrategy,
    CredentialStrategy,
    FunctionStrategy,
    NoAuthStrategy,
    OAuth2ClientCredentialsStrategy,
    create_credential_strategy,
)

__all__ = [
    "BaseCredentialStrategy",
    "BasicAuthStrategy",
    "CredentialManager",
    "CredentialStrategy",
    "FunctionStrategy",
    "NoAuthStrategy",
    "OAuth2ClientCredentialsStrategy",
    "RefreshListener",
    "create_credential_strategy",
    "format_header",
]
