# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Credential types for managed authorization.

A refresh strategy returns a CredentialGrant (validated with Pydantic). The
CredentialManager turns an accepted grant into an immutable, versioned
Credential and hands consumers an AuthHeader value copy.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    field_validator,
    model_validator,
)

from ..exceptions import AuthError

# Used by strategies whose credential never expires.
NEVER_EXPIRES = datetime.max.replace(tzinfo=timezone.utc)


class CredentialGrant(BaseModel):
    """
    Output contract of a credential refresh strategy.

    Types are checked strictly: a token type or access token that is not a
    string, or an ``expires_in`` that is not a whole number of seconds, is
    malformed; integral floats such as ``3600.0`` count as whole numbers.
    At least one of ``expires_at`` / ``expires_in`` is required.
    Unknown fields (``scope``, ``refresh_token``...) are ignored.
    """

    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    token_type: str
    access_token: str
    expires_at: datetime | None = None
    expires_in: int | None = None

    @field_validator("expires_in", mode="before")
    @classmethod
    def _integral_float(cls, value: Any) -> Any:
        # Token endpoints may serialize whole numbers as 3600.0
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    @model_validator(mode="after")
    def _validate_expiry(self) -> "CredentialGrant":
        """Require some form of expiry."""
        if self.expires_at is None and self.expires_in is None:
            raise ValueError("grant must carry expires_at or expires_in")
        return self

    def resolve_expiry(self, now: datetime | None = None) -> datetime:
        """
        Absolute, timezone-aware expiry for this grant.

        ``expires_at`` wins when both are present. A relative lifetime is
        anchored at ``now`` (the moment the grant was received).
        """
        if self.expires_at is not None:
            if self.expires_at.tzinfo is None:
                return self.expires_at.replace(tzinfo=timezone.utc)
            return self.expires_at
        now = now or datetime.now(timezone.utc)
        # expires_in is guaranteed by the validator at this point
        try:
            return now + timedelta(seconds=self.expires_in or 0)
        except OverflowError:
            return NEVER_EXPIRES

    @classmethod
    def coerce(cls, raw: Any) -> "CredentialGrant":
        """
        Validate whatever a strategy returned.

        Accepts a CredentialGrant, a mapping, or any object exposing the
        fields as attributes.

        Raises:
            AuthError: If the output does not satisfy the contract.
        """
        if isinstance(raw, cls):
            return raw
        try:
            if isinstance(raw, Mapping):
                return cls.model_validate(dict(raw))
            return cls.model_validate(raw, from_attributes=True)
        except ValidationError as e:
            raise AuthError(f"Credential refresh returned malformed data: {e}") from e


@dataclass(frozen=True)
class Credential:
    """
    Cached authorization material.

    Attributes:
        token_type: Discriminator selecting the header format (bearer/basic/none)
        access_token: Opaque token value
        expires_at: Instant after which the credential must not be reused
        version: Monotonically increasing number assigned by the manager
    """

    token_type: str
    access_token: str
    expires_at: datetime
    version: int

    def is_fresh(self, now: datetime | None = None) -> bool:
        """True while expires_at is strictly in the future."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at > now

    def __repr__(self) -> str:
        return (
            f"Credential(token_type={self.token_type!r}, access_token=<redacted>, "
            f"expires_at={self.expires_at.isoformat()}, version={self.version})"
        )


@dataclass(frozen=True)
class AuthHeader:
    """Authorization header value plus the credential version it came from."""

    value: str
    version: int


__all__ = [
    "NEVER_EXPIRES",
    "AuthHeader",
    "Credential",
    "CredentialGrant",
]
