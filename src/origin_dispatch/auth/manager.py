# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Credential manager with single-flight refresh.

The manager owns the cached Credential and the in-flight refresh task. All
callers that need a credential while a refresh is running await the same
task, so a burst of requests triggers exactly one call to the strategy and
every waiter sees the same success or the same AuthError.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from ..exceptions import AuthError, ConfigurationError
from ..types.credential import AuthHeader, Credential, CredentialGrant
from .strategies import CredentialStrategy

logger = logging.getLogger(__name__)

RefreshListener = Callable[[Credential], None]

_HEADER_SCHEMES = {
    "bearer": "Bearer",
    "basic": "Basic",
}


def format_header(token_type: str, access_token: str) -> str:
    """
    Build an Authorization header value for a token type.

    ``none`` yields an empty string (no header is sent).

    Raises:
        AuthError: For token types with no known header format
    """
    kind = token_type.lower()
    if kind == "none":
        return ""
    scheme = _HEADER_SCHEMES.get(kind)
    if scheme is None:
        raise AuthError(f"Unsupported token_type from credential refresh: {token_type!r}")
    return f"{scheme} {access_token}"


class CredentialManager:
    """
    Caches one credential and refreshes it on demand, single-flight.

    Thread Safety:
        The cached credential, the version counter and the in-flight refresh
        task are read and replaced together under a threading.Lock. The lock is
        never held across an await.

    Versioning:
        Every successful refresh gets the next version number. Consumers get
        the version together with the header, and report it back through
        ``invalidate`` when the origin rejects it. A stale report (the
        credential has been refreshed since) leaves the newer credential alone.

    Example:
        >>> manager = CredentialManager(create_credential_strategy(
        ...     {"auth_method": "basic", "client_id": "id", "client_secret": "s"}
        ... ))
        >>> header = await manager.get_header()
        >>> header.value
        'Basic aWQ6cw=='
    """

    def __init__(self, strategy: CredentialStrategy | None) -> None:
        self._strategy = strategy
        self._credential: Credential | None = None
        self._latest_version = 0
        self._refresh_task: asyncio.Task[Credential] | None = None
        self._lock = threading.Lock()
        self._listeners: list[RefreshListener] = []
        self.refresh_count = 0
        self.invalidation_count = 0

    @property
    def strategy(self) -> CredentialStrategy | None:
        return self._strategy

    @property
    def current(self) -> Credential | None:
        """The cached credential, fresh or not."""
        return self._credential

    @property
    def version(self) -> int:
        """Version of the most recently fetched credential (0 before the first)."""
        return self._latest_version

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Call ``listener(credential)`` after every successful refresh."""
        self._listeners.append(listener)

    async def get_header(self, force_refresh: bool = False) -> AuthHeader:
        """
        Authorization header value for the current credential.

        Args:
            force_refresh: Refresh even if the cached credential is still fresh

        Returns:
            AuthHeader with the header value ("" for token type none) and the
            version of the credential it was built from

        Raises:
            AuthError: If the refresh strategy failed or returned bad data
            ConfigurationError: If no strategy is configured
        """
        credential = await self.get_credential(force_refresh)
        return AuthHeader(
            value=format_header(credential.token_type, credential.access_token),
            version=credential.version,
        )

    async def get_credential(self, force_refresh: bool = False) -> Credential:
        """Return a fresh credential, joining or starting a refresh as needed."""
        if self._strategy is None:
            raise ConfigurationError(
                "A managed credential was requested but no authorization was configured"
            )

        with self._lock:
            cached = self._credential
            if (
                not force_refresh
                and cached is not None
                and cached.is_fresh(datetime.now(timezone.utc))
            ):
                return cached

            task = self._refresh_task
            if task is None:
                task = asyncio.get_running_loop().create_task(
                    self._refresh(), name="credential_refresh"
                )
                task.add_done_callback(_consume_exception)
                self._refresh_task = task
                logger.debug(
                    f"Starting credential refresh (forced={force_refresh}, "
                    f"cached_version={cached.version if cached else None})"
                )

        # Shield so that one cancelled waiter does not abort the shared refresh
        return await asyncio.shield(task)

    def invalidate(self, version: int) -> bool:
        """
        Drop the cached credential if it is still the one with ``version``.

        Returns:
            True if the credential was cleared, False if it had already been
            replaced (or cleared) since that version was handed out
        """
        with self._lock:
            if self._credential is None or self._credential.version != version:
                logger.debug(
                    f"Ignoring stale invalidation for credential version {version}"
                )
                return False
            self._credential = None
            self.invalidation_count += 1

        logger.info(f"Invalidated credential version {version}")
        return True

    async def close(self) -> None:
        """Cancel any refresh still in flight."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, AuthError):
                await task

    async def _refresh(self) -> Credential:
        strategy = self._strategy
        assert strategy is not None

        try:
            grant = CredentialGrant.coerce(await strategy.fetch())
            # Reject unusable token types before they are cached
            format_header(grant.token_type, grant.access_token)
            received_at = datetime.now(timezone.utc)

            with self._lock:
                self._latest_version += 1
                credential = Credential(
                    token_type=grant.token_type,
                    access_token=grant.access_token,
                    expires_at=grant.resolve_expiry(received_at),
                    version=self._latest_version,
                )
                self._credential = credential
                self.refresh_count += 1
        except (AuthError, ConfigurationError) as e:
            logger.error(f"Credential refresh via {strategy!r} failed: {e}")
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Credential refresh via {strategy!r} raised unexpectedly")
            raise AuthError(f"Credential refresh failed: {e}") from e
        finally:
            with self._lock:
                self._refresh_task = None

        logger.info(
            f"Fetched credential version {credential.version} "
            f"(type={credential.token_type}, expires_at={credential.expires_at.isoformat()})"
        )

        for listener in list(self._listeners):
            try:
                listener(credential)
            except Exception as e:
                logger.warning(f"Credential refresh listener failed: {e}")

        return credential


def _consume_exception(task: asyncio.Task[Credential]) -> None:
    # Waiters may all have been cancelled; retrieve the outcome so asyncio does
    # not report it as never retrieved.
    if not task.cancelled():
        task.exception()


__all__ = ["CredentialManager", "RefreshListener", "format_header"]
