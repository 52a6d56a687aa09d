"""
Unit tests for the credential strategies and their factory.

Tests cover:
- NoAuthStrategy / BasicAuthStrategy: static grants
- OAuth2ClientCredentialsStrategy: token request shape and error mapping
- FunctionStrategy: sync and async refresh functions
- create_credential_strategy: descriptor dispatch and validation
"""

import base64
from unittest.mock import AsyncMock

import pytest

from origin_dispatch.auth.strategies import (
    BasicAuthStrategy,
    CredentialStrategy,
    FunctionStrategy,
    NoAuthStrategy,
    OAuth2ClientCredentialsStrategy,
    create_credential_strategy,
)
from origin_dispatch.exceptions import (
    AuthError,
    ConfigurationError,
    RequestFailedError,
    TransportFailure,
)
from origin_dispatch.types import NEVER_EXPIRES, OutboundRequest, Response


class TestStaticStrategies:
    """Tests for strategies that need no network."""

    @pytest.mark.asyncio
    async def test_no_auth(self):
        """NoAuthStrategy yields an empty, never-expiring grant."""
        grant = await NoAuthStrategy().fetch()
        assert grant.token_type == "none"
        assert grant.access_token == ""
        assert grant.resolve_expiry() == NEVER_EXPIRES

    @pytest.mark.asyncio
    async def test_basic_auth_encodes_credentials(self):
        """BasicAuthStrategy base64-encodes id:secret."""
        grant = await BasicAuthStrategy("user", "pass").fetch()
        assert grant.token_type == "basic"
        assert base64.b64decode(grant.access_token) == b"user:pass"
        assert grant.resolve_expiry() == NEVER_EXPIRES

    def test_basic_auth_repr_hides_secret(self):
        """The client secret never appears in the repr."""
        assert "pass" not in repr(BasicAuthStrategy("user", "pass"))


class TestOAuth2ClientCredentialsStrategy:
    """Tests for the OAuth2 client-credentials exchange."""

    @pytest.mark.asyncio
    async def test_posts_form_with_basic_client_auth(self):
        """The token request is a form POST authenticated with basic auth."""
        transport = AsyncMock()
        transport.send.return_value = Response(
            status_code=200,
            body={"token_type": "bearer", "access_token": "tok", "expires_in": 60},
        )
        strategy = OAuth2ClientCredentialsStrategy(
            "https://auth.example/token", "id", "secret", transport=transport
        )

        grant = await strategy.fetch()

        assert grant.access_token == "tok"
        request = transport.send.call_args.args[0]
        assert isinstance(request, OutboundRequest)
        assert request.method == "POST"
        assert request.url == "https://auth.example/token"
        assert request.body == {"grant_type": "client_credentials"}
        assert request.json is False
        expected = base64.b64encode(b"id:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_scope_included_when_given(self):
        """A configured scope is sent with the grant."""
        transport = AsyncMock()
        transport.send.return_value = Response(
            status_code=200,
            body={"token_type": "bearer", "access_token": "tok", "expires_in": 60},
        )
        strategy = OAuth2ClientCredentialsStrategy(
            "https://auth.example/token", "id", "s", transport=transport, scope="read"
        )

        await strategy.fetch()

        assert transport.send.call_args.args[0].body["scope"] == "read"

    @pytest.mark.asyncio
    async def test_text_body_parsed_as_json(self):
        """A body delivered as text is parsed as JSON."""
        transport = AsyncMock()
        transport.send.return_value = Response(
            status_code=200,
            body='{"token_type": "bearer", "access_token": "t", "expires_in": 5}',
        )
        strategy = OAuth2ClientCredentialsStrategy(
            "https://auth.example/token", "id", "s", transport=transport
        )

        assert (await strategy.fetch()).access_token == "t"

    @pytest.mark.asyncio
    async def test_float_expires_in_from_token_endpoint(self):
        """An endpoint that serializes expires_in as a float still works."""
        transport = AsyncMock()
        transport.send.return_value = Response(
            status_code=200,
            body='{"token_type": "bearer", "access_token": "t", "expires_in": 3600.0}',
        )
        strategy = OAuth2ClientCredentialsStrategy(
            "https://auth.example/token", "id", "s", transport=transport
        )

        assert (await strategy.fetch()).expires_in == 3600

    @pytest.mark.asyncio
    async def test_non_json_body_is_auth_error(self):
        """A non-JSON token response is an AuthError."""
        transport = AsyncMock()
        transport.send.return_value = Response(status_code=200, body="<html>")
        strategy = OAuth2ClientCredentialsStrategy(
            "https://auth.example/token", "id", "s", transport=transport
        )

        with pytest.raises(AuthError, match="did not return JSON"):
            await strategy.fetch()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [RequestFailedError("denied", 400), TransportFailure("reset")],
    )
    async def test_transport_errors_become_auth_error(self, error):
        """Failures reaching the token endpoint surface as AuthError."""
        transport = AsyncMock()
        transport.send.side_effect = error
        strategy = OAuth2ClientCredentialsStrategy(
            "https://auth.example/token", "id", "s", transport=transport
        )

        with pytest.raises(AuthError) as exc_info:
            await strategy.fetch()
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_missing_transport(self):
        """Fetching without a transport is a configuration error."""
        strategy = OAuth2ClientCredentialsStrategy("https://auth.example/t", "i", "s")
        with pytest.raises(ConfigurationError):
            await strategy.fetch()


class TestFunctionStrategy:
    """Tests for FunctionStrategy."""

    @pytest.mark.asyncio
    async def test_sync_function(self):
        """A plain function returning a mapping is accepted."""
        strategy = FunctionStrategy(
            lambda: {"token_type": "bearer", "access_token": "a", "expires_in": 1}
        )
        assert (await strategy.fetch()).access_token == "a"

    @pytest.mark.asyncio
    async def test_async_function(self):
        """A coroutine function is awaited."""

        async def refresh():
            return {"token_type": "basic", "access_token": "b", "expires_in": 1}

        assert (await FunctionStrategy(refresh).fetch()).token_type == "basic"

    @pytest.mark.asyncio
    async def test_exception_becomes_auth_error(self):
        """Errors raised by the function are wrapped in AuthError."""

        def refresh():
            raise ValueError("vault unavailable")

        with pytest.raises(AuthError, match="vault unavailable"):
            await FunctionStrategy(refresh).fetch()

    @pytest.mark.asyncio
    async def test_malformed_output(self):
        """Output violating the grant contract is an AuthError."""
        with pytest.raises(AuthError):
            await FunctionStrategy(lambda: {"access_token": "x"}).fetch()

    def test_not_callable(self):
        """A non-callable is rejected."""
        with pytest.raises(ConfigurationError):
            FunctionStrategy("not callable")


class TestCreateCredentialStrategy:
    """Tests for the create_credential_strategy factory."""

    def test_none(self):
        """No descriptor means no managed credential."""
        assert create_credential_strategy(None) is None

    def test_auth_method_none(self):
        """auth_method none builds NoAuthStrategy."""
        assert isinstance(
            create_credential_strategy({"auth_method": "none"}), NoAuthStrategy
        )

    def test_basic(self):
        """auth_method basic builds BasicAuthStrategy."""
        strategy = create_credential_strategy(
            {"auth_method": "basic", "client_id": "a", "client_secret": "b"}
        )
        assert isinstance(strategy, BasicAuthStrategy)

    def test_oauth2_receives_transport(self):
        """auth_method oauth2 is wired to the given transport."""
        transport = AsyncMock()
        strategy = create_credential_strategy(
            {
                "auth_method": "OAuth2",
                "uri": "https://auth.example/token",
                "client_id": "a",
                "client_secret": "b",
            },
            transport=transport,
        )
        assert isinstance(strategy, OAuth2ClientCredentialsStrategy)
        assert strategy.transport is transport

    def test_callable(self):
        """A callable descriptor becomes a FunctionStrategy."""
        assert isinstance(create_credential_strategy(lambda: {}), FunctionStrategy)

    def test_existing_strategy_returned(self):
        """A strategy instance is passed through."""
        strategy = NoAuthStrategy()
        assert create_credential_strategy(strategy) is strategy
        assert isinstance(strategy, CredentialStrategy)

    @pytest.mark.parametrize(
        "descriptor,missing",
        [
            ({"auth_method": "basic", "client_id": "a"}, "client_secret"),
            ({"auth_method": "oauth2", "client_id": "a", "client_secret": "b"}, "uri"),
        ],
    )
    def test_missing_fields(self, descriptor, missing):
        """Incomplete descriptors name the missing fields."""
        with pytest.raises(ConfigurationError, match=missing):
            create_credential_strategy(descriptor)

    def test_unknown_method(self):
        """An unknown auth_method is a configuration error."""
        with pytest.raises(ConfigurationError, match="kerberos"):
            create_credential_strategy({"auth_method": "kerberos"})

    def test_unsupported_type(self):
        """Descriptors of other types are rejected."""
        with pytest.raises(ConfigurationError):
            create_credential_strategy(42)
