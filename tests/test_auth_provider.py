"""Unit tests for the identity provider gateway."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from appauth.auth.pkce import PKCEAttempt
from appauth.auth.provider import IdentityProvider, create_provider_from_settings
from appauth.config import AuthSettings
from appauth.exceptions import (
    ConfigurationError,
    MissingAccessToken,
    NetworkUnreachable,
    ProfileFetchFailed,
    TokenExchangeRejected,
)

from tests.constants import AUTHORIZE_URL, REDIRECT_URI, REVOKE_URL, TOKEN_URL


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


@pytest.fixture()
def attempt() -> PKCEAttempt:
    """A PKCE attempt bound to the custom-scheme redirect."""
    return PKCEAttempt.generate(REDIRECT_URI)


# ── Authorization URL ───────────────────────────────────────────────


class TestBuildAuthorizeURL:
    """Tests for IdentityProvider.build_authorize_url()."""

    def test_contains_pkce_parameters(self, provider: IdentityProvider, attempt) -> None:
        """The URL carries challenge, method, state and redirect URI."""
        url = provider.build_authorize_url(attempt)
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == AUTHORIZE_URL
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["client-1"]
        assert params["redirect_uri"] == [REDIRECT_URI]
        assert params["code_challenge"] == [attempt.challenge]
        assert params["code_challenge_method"] == ["S256"]
        assert params["state"] == [attempt.state]
        assert params["scope"] == ["openid profile email"]

    def test_never_contains_verifier(self, provider: IdentityProvider, attempt) -> None:
        """The verifier stays on the client."""
        assert attempt.verifier not in provider.build_authorize_url(attempt)

    def test_custom_scopes(self, attempt) -> None:
        """Configured scopes are space-joined."""
        provider = IdentityProvider(
            client_id="c",
            authorize_url=AUTHORIZE_URL,
            token_url=TOKEN_URL,
            userinfo_url="https://id.example.com/userinfo",
            scopes=["openid", "offline_access"],
        )
        params = parse_qs(urlparse(provider.build_authorize_url(attempt)).query)
        assert params["scope"] == ["openid offline_access"]

    def test_name_is_host(self, provider: IdentityProvider) -> None:
        """The provider is labelled by its host."""
        assert provider.name == "id.example.com"


# ── Code exchange ───────────────────────────────────────────────────


class TestExchangeCode:
    """Tests for IdentityProvider.exchange_code()."""

    def test_success(self, provider: IdentityProvider, routes, attempt) -> None:
        """A 2xx answer yields the token response."""
        routes.token_response = httpx.Response(
            200,
            json={"access_token": "tok1", "id_token": "idt", "expires_in": 3600, "scope": "openid"},
        )
        tokens = _run(provider.exchange_code("abc123", attempt))
        assert tokens.access_token == "tok1"
        assert tokens.id_token == "idt"
        assert tokens.expires_in == 3600
        assert tokens.token_type == "Bearer"
        assert tokens.raw["scope"] == "openid"

    def test_form_body(self, provider: IdentityProvider, routes, attempt) -> None:
        """The request is a form post with the PKCE verifier."""
        _run(provider.exchange_code("abc123", attempt))
        (request,) = routes.requests
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert routes.form(request) == {
            "grant_type": "authorization_code",
            "client_id": "client-1",
            "code_verifier": attempt.verifier,
            "code": "abc123",
            "redirect_uri": REDIRECT_URI,
        }

    def test_client_secret_sent_when_configured(self, routes, attempt) -> None:
        """Confidential clients add their secret."""
        provider = IdentityProvider(
            client_id="client-1",
            client_secret="s3cret",
            authorize_url=AUTHORIZE_URL,
            token_url=TOKEN_URL,
            userinfo_url="https://id.example.com/userinfo",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(routes)),
        )
        _run(provider.exchange_code("abc123", attempt))
        assert routes.form(routes.requests[0])["client_secret"] == "s3cret"

    def test_rejection_carries_payload(self, provider: IdentityProvider, routes, attempt) -> None:
        """Non-2xx answers raise with status and provider error."""
        routes.token_response = httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "code expired"}
        )
        with pytest.raises(TokenExchangeRejected) as exc_info:
            _run(provider.exchange_code("abc123", attempt))
        exc = exc_info.value
        assert exc.status_code == 400
        assert exc.error == "invalid_grant"
        assert exc.error_description == "code expired"
        assert exc.provider == "id.example.com"
        assert "code expired" in str(exc)

    def test_rejection_without_json(self, provider: IdentityProvider, routes, attempt) -> None:
        """A non-JSON error body still yields a rejection."""
        routes.token_response = httpx.Response(502, text="Bad Gateway")
        with pytest.raises(TokenExchangeRejected) as exc_info:
            _run(provider.exchange_code("abc123", attempt))
        assert exc_info.value.status_code == 502
        assert exc_info.value.error is None

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"token_type": "Bearer"}),
            httpx.Response(200, json={"access_token": ""}),
            httpx.Response(200, json=["tok1"]),
            httpx.Response(200, text="tok1"),
        ],
    )
    def test_missing_access_token(self, provider, routes, attempt, response) -> None:
        """A 2xx answer without a usable access token is a protocol violation."""
        routes.token_response = response
        with pytest.raises(MissingAccessToken):
            _run(provider.exchange_code("abc123", attempt))

    def test_network_unreachable(self, provider: IdentityProvider, routes, attempt) -> None:
        """Transport failures are not reported as rejections."""
        routes.token_response = httpx.ConnectError("no route to host")
        with pytest.raises(NetworkUnreachable):
            _run(provider.exchange_code("abc123", attempt))

    def test_timeout_is_unreachable(self, provider: IdentityProvider, routes, attempt) -> None:
        """A timed-out request counts as unreachable."""
        routes.token_response = httpx.ReadTimeout("timed out")
        with pytest.raises(NetworkUnreachable):
            _run(provider.exchange_code("abc123", attempt))


# ── User info ───────────────────────────────────────────────────────


class TestGetUserinfo:
    """Tests for IdentityProvider.get_userinfo()."""

    def test_success(self, provider: IdentityProvider, routes) -> None:
        """The profile object is returned as sent."""
        profile = _run(provider.get_userinfo("tok1"))
        assert profile == {"id": "u1", "email": "a@b.com"}
        assert routes.requests[0].headers["Authorization"] == "Bearer tok1"

    @pytest.mark.parametrize("key", ["sub", "id", "user_id"])
    def test_identifier_keys(self, provider: IdentityProvider, routes, key: str) -> None:
        """Any of the identifier keys makes a usable profile."""
        routes.userinfo_response = httpx.Response(200, json={key: "u1"})
        assert _run(provider.get_userinfo("tok1")) == {key: "u1"}

    def test_non_2xx(self, provider: IdentityProvider, routes) -> None:
        """An error status fails with the status code."""
        routes.userinfo_response = httpx.Response(401)
        with pytest.raises(ProfileFetchFailed) as exc_info:
            _run(provider.get_userinfo("tok1"))
        assert exc_info.value.status_code == 401

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html></html>"),
            httpx.Response(200, json=[{"id": "u1"}]),
            httpx.Response(200, json={"email": "a@b.com"}),
            httpx.Response(200, json={"id": ""}),
        ],
    )
    def test_unusable_profile(self, provider, routes, response) -> None:
        """Bodies that are not identifiable profiles are rejected."""
        routes.userinfo_response = response
        with pytest.raises(ProfileFetchFailed):
            _run(provider.get_userinfo("tok1"))

    def test_network_unreachable(self, provider: IdentityProvider, routes) -> None:
        """Transport failures surface as NetworkUnreachable."""
        routes.userinfo_response = httpx.ConnectError("refused")
        with pytest.raises(NetworkUnreachable):
            _run(provider.get_userinfo("tok1"))


# ── Revocation ──────────────────────────────────────────────────────


class TestRevokeToken:
    """Tests for IdentityProvider.revoke_token()."""

    def test_success(self, provider: IdentityProvider, routes) -> None:
        """Revocation posts the token and client id."""
        assert _run(provider.revoke_token("tok1")) is True
        (request,) = routes.calls_to(REVOKE_URL)
        assert routes.form(request) == {"token": "tok1", "client_id": "client-1"}

    def test_rejected(self, provider: IdentityProvider, routes) -> None:
        """A rejected revocation returns False."""
        routes.revoke_response = httpx.Response(503)
        assert _run(provider.revoke_token("tok1")) is False

    def test_network_error(self, provider: IdentityProvider, routes) -> None:
        """A transport failure returns False instead of raising."""
        routes.revoke_response = httpx.ConnectError("refused")
        assert _run(provider.revoke_token("tok1")) is False

    def test_no_endpoint(self, routes) -> None:
        """Without a revocation endpoint nothing is sent."""
        provider = IdentityProvider(
            client_id="c",
            authorize_url=AUTHORIZE_URL,
            token_url=TOKEN_URL,
            userinfo_url="https://id.example.com/userinfo",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(routes)),
        )
        assert _run(provider.revoke_token("tok1")) is False
        assert routes.requests == []


# ── Client lifecycle ────────────────────────────────────────────────


class TestClientLifecycle:
    """Tests for the shared HTTP client."""

    def test_close_then_reuse(self, provider: IdentityProvider, routes) -> None:
        """A closed gateway opens a new client on the next call."""

        async def scenario() -> None:
            await provider.close()
            client = await provider._get_client()  # noqa: SLF001
            assert not client.is_closed
            await provider.close()

        _run(scenario())

    def test_lazy_client_uses_timeout(self) -> None:
        """The lazily created client carries the configured timeout."""
        provider = IdentityProvider(
            client_id="c",
            authorize_url=AUTHORIZE_URL,
            token_url=TOKEN_URL,
            userinfo_url="https://id.example.com/userinfo",
            timeout=3.5,
        )

        async def scenario() -> float | None:
            client = await provider._get_client()  # noqa: SLF001
            timeout = client.timeout.read
            await provider.close()
            return timeout

        assert _run(scenario()) == 3.5


# ── Settings factory ────────────────────────────────────────────────


class TestCreateProviderFromSettings:
    """Tests for create_provider_from_settings()."""

    def test_from_issuer(self) -> None:
        """Endpoints are derived from the issuer URL."""
        settings = AuthSettings(
            client_id="client-1",
            issuer_url="https://tenant.example.com/",
            scopes="openid email",
            http_timeout_seconds=4,
        )
        provider = create_provider_from_settings(settings)
        assert provider.authorize_url == "https://tenant.example.com/authorize"
        assert provider.token_url == "https://tenant.example.com/oauth/token"
        assert provider.userinfo_url == "https://tenant.example.com/userinfo"
        assert provider.revocation_url == "https://tenant.example.com/oauth/revoke"
        assert provider.scopes == ["openid", "email"]
        assert provider.timeout == 4

    def test_missing_client_id(self) -> None:
        """Incomplete settings are refused."""
        settings = AuthSettings(issuer_url="https://tenant.example.com")
        with pytest.raises(ConfigurationError, match="client_id"):
            create_provider_from_settings(settings)
