"""Identity provider gateway.

Stateless wrapper over the provider's fixed authorize, token, user-info
and revoke endpoints. Calls are never retried; transport failures are
reported as NetworkUnreachable and non-2xx answers as rejections so the
session engine can log them differently.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlparse

import httpx

from ..exceptions import (
    MissingAccessToken,
    NetworkUnreachable,
    ProfileFetchFailed,
    TokenExchangeRejected,
)
from ..log import redact_sensitive_data
from ..types import TokenResponse, profile_identifier


if TYPE_CHECKING:
    from ..config import AuthSettings
    from .pkce import PKCEAttempt


logger = logging.getLogger("appauth.auth")


def _error_payload(resp: httpx.Response) -> dict[str, Any]:
    """Decode an OAuth2 error body, if the provider sent one."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class IdentityProvider:
    """Gateway to an OAuth2 / OIDC identity provider.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    authorize_url : str
        The provider's authorization endpoint.
    token_url : str
        The provider's token exchange endpoint.
    userinfo_url : str
        The provider's user-info endpoint.
    revocation_url : str
        The provider's token revocation endpoint (RFC 7009).
    scopes : list[str], optional
        Requested OAuth2 scopes.
    client_secret : str
        The OAuth2 client secret (empty string for public clients).
    timeout : float
        Seconds before any single request is abandoned.
    http_client : httpx.AsyncClient, optional
        Client to send requests with. Created lazily when omitted.
    """

    def __init__(
        self,
        client_id: str,
        authorize_url: str,
        token_url: str,
        userinfo_url: str,
        revocation_url: str = "",
        scopes: list[str] | None = None,
        client_secret: str = "",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the gateway."""
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.revocation_url = revocation_url
        self.scopes = scopes or ["openid", "profile", "email"]
        self.timeout = timeout
        self._http_client = http_client

    @property
    def name(self) -> str:
        """Provider host, used to label errors and log records."""
        return urlparse(self.authorize_url).netloc or self.__class__.__name__

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def build_authorize_url(self, attempt: PKCEAttempt) -> str:
        """Build the full authorization URL for a login attempt.

        Parameters
        ----------
        attempt : PKCEAttempt
            The attempt supplying challenge, state and redirect URI.

        Returns
        -------
        str
            The authorization URL to present to the user.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": attempt.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": attempt.state,
            "code_challenge": attempt.challenge,
            "code_challenge_method": attempt.method,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, attempt: PKCEAttempt) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the redirect.
        attempt : PKCEAttempt
            The attempt whose verifier and redirect URI bind the code.

        Returns
        -------
        TokenResponse
            The token set from the provider.

        Raises
        ------
        NetworkUnreachable
            If the token endpoint cannot be reached.
        TokenExchangeRejected
            If the token endpoint answers with a non-2xx status.
        MissingAccessToken
            If a 2xx answer carries no access token.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code_verifier": attempt.verifier,
            "code": code,
            "redirect_uri": attempt.redirect_uri,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            client = await self._get_client()
            resp = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TransportError as exc:
            msg = f"Token endpoint unreachable: {exc.__class__.__name__}"
            raise NetworkUnreachable(msg, provider=self.name) from exc

        if not resp.is_success:
            payload = _error_payload(resp)
            error = payload.get("error")
            description = payload.get("error_description")
            detail = description or error or resp.reason_phrase or "no detail"
            msg = f"Token exchange rejected with HTTP {resp.status_code}: {detail}"
            raise TokenExchangeRejected(
                msg,
                status_code=resp.status_code,
                error=error,
                error_description=description,
                provider=self.name,
            )

        try:
            raw = resp.json()
        except ValueError:
            raw = None
        if not isinstance(raw, dict) or not raw.get("access_token"):
            msg = "Token response did not contain an access token"
            raise MissingAccessToken(msg, provider=self.name)

        logger.debug("Token response from %s: %s", self.name, redact_sensitive_data(raw))
        return TokenResponse(
            access_token=raw["access_token"],
            token_type=raw.get("token_type", "Bearer"),
            id_token=raw.get("id_token"),
            expires_in=raw.get("expires_in"),
            scope=raw.get("scope", ""),
            raw=raw,
        )

    async def get_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch the user profile with the access token as bearer credential.

        Parameters
        ----------
        access_token : str
            A valid access token.

        Returns
        -------
        dict[str, Any]
            User profile data from the provider.

        Raises
        ------
        NetworkUnreachable
            If the user-info endpoint cannot be reached.
        ProfileFetchFailed
            On a non-2xx answer, a non-object body, or a profile
            without an identifier.
        """
        try:
            client = await self._get_client()
            resp = await client.get(
                self.userinfo_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.TransportError as exc:
            msg = f"User-info endpoint unreachable: {exc.__class__.__name__}"
            raise NetworkUnreachable(msg, provider=self.name) from exc

        if not resp.is_success:
            msg = f"Profile fetch failed with HTTP {resp.status_code}"
            raise ProfileFetchFailed(msg, status_code=resp.status_code, provider=self.name)

        try:
            profile = resp.json()
        except ValueError:
            profile = None
        if not isinstance(profile, dict):
            msg = "User-info response is not a JSON object"
            raise ProfileFetchFailed(msg, status_code=resp.status_code, provider=self.name)
        if profile_identifier(profile) is None:
            msg = "User-info response has no user identifier"
            raise ProfileFetchFailed(msg, status_code=resp.status_code, provider=self.name)
        return profile

    async def revoke_token(self, token: str) -> bool:
        """Revoke a token at the provider (RFC 7009).

        Parameters
        ----------
        token : str
            The token to revoke.

        Returns
        -------
        bool
            True if revocation succeeded, False if no endpoint
            is configured or the request failed.
        """
        if not self.revocation_url:
            return False
        data = {"token": token, "client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        try:
            client = await self._get_client()
            resp = await client.post(self.revocation_url, data=data, timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.warning("Token revocation at %s failed: %s", self.name, exc)
            return False
        if not resp.is_success:
            logger.warning("Token revocation at %s returned HTTP %s", self.name, resp.status_code)
        return resp.is_success


def create_provider_from_settings(
    settings: AuthSettings,
    http_client: httpx.AsyncClient | None = None,
) -> IdentityProvider:
    """Create an IdentityProvider from AuthSettings.

    Parameters
    ----------
    settings : AuthSettings
        The identity provider configuration.
    http_client : httpx.AsyncClient, optional
        Client to share with the gateway.

    Returns
    -------
    IdentityProvider
        A configured gateway.

    Raises
    ------
    ConfigurationError
        If the client id or a required endpoint is missing.
    """
    settings.validate_for_login()
    return IdentityProvider(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        authorize_url=settings.authorize_url,
        token_url=settings.token_url,
        userinfo_url=settings.userinfo_url,
        revocation_url=settings.revocation_url,
        scopes=settings.scope_list,
        timeout=settings.http_timeout_seconds,
        http_client=http_client,
    )
