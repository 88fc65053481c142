"""Type definitions for appauth session management.

Shared types used by the session engine, the identity provider gateway
and consumers of session state.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any


# Keys accepted as the user identifier in a provider profile
PROFILE_ID_KEYS = ("sub", "id", "user_id")


class SessionStatus(str, Enum):
    """Status of the application session."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    AUTH_ERROR = "auth_error"


def freeze_profile(profile: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    """Return a read-only copy of a provider profile."""
    if profile is None:
        return None
    return MappingProxyType(dict(profile))


def profile_identifier(profile: Mapping[str, Any]) -> str | None:
    """Return the profile's identifier, or None if it has none."""
    for key in PROFILE_ID_KEYS:
        value = profile.get(key)
        if value not in (None, ""):
            return str(value)
    return None


@dataclass(frozen=True)
class Session:
    """Read-only snapshot of the session owned by the engine.

    Attributes
    ----------
    status : SessionStatus
        Current state machine status.
    user : Mapping[str, Any] or None
        Provider-issued profile of the signed-in user.
    access_token : str or None
        Bearer credential for protected resources.
    is_loading : bool
        True until the persisted record has been read at startup.
    error : str or None
        Human-readable cause when ``status`` is ``AUTH_ERROR``.
    error_kind : str or None
        Name of the error kind behind ``error``.
    """

    status: SessionStatus = SessionStatus.UNAUTHENTICATED
    user: Mapping[str, Any] | None = None
    access_token: str | None = field(default=None, repr=False)
    is_loading: bool = False
    error: str | None = None
    error_kind: str | None = None

    @property
    def is_authenticated(self) -> bool:
        """Whether the session holds a signed-in user."""
        return self.status is SessionStatus.AUTHENTICATED

    def evolve(self, **changes: Any) -> Session:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)


@dataclass(frozen=True)
class TokenResponse:
    """Token endpoint response.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "Bearer".
    id_token : str or None
        Optional OIDC ID token (JWT).
    expires_in : int or None
        Token lifetime in seconds from issuance.
    scope : str
        Space-separated list of granted scopes.
    raw : dict[str, Any]
        The raw token response from the provider.
    """

    access_token: str = field(repr=False)
    token_type: str = "Bearer"  # noqa: S105
    id_token: str | None = field(default=None, repr=False)
    expires_in: int | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class TokenRecord:
    """Persisted ``{access_token, profile}`` pair."""

    access_token: str = field(repr=False)
    profile: Mapping[str, Any]


@dataclass(frozen=True)
class PromptResult:
    """Completion of the out-of-process authorization screen.

    Attributes
    ----------
    type : str
        Completion type: ``success``, ``cancel``, ``dismiss``, ``error``, ...
    params : dict[str, str]
        Query parameters of the redirect (``code``, ``state``, ``error``...).
    """

    type: str
    params: dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        """Whether the provider reported a successful authorization."""
        return self.type == "success"


@dataclass(frozen=True)
class LoginResult:
    """Result of a ``login()`` call.

    Attributes
    ----------
    success : bool
        True only when the session ended ``AUTHENTICATED``.
    session : Session
        Session snapshot when the call resolved.
    error : str or None
        Human-readable cause when the attempt failed.
    error_kind : str or None
        Name of the error kind behind ``error``.
    """

    success: bool
    session: Session
    error: str | None = None
    error_kind: str | None = None
