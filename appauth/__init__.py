"""appauth - OAuth2 authorization code + PKCE sign-in for Python applications.

Signs users in against a third-party identity provider, persists the
resulting identity, restores it on start-up and gates the rest of the
application on it.
"""

from __future__ import annotations

from .auth import (
    DeepLinkPrompt,
    GateDecision,
    IdentityProvider,
    SessionBearerAuth,
    SessionManager,
    SystemBrowserPrompt,
    create_session_manager,
    gate,
)
from .config import AuthSettings, clear_settings, get_settings
from .exceptions import (
    AppAuthError,
    AttemptSuperseded,
    AuthenticationError,
    ConfigurationError,
    MissingAccessToken,
    MissingAuthorizationCode,
    NetworkUnreachable,
    ProfileFetchFailed,
    ProviderUICancelled,
    StorageFailure,
    TokenExchangeRejected,
)
from .log import enable_debug, get_logger
from .types import LoginResult, Session, SessionStatus


__version__ = "0.1.0"

__all__ = [
    "AppAuthError",
    "AttemptSuperseded",
    "AuthSettings",
    "AuthenticationError",
    "ConfigurationError",
    "DeepLinkPrompt",
    "GateDecision",
    "IdentityProvider",
    "LoginResult",
    "MissingAccessToken",
    "MissingAuthorizationCode",
    "NetworkUnreachable",
    "ProfileFetchFailed",
    "ProviderUICancelled",
    "Session",
    "SessionBearerAuth",
    "SessionManager",
    "SessionStatus",
    "StorageFailure",
    "SystemBrowserPrompt",
    "TokenExchangeRejected",
    "__version__",
    "clear_settings",
    "create_session_manager",
    "enable_debug",
    "gate",
    "get_logger",
    "get_settings",
]
