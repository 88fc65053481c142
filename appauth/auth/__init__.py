"""OAuth2 authorization code + PKCE authentication for appauth.

Provides the identity provider gateway, token storage, authorization
prompts and the session engine that ties them together.
"""

from __future__ import annotations

from .guard import GateDecision, SessionBearerAuth, gate
from .pkce import PKCEAttempt
from .prompt import AuthorizationPrompt, DeepLinkPrompt, SystemBrowserPrompt
from .provider import IdentityProvider, create_provider_from_settings
from .session import SessionManager, create_session_manager
from .token_store import (
    FileKeyValueStore,
    KeyringKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    TokenRecordStore,
    get_token_store,
    reset_token_store,
)


__all__ = [
    "AuthorizationPrompt",
    "DeepLinkPrompt",
    "FileKeyValueStore",
    "GateDecision",
    "IdentityProvider",
    "KeyValueStore",
    "KeyringKeyValueStore",
    "MemoryKeyValueStore",
    "PKCEAttempt",
    "SessionBearerAuth",
    "SessionManager",
    "SystemBrowserPrompt",
    "TokenRecordStore",
    "create_provider_from_settings",
    "create_session_manager",
    "gate",
    "get_token_store",
    "reset_token_store",
]
