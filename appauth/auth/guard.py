"""Consumer-side helpers built on the session engine.

``gate`` is the protected-screen rule; ``SessionBearerAuth`` lets an
httpx client for the data layer carry the current access token.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import httpx


if TYPE_CHECKING:
    from collections.abc import Generator

    from ..types import Session
    from .session import SessionManager


class GateDecision(str, Enum):
    """What a protected screen should do with the current session."""

    PENDING = "pending"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    ALLOW = "allow"


def gate(session: Session) -> GateDecision:
    """Decide access to a protected screen.

    Parameters
    ----------
    session : Session
        Current session snapshot.

    Returns
    -------
    GateDecision
        ``PENDING`` while the persisted session is still being read,
        ``ALLOW`` when a user is signed in, else ``REDIRECT_TO_LOGIN``.
    """
    if session.is_loading:
        return GateDecision.PENDING
    if session.is_authenticated:
        return GateDecision.ALLOW
    return GateDecision.REDIRECT_TO_LOGIN


class SessionBearerAuth(httpx.Auth):
    """httpx authentication that sends the session's access token.

    Requests go out without an ``Authorization`` header while signed out.

    Parameters
    ----------
    manager : SessionManager
        Engine supplying the token through ``get_access_token()``.
    """

    def __init__(self, manager: SessionManager) -> None:
        """Initialize the bearer auth."""
        self.manager = manager

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        """Attach the bearer header, if a token is available."""
        token = self.manager.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request
