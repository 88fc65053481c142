"""appauth exception hierarchy.

All appauth-specific exceptions inherit from AppAuthError, enabling
catch-all handling while supporting specific error types. Every login
failure kind derives from AuthenticationError so the session engine can
turn it into a determinate session status.
"""

from __future__ import annotations

from typing import Any


class AppAuthError(Exception):
    """Base exception for all appauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize appauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, attempt_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message

    @property
    def kind(self) -> str:
        """Name of the error kind, as reported on the session."""
        return self.__class__.__name__


class ConfigurationError(AppAuthError):
    """Settings are missing or invalid.

    Raised when the engine is asked to log in without a client id
    or without the provider endpoints it needs.
    """


class AuthenticationError(AppAuthError):
    """Base exception for all login failures.

    Raised when a stage of the authorization code flow fails. The
    message is the human-readable cause attached to the session.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        attempt_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The identity provider host.
        attempt_id : str, optional
            The identifier of the login attempt that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, attempt_id=attempt_id, **context)
        self.provider = provider
        self.attempt_id = attempt_id


class ProviderUICancelled(AuthenticationError):
    """The user dismissed or cancelled the provider's authorization screen.

    Recoverable; the session is not moved to an error status.
    """


class AttemptSuperseded(ProviderUICancelled):
    """A login attempt was invalidated by a newer attempt or a logout."""


class MissingAuthorizationCode(AuthenticationError):
    """The provider reported success without an authorization code."""


class TokenExchangeRejected(AuthenticationError):
    """The token endpoint answered with a non-2xx status.

    Carries the provider's error payload when one was returned.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize token exchange rejection.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint.
        error : str, optional
            The OAuth2 ``error`` code from the response body.
        error_description : str, optional
            The OAuth2 ``error_description`` from the response body.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, error=error, **context)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


class MissingAccessToken(AuthenticationError):
    """A 2xx token response did not contain an access token."""


class ProfileFetchFailed(AuthenticationError):
    """The user-info endpoint failed or returned an unusable profile.

    The access token obtained for the attempt is discarded.
    """

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize profile fetch failure.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the user-info endpoint.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class NetworkUnreachable(AuthenticationError):
    """The identity provider could not be reached.

    Raised for transport failures (DNS, connect, timeouts), as opposed
    to the provider rejecting a request.
    """


class StorageFailure(AuthenticationError):
    """Reading, writing or erasing the persisted token record failed."""

    def __init__(self, message: str, operation: str | None = None, **context: Any) -> None:
        """Initialize storage failure.

        Parameters
        ----------
        message : str
            Human-readable error message.
        operation : str, optional
            The store operation that failed (``get``, ``set``, ``remove``).
        **context : Any
            Additional context.
        """
        super().__init__(message, operation=operation, **context)
        self.operation = operation
