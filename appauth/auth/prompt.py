"""Out-of-process authorization prompts.

A prompt presents the provider's authorization URL to the user outside
the application (system browser or equivalent) and suspends until the
provider redirects back or the user abandons the flow. No timeout is
imposed here; cancelling the awaiting task is the only way to stop
waiting.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import webbrowser

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlparse

from ..types import PromptResult
from .callback_server import OAuthCallbackServer


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import AuthSettings


logger = logging.getLogger("appauth.auth")


def result_from_params(params: dict[str, Any]) -> PromptResult:
    """Classify redirect parameters into a prompt completion.

    ``access_denied`` is the provider's answer to a user declining the
    consent screen and is treated as a cancellation.
    """
    clean = {k: str(v) for k, v in params.items() if v is not None}
    error = clean.get("error")
    if error == "access_denied":
        return PromptResult(type="cancel", params=clean)
    if error:
        return PromptResult(type="error", params=clean)
    return PromptResult(type="success", params=clean)


class AuthorizationPrompt(ABC):
    """Presents the authorization URL and awaits the redirect."""

    @property
    @abstractmethod
    def redirect_uri(self) -> str:
        """Redirect URI registered with the provider for this prompt."""

    @abstractmethod
    async def prompt(self, authorize_url: str) -> PromptResult:
        """Show ``authorize_url`` and wait for the user to finish.

        Parameters
        ----------
        authorize_url : str
            The provider authorization URL for the current attempt.

        Returns
        -------
        PromptResult
            How the authorization screen completed.
        """


class SystemBrowserPrompt(AuthorizationPrompt):
    """Opens the system browser and captures the redirect on loopback.

    Parameters
    ----------
    host : str
        Bind address of the callback server.
    port : int
        Port of the callback server; must match the registered redirect URI.
    path : str
        Callback path.
    open_url : callable, optional
        Browser launcher, ``webbrowser.open`` by default.
    poll_interval : float
        Longest time a worker thread blocks waiting for the redirect
        before the event loop checks for cancellation.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8765,
        path: str = "auth/callback",
        open_url: Callable[[str], Any] | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize the system browser prompt."""
        self.host = host
        self.port = port
        self.path = path.strip("/")
        self.open_url = open_url or webbrowser.open
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> SystemBrowserPrompt:
        """Build a prompt bound to the configured loopback callback."""
        return cls(
            host=settings.callback_host,
            port=settings.callback_port,
            path=settings.redirect_path,
        )

    @property
    def redirect_uri(self) -> str:
        """Loopback redirect URI, e.g. ``http://127.0.0.1:8765/auth/callback``."""
        return f"http://{self.host}:{self.port}/{self.path}"

    async def prompt(self, authorize_url: str) -> PromptResult:
        """Open the browser and wait on the callback server until redirected."""
        server = OAuthCallbackServer(host=self.host, port=self.port, path=self.path)
        server.start()
        try:
            if not self.open_url(authorize_url):
                logger.info("Open this URL to authenticate: %s", authorize_url)
            params = None
            while params is None:
                params = await asyncio.to_thread(server.wait_for_callback, self.poll_interval)
            return result_from_params(params)
        finally:
            await asyncio.to_thread(server.stop)


class DeepLinkPrompt(AuthorizationPrompt):
    """Awaits a custom-scheme redirect forwarded by the application.

    The application's URL handler passes incoming links to
    :meth:`handle_redirect`; closing the browser without completing maps
    to :meth:`dismiss`.

    Parameters
    ----------
    redirect_uri : str
        Custom-scheme redirect URI, e.g. ``appauth://auth/callback``.
    open_url : callable, optional
        Browser launcher, ``webbrowser.open`` by default.
    """

    def __init__(self, redirect_uri: str, open_url: Callable[[str], Any] | None = None) -> None:
        """Initialize the deep link prompt."""
        self._redirect_uri = redirect_uri
        self.open_url = open_url or webbrowser.open
        self._pending: asyncio.Future[PromptResult] | None = None

    @property
    def redirect_uri(self) -> str:
        """The custom-scheme redirect URI."""
        return self._redirect_uri

    @property
    def is_waiting(self) -> bool:
        """Whether an authorization screen is awaiting completion."""
        return self._pending is not None and not self._pending.done()

    async def prompt(self, authorize_url: str) -> PromptResult:
        """Open the browser and wait for a forwarded redirect."""
        loop = asyncio.get_running_loop()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        pending: asyncio.Future[PromptResult] = loop.create_future()
        self._pending = pending
        self.open_url(authorize_url)
        try:
            return await pending
        finally:
            if self._pending is pending:
                self._pending = None

    def handle_redirect(self, url: str) -> bool:
        """Complete the waiting prompt with an incoming redirect URL.

        Parameters
        ----------
        url : str
            The link the application was opened with.

        Returns
        -------
        bool
            True if the link was the awaited redirect.
        """
        expected = urlparse(self._redirect_uri)
        actual = urlparse(url)
        if (actual.scheme, actual.netloc, actual.path.rstrip("/")) != (
            expected.scheme,
            expected.netloc,
            expected.path.rstrip("/"),
        ):
            return False
        if not self.is_waiting or self._pending is None:
            logger.debug("Ignoring redirect with no authorization in progress")
            return False
        self._pending.set_result(result_from_params(dict(parse_qsl(actual.query))))
        return True

    def dismiss(self) -> None:
        """Report that the user closed the authorization screen."""
        if self.is_waiting and self._pending is not None:
            self._pending.set_result(PromptResult(type="dismiss"))
