"""One-shot loopback HTTP server that captures the OAuth2 redirect.

The system-browser prompt registers ``http://127.0.0.1:<port>/<path>`` as
the redirect URI. The first request on that path is recorded and
answered with a small page telling the user to return to the
application; later requests only get the page.
"""

# pylint: disable=logging-too-many-args,invalid-name

from __future__ import annotations

import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qsl, urlparse


logger = logging.getLogger("appauth.auth")

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<style>
  body {{ font-family: system-ui, sans-serif; margin: 0; height: 100vh;
         display: flex; align-items: center; justify-content: center; background: #f5f6f8; }}
  main {{ background: #fff; padding: 2rem 3rem; border-radius: 10px; text-align: center; }}
  p {{ color: #555; }}
</style></head>
<body><main><h1>{title}</h1><p>{message}</p></main></body>
</html>"""

_HEADERS = {
    "Content-Type": "text/html; charset=utf-8",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; style-src 'unsafe-inline'",
    "X-Content-Type-Options": "nosniff",
}


class _CaptureHTTPServer(HTTPServer):
    """HTTPServer that remembers the first redirect on ``callback_path``."""

    def __init__(self, address: tuple[str, int], callback_path: str) -> None:
        super().__init__(address, _RedirectHandler)
        self.callback_path = callback_path
        self.captured: dict[str, str] | None = None
        self.captured_event = threading.Event()
        self._capture_lock = threading.Lock()

    def capture(self, params: dict[str, str]) -> bool:
        """Record ``params`` unless a redirect was already captured."""
        with self._capture_lock:
            if self.captured_event.is_set():
                return False
            self.captured = params
            self.captured_event.set()
            return True


class _RedirectHandler(BaseHTTPRequestHandler):
    server: _CaptureHTTPServer

    def do_GET(self) -> None:
        url = urlparse(self.path)
        if url.path.rstrip("/") != self.server.callback_path:
            self.send_error(404)
            return

        params = dict(parse_qsl(url.query, keep_blank_values=True))
        error = params.get("error")
        if error:
            detail = params.get("error_description") or error
            page = _PAGE.format(title="Authentication Failed", message=html.escape(detail))
        else:
            page = _PAGE.format(
                title="Authentication Complete",
                message="You can close this window and return to the application.",
            )
        self._reply(page)

        # Recorded after replying so the browser is never left waiting
        if not self.server.capture(params):
            logger.debug("Ignoring repeated redirect to the callback server")

    def _reply(self, page: str) -> None:
        body = page.encode("utf-8")
        self.send_response(200)
        for name, value in _HEADERS.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("Callback server: %s", format % args)


class OAuthCallbackServer:
    """Loopback HTTP server capturing a single OAuth2 redirect.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number; ``0`` lets the OS pick a free one.
    path : str
        Callback path without leading slash (default ``"auth/callback"``).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, path: str = "auth/callback") -> None:
        """Initialize the callback server."""
        self.host = host
        self.port = port
        self.path = "/" + path.strip("/")
        self._httpd: _CaptureHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def redirect_uri(self) -> str:
        """Redirect URI served by this server, e.g. ``http://127.0.0.1:8765/auth/callback``."""
        return f"http://{self.host}:{self.port}{self.path}"

    @property
    def result(self) -> dict[str, str] | None:
        """Query parameters of the captured redirect, or None while waiting."""
        httpd = self._httpd
        if httpd is None or not httpd.captured_event.is_set():
            return None
        return httpd.captured

    def start(self) -> str:
        """Bind the socket and serve on a daemon thread.

        Returns
        -------
        str
            The redirect URI to register with the identity provider.

        Raises
        ------
        OSError
            If the port cannot be bound.
        """
        self._httpd = _CaptureHTTPServer((self.host, self.port), self.path)
        self.port = self._httpd.server_address[1]
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="appauth-callback", daemon=True
        )
        self._thread.start()
        logger.debug("Callback server listening on %s", self.redirect_uri)
        return self.redirect_uri

    def wait_for_callback(self, timeout: float | None = None) -> dict[str, str] | None:
        """Block until the redirect arrives.

        Parameters
        ----------
        timeout : float, optional
            Maximum seconds to wait; ``None`` waits indefinitely.

        Returns
        -------
        dict or None
            Redirect parameters, or None if the timeout expired first.
        """
        httpd = self._httpd
        if httpd is None or not httpd.captured_event.wait(timeout):
            return None
        return httpd.captured

    def stop(self) -> None:
        """Stop serving and release the port. Safe to call twice."""
        httpd, self._httpd = self._httpd, None
        thread, self._thread = self._thread, None
        if httpd is not None:
            httpd.shutdown()
            httpd.server_close()
        if thread is not None:
            thread.join(timeout=5)
