"""Tests for CLI module.

Tests the appauth command-line interface against a file store under a
temporary home directory.
"""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import sys

from unittest.mock import patch

import httpx
import pytest

from appauth.auth.session import SessionManager
from appauth.auth.token_store import FileKeyValueStore, TokenRecordStore
from appauth.cli import main
from appauth.config import AuthSettings
from appauth.types import TokenRecord


def _cli(*args: str) -> int:
    with patch.object(sys, "argv", ["appauth", *args]):
        return main()


@pytest.fixture()
def file_records() -> TokenRecordStore:
    """Record store over the default file location."""
    return TokenRecordStore(FileKeyValueStore(AuthSettings().storage_path))


class TestMainEntryPoint:
    """Tests for the CLI entry point."""

    def test_no_args_prints_help(self, capsys) -> None:
        """Running with no command prints help."""
        assert _cli() == 0
        output = capsys.readouterr().out
        assert "usage:" in output.lower()
        for command in ("status", "login", "logout", "token", "config"):
            assert command in output

    def test_help_flag(self, capsys) -> None:
        """--help exits after printing usage."""
        with pytest.raises(SystemExit):
            _cli("--help")
        assert "appauth" in capsys.readouterr().out

    def test_invalid_configuration(self, monkeypatch, capsys) -> None:
        """Invalid settings are reported instead of raising."""
        monkeypatch.setenv("APPAUTH_HTTP_TIMEOUT_SECONDS", "-5")
        assert _cli("status") == 1
        assert "Invalid configuration" in capsys.readouterr().err


class TestConfigCommand:
    """Tests for the config command."""

    def test_show(self, monkeypatch, capsys) -> None:
        """--show prints the settings with the secret redacted."""
        monkeypatch.setenv("APPAUTH_CLIENT_SECRET", "hunter2")
        assert _cli("config", "--show") == 0
        output = capsys.readouterr().out
        assert "appauth Configuration" in output
        assert "hunter2" not in output

    def test_env(self, capsys) -> None:
        """--env prints export lines."""
        assert _cli("config", "--env") == 0
        assert "export APPAUTH_CLIENT_ID=" in capsys.readouterr().out

    def test_sources(self, capsys, isolated_env) -> None:
        """--sources lists the TOML layers."""
        (isolated_env / "appauth.toml").write_text('client_id = "c"\n', encoding="utf-8")
        assert _cli("config", "--sources") == 0
        output = capsys.readouterr().out
        assert "./appauth.toml" in output
        assert "Found" in output


class TestSessionCommands:
    """Tests for status, token and logout."""

    def test_status_signed_out(self, capsys) -> None:
        """An empty store reports signed out with exit code 1."""
        assert _cli("status") == 1
        assert "Not signed in" in capsys.readouterr().out

    def test_status_and_token_signed_in(self, file_records, capsys) -> None:
        """A stored record is shown and its token printed."""
        asyncio.run(file_records.save(TokenRecord("tok1", {"id": "u1", "email": "a@b.com"})))

        assert _cli("status") == 0
        output = capsys.readouterr().out
        assert "Signed in" in output
        assert '"email": "a@b.com"' in output

        assert _cli("token") == 0
        assert capsys.readouterr().out.strip() == "tok1"

    def test_token_signed_out(self, capsys) -> None:
        """No token is printed while signed out."""
        assert _cli("token") == 1
        assert "Not signed in" in capsys.readouterr().err

    def test_logout_without_provider_settings(self, file_records, capsys) -> None:
        """Logout erases the record even without provider configuration."""
        asyncio.run(file_records.save(TokenRecord("tok1", {"id": "u1"})))
        assert _cli("logout") == 0
        assert "Signed out" in capsys.readouterr().out
        assert asyncio.run(file_records.load()) is None

    def test_logout_with_provider_revokes(
        self, file_records, routes, provider, make_prompt
    ) -> None:
        """Configured logout revokes the stored token."""
        asyncio.run(file_records.save(TokenRecord("tok1", {"id": "u1"})))
        manager = SessionManager(provider, file_records, make_prompt())

        with patch("appauth.cli.create_session_manager", return_value=manager):
            assert _cli("logout") == 0

        assert asyncio.run(file_records.load()) is None
        (revoke,) = [r for r in routes.requests if r.url.path == "/oauth/revoke"]
        assert routes.form(revoke)["token"] == "tok1"


class TestLoginCommand:
    """Tests for the login command."""

    def test_missing_configuration(self, capsys) -> None:
        """Login without a client id fails cleanly."""
        assert _cli("login") == 1
        assert "Cannot sign in" in capsys.readouterr().err

    def test_success(self, provider, file_records, make_prompt, capsys) -> None:
        """A completed login prints the user and stores the record."""
        manager = SessionManager(provider, file_records, make_prompt())
        with patch("appauth.cli.create_session_manager", return_value=manager):
            assert _cli("login") == 0

        assert "Signed in as a@b.com" in capsys.readouterr().out
        record = asyncio.run(file_records.load())
        assert record.access_token == "tok1"

    def test_failure(self, provider, file_records, make_prompt, routes, capsys) -> None:
        """A rejected exchange exits with 1 and names the error kind."""
        routes.token_response = httpx.Response(400, json={"error": "invalid_grant"})
        manager = SessionManager(provider, file_records, make_prompt())
        with patch("appauth.cli.create_session_manager", return_value=manager):
            assert _cli("login") == 1

        assert "TokenExchangeRejected" in capsys.readouterr().err
        assert asyncio.run(file_records.load()) is None

    def test_no_browser_prints_url(self, provider, file_records, make_prompt) -> None:
        """--no-browser swaps the browser launcher for printing."""
        captured = {}

        def factory(settings, prompt=None):
            captured["prompt"] = prompt
            return SessionManager(provider, file_records, make_prompt())

        with patch("appauth.cli.create_session_manager", side_effect=factory):
            assert _cli("login", "--no-browser") == 0

        assert captured["prompt"].open_url.__name__ == "_print_url"
