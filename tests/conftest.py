"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json
import os

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from appauth.auth.prompt import AuthorizationPrompt
from appauth.auth.provider import IdentityProvider
from appauth.auth.token_store import MemoryKeyValueStore, TokenRecordStore, reset_token_store
from appauth.config import clear_settings
from appauth.types import PromptResult
from tests.constants import AUTHORIZE_URL, REDIRECT_URI, REVOKE_URL, TOKEN_URL, USERINFO_URL


if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path


# ── Environment isolation ───────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Path, None, None]:
    """Run every test without user config, APPAUTH_ variables or cached singletons."""
    for key in list(os.environ):
        if key.startswith("APPAUTH_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    reset_token_store()
    yield tmp_path
    clear_settings()
    reset_token_store()


# ── Fakes ───────────────────────────────────────────────────────────


class FakePrompt(AuthorizationPrompt):
    """Prompt that completes immediately with a scripted result.

    ``success`` completions echo the ``state`` of the authorization URL
    unless ``state`` is given explicitly.
    """

    def __init__(
        self,
        type: str = "success",  # noqa: A002
        code: str | None = "abc123",
        state: str | None = None,
        params: dict[str, str] | None = None,
    ) -> None:
        self.type = type
        self.code = code
        self.state = state
        self.params = params or {}
        self.urls: list[str] = []

    @property
    def redirect_uri(self) -> str:
        return REDIRECT_URI

    async def prompt(self, authorize_url: str) -> PromptResult:
        self.urls.append(authorize_url)
        params = dict(self.params)
        if self.type == "success":
            query = parse_qs(urlparse(authorize_url).query)
            params.setdefault("state", self.state or query["state"][0])
            if self.code is not None:
                params["code"] = self.code
        return PromptResult(type=self.type, params=params)


class GatedPrompt(AuthorizationPrompt):
    """Prompt whose completions are released by the test, one per call."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.waiters: list[asyncio.Future[None]] = []
        self.started = asyncio.Event()

    @property
    def redirect_uri(self) -> str:
        return REDIRECT_URI

    async def prompt(self, authorize_url: str) -> PromptResult:
        self.urls.append(authorize_url)
        waiter = asyncio.get_running_loop().create_future()
        self.waiters.append(waiter)
        self.started.set()
        await waiter
        state = parse_qs(urlparse(authorize_url).query)["state"][0]
        return PromptResult(type="success", params={"code": f"code{len(self.urls)}", "state": state})

    def release(self, index: int) -> None:
        if not self.waiters[index].done():
            self.waiters[index].set_result(None)


class ProviderRoutes:
    """Scripted identity provider behind an ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.token_response: httpx.Response | Exception = httpx.Response(
            200, json={"access_token": "tok1", "token_type": "Bearer"}
        )
        self.userinfo_response: httpx.Response | Exception = httpx.Response(
            200, json={"id": "u1", "email": "a@b.com"}
        )
        self.revoke_response: httpx.Response | Exception = httpx.Response(200)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        routes: dict[str, httpx.Response | Exception] = {
            TOKEN_URL: self.token_response,
            USERINFO_URL: self.userinfo_response,
            REVOKE_URL: self.revoke_response,
        }
        response = routes.get(url)
        if response is None:
            return httpx.Response(404)
        if isinstance(response, Exception):
            raise response
        # Fresh copy so a scripted answer can be served more than once
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def routes() -> ProviderRoutes:
    """Scripted provider answering ``tok1`` and profile ``u1`` by default."""
    return ProviderRoutes()


@pytest.fixture()
def provider(routes: ProviderRoutes) -> IdentityProvider:
    """Identity provider gateway over the scripted routes."""
    return IdentityProvider(
        client_id="client-1",
        authorize_url=AUTHORIZE_URL,
        token_url=TOKEN_URL,
        userinfo_url=USERINFO_URL,
        revocation_url=REVOKE_URL,
        timeout=5.0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(routes)),
    )


@pytest.fixture()
def kv_store() -> MemoryKeyValueStore:
    """Empty in-memory key-value store."""
    return MemoryKeyValueStore()


@pytest.fixture()
def record_store(kv_store: MemoryKeyValueStore) -> TokenRecordStore:
    """Token record store over the in-memory store."""
    return TokenRecordStore(kv_store)


@pytest.fixture()
def make_prompt() -> Callable[..., FakePrompt]:
    """Factory for scripted prompts."""
    return FakePrompt


@pytest.fixture()
def gated_prompt_factory() -> Callable[[], GatedPrompt]:
    """Factory for prompts released by the test; call inside a running loop."""
    return GatedPrompt


def stored_pair(kv_store: MemoryKeyValueStore) -> tuple[str | None, dict[str, Any] | None]:
    """Return the stored token and decoded profile."""
    data = kv_store.snapshot()
    profile = data.get("user_data")
    return data.get("auth_token"), json.loads(profile) if profile else None


@pytest.fixture()
def read_store() -> Callable[[MemoryKeyValueStore], tuple[str | None, dict[str, Any] | None]]:
    """Reader for the two persisted slots."""
    return stored_pair
