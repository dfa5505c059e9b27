"""Shared test fixtures for oidcauth.

Provides an isolated environment, an in-memory keyring backend, static
provider metadata, and a fake browser that drives the loopback callback the
way a real browser redirect would.
"""

from __future__ import annotations

import threading
import time
from http.client import HTTPConnection
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from oidcauth.models import ProviderMetadata, SessionConfig


ISSUER = "https://issuer.example.com"


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_DATA_HOME at tmp_path and clear OIDCAUTH_* variables."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in [
        "OIDCAUTH_DISCOVERY_TIMEOUT",
        "OIDCAUTH_EXCHANGE_TIMEOUT",
        "OIDCAUTH_CALLBACK_TIMEOUT",
        "OIDCAUTH_CLIENT_TIMEOUT",
        "OIDCAUTH_USE_PKCE",
        "OIDCAUTH_ANNOUNCE_URL",
        "OIDCAUTH_CLIENT_SECRET_SOURCE",
    ]:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# Keyring
# ---------------------------------------------------------------------------


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found") from None


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


# ---------------------------------------------------------------------------
# Provider and config
# ---------------------------------------------------------------------------


@pytest.fixture
def endpoints() -> ProviderMetadata:
    return ProviderMetadata(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        jwks_uri=f"{ISSUER}/jwks",
    )


@pytest.fixture
def config() -> SessionConfig:
    """Short timeouts and no stderr notice."""
    return SessionConfig(callback_timeout=5.0, announce_url=False)


class StaticResolver:
    """Endpoint resolver that returns fixed metadata and records calls."""

    def __init__(self, metadata: ProviderMetadata) -> None:
        self.metadata = metadata
        self.calls: list[tuple[str, Optional[float]]] = []

    def resolve(self, issuer: str, timeout: Optional[float] = None) -> ProviderMetadata:
        self.calls.append((issuer, timeout))
        return self.metadata


@pytest.fixture
def resolver(endpoints: ProviderMetadata) -> StaticResolver:
    return StaticResolver(endpoints)


# ---------------------------------------------------------------------------
# HTTP mocks
# ---------------------------------------------------------------------------


def make_token_response(
    access_token: str = "test-access-token",
    expires_in: Optional[int] = 3600,
    refresh_token: Optional[str] = "test-refresh-token",
    token_type: str = "Bearer",
) -> dict[str, object]:
    """Build a token endpoint JSON response."""
    data: dict[str, object] = {"access_token": access_token, "token_type": token_type}
    if expires_in is not None:
        data["expires_in"] = expires_in
    if refresh_token is not None:
        data["refresh_token"] = refresh_token
    return data


def mock_response(json_body: object = None, status_code: int = 200) -> MagicMock:
    """Create a mock httpx.Response with the given JSON body and status."""
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.json.return_value = json_body
    response.text = str(json_body)

    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=response,
        )
    else:
        response.raise_for_status.return_value = None
    return response


# ---------------------------------------------------------------------------
# Fake browser
# ---------------------------------------------------------------------------


def send_request(port: int, path: str, timeout: float = 5) -> int:
    """Send a GET to the local callback server and return the status code."""
    conn = HTTPConnection("127.0.0.1", port, timeout=timeout)
    try:
        conn.request("GET", path)
        return conn.getresponse().status
    finally:
        conn.close()


class FakeBrowser:
    """Browser launcher that follows the authorization URL's redirect itself.

    On :meth:`open` it records the URL and, unless *redirect* is False,
    sends the callback request from a background thread. *params* builds the
    callback query from the authorization request's query parameters.
    """

    def __init__(
        self,
        params: Optional[Callable[[dict[str, str]], dict[str, str]]] = None,
        redirect: bool = True,
        delay: float = 0.05,
    ) -> None:
        self.params = params or (lambda q: {"code": "XYZ", "state": q["state"]})
        self.redirect = redirect
        self.delay = delay
        self.urls: list[str] = []
        self.threads: list[threading.Thread] = []
        self.statuses: list[int] = []

    def open(self, url: str) -> None:
        self.urls.append(url)
        if not self.redirect:
            return
        query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        redirect = urlparse(query["redirect_uri"])
        path = f"{redirect.path}?{urlencode(self.params(query))}"

        def follow() -> None:
            time.sleep(self.delay)
            self.statuses.append(send_request(redirect.port, path))

        thread = threading.Thread(target=follow, daemon=True)
        thread.start()
        self.threads.append(thread)

    def join(self) -> None:
        for thread in self.threads:
            thread.join(timeout=5)

    @property
    def last_query(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlparse(self.urls[-1]).query).items()}
