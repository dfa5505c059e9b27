"""Authenticated HTTP clients backed by a refreshing token source.

- :class:`TokenSource` -- hands out a valid :class:`~oidcauth.models.Token`,
  refreshing it through the refresh-token grant when the access token is
  missing or about to expire. Refreshes are serialised by a lock, so a
  source can be shared by threads.
- :class:`TokenSourceAuth` -- an :class:`httpx.Auth` that sets the
  ``Authorization`` header from a :class:`TokenSource` on every request.
- :func:`new_client` -- builds an :class:`httpx.Client` wired to both.

A client built here is what :meth:`oidcauth.session.Session.store_token_in_cache`
recognises as a managed client.
"""

from __future__ import annotations

import logging
import threading
from typing import Generator, Optional

import httpx

from oidcauth.exceptions import TokenRefreshError
from oidcauth.models import Token
from oidcauth.oauth2 import OAuth2Client

logger = logging.getLogger(__name__)


class TokenSource:
    """Thread-safe source of valid tokens for one client.

    Args:
        oauth2_client: Client used for refresh-token grants.
        token: Initial token. May hold only a refresh token (as rebuilt from
            the credential cache), in which case the first call refreshes.
        timeout: Seconds to wait for the token endpoint when refreshing.
    """

    def __init__(self, oauth2_client: OAuth2Client, token: Token, timeout: float = 30.0) -> None:
        self._oauth2_client = oauth2_client
        self._token = token
        self._timeout = timeout
        self._lock = threading.Lock()

    def token(self) -> Token:
        """Return a valid token, refreshing first if needed.

        Raises:
            TokenRefreshError: If a refresh is needed but there is no refresh
                token or the token endpoint rejects it.
        """
        with self._lock:
            if self._token.is_valid():
                return self._token
            if not self._token.refresh_token:
                raise TokenRefreshError("Token expired and no refresh token is available")
            logger.debug("Access token missing or expired, refreshing")
            self._token = self._oauth2_client.refresh(self._token.refresh_token, self._timeout)
            return self._token

    def peek(self) -> Token:
        """Return the current token without refreshing it."""
        with self._lock:
            return self._token


class TokenSourceAuth(httpx.Auth):
    """httpx auth flow that injects the bearer token from a :class:`TokenSource`."""

    def __init__(self, source: TokenSource) -> None:
        self.source = source

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self.source.token()
        request.headers["Authorization"] = f"{token.authorization_type} {token.access_token}"
        yield request


def new_client(
    oauth2_client: OAuth2Client,
    token: Token,
    timeout: Optional[float] = 30.0,
    **client_kwargs: object,
) -> httpx.Client:
    """Build an :class:`httpx.Client` that authenticates with *token*.

    Args:
        oauth2_client: Client used to refresh the token.
        token: The initial token.
        timeout: Timeout for both API requests and token refreshes.
        **client_kwargs: Extra keyword arguments for :class:`httpx.Client`.

    Returns:
        A client whose ``auth`` is a :class:`TokenSourceAuth`.
    """
    source = TokenSource(oauth2_client, token, timeout=30.0 if timeout is None else timeout)
    return httpx.Client(auth=TokenSourceAuth(source), timeout=timeout, **client_kwargs)  # type: ignore[arg-type]
