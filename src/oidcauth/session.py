"""The public client object: one issuer, one client id.

:func:`create` discovers the issuer's endpoints and returns a
:class:`Session`, which composes a :class:`~oidcauth.flow.LoginFlow` with a
:class:`~oidcauth.credential_store.CredentialStore`:

- :meth:`Session.browser_login` -- interactive login, returns a token.
- :meth:`Session.login_with_cache` -- reuse a cached refresh token when one
  is stored, otherwise log in through the browser; returns an
  authenticated :class:`httpx.Client`.
- :meth:`Session.store_token_in_cache` / :meth:`Session.delete_token_from_cache`
  -- manage the cached refresh token.

Credentials are stored with service = canonical issuer and account = client
id. Only the refresh token is stored.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

from oidcauth.browser import BrowserLauncher, default_launcher
from oidcauth.config import load_session_config, resolve_credential
from oidcauth.credential_store import CredentialStore, KeyringCredentialStore
from oidcauth.discovery import EndpointResolver, HTTPEndpointResolver
from oidcauth.exceptions import (
    CredentialNotFoundError,
    LoginCancelledError,
    MissingRefreshTokenError,
    UnsupportedTransportError,
)
from oidcauth.flow import LoginFlow
from oidcauth.models import ProviderMetadata, SessionConfig, Token
from oidcauth.oauth2 import OAuth2Client
from oidcauth.transport import TokenSourceAuth, new_client

logger = logging.getLogger(__name__)

OPENID_SCOPE = "openid"


class Session:
    """Login client for one OpenID Connect issuer and client id.

    Normally built with :func:`create`. Everything except the per-login
    redirect URI is fixed at construction. Logins are serialised per
    session; the cache methods and :meth:`client` can be called from any
    thread at any time.

    Args:
        issuer: Issuer URL; a trailing slash is stripped.
        client_id: The registered OAuth2 client identifier.
        endpoints: Provider metadata for the issuer.
        scopes: Extra scopes; ``"openid"`` is always added.
        launcher: Opens the authorization URL. Defaults to the platform's
            launcher.
        store: Refresh-token storage. Defaults to the system keyring.
        config: Session tunables. Defaults to :func:`load_session_config`.
        client_secret: Secret for confidential clients.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        endpoints: ProviderMetadata,
        scopes: tuple[str, ...] = (),
        launcher: Optional[BrowserLauncher] = None,
        store: Optional[CredentialStore] = None,
        config: Optional[SessionConfig] = None,
        client_secret: Optional[str] = None,
    ) -> None:
        self._issuer = issuer.rstrip("/")
        self._client_id = client_id
        self._scopes = frozenset(scopes) | {OPENID_SCOPE}
        self._endpoints = endpoints
        self._config = config or load_session_config()
        self._store = store if store is not None else KeyringCredentialStore()
        self._oauth2_client = OAuth2Client(
            client_id, endpoints, self._scopes, client_secret=client_secret
        )
        self._flow = LoginFlow(
            self._oauth2_client,
            launcher if launcher is not None else default_launcher(),
            self._config,
        )

    def __repr__(self) -> str:
        return f"Session(issuer={self._issuer!r}, client_id={self._client_id!r})"

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def scopes(self) -> frozenset[str]:
        return self._scopes

    @property
    def endpoints(self) -> ProviderMetadata:
        return self._endpoints

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def redirect_uri(self) -> Optional[str]:
        """Redirect URI of the current or most recent login, ``None`` before the first."""
        return self._flow.redirect_uri

    def browser_login(
        self,
        cancel_event: Optional[threading.Event] = None,
        callback_timeout: Optional[float] = None,
        exchange_timeout: Optional[float] = None,
    ) -> Token:
        """Log in through the user's browser and return the issued token.

        Blocks while another login on this session is in progress.
        See :meth:`oidcauth.flow.LoginFlow.run` for arguments and errors.
        """
        return self._flow.run(
            cancel_event=cancel_event,
            callback_timeout=callback_timeout,
            exchange_timeout=exchange_timeout,
        )

    def login_with_cache(
        self,
        cancel_event: Optional[threading.Event] = None,
        callback_timeout: Optional[float] = None,
        exchange_timeout: Optional[float] = None,
        client_timeout: Optional[float] = None,
    ) -> httpx.Client:
        """Return an authenticated client, logging in only when nothing is cached.

        A cached refresh token is used as-is; if it has gone stale, the
        first request made with the client raises
        :class:`~oidcauth.exceptions.TokenRefreshError`. Call
        :meth:`delete_token_from_cache` and log in again in that case.

        Args:
            cancel_event: Cancels a browser login, if one is needed.
            callback_timeout: See :meth:`browser_login`.
            exchange_timeout: See :meth:`browser_login`.
            client_timeout: Timeout for the returned client's requests and
                refreshes; defaults to ``config.client_timeout``.

        Raises:
            StoreError: If the credential store fails. The browser login is
                not attempted in that case.
            LoginError: If a browser login was needed and failed.
        """
        try:
            refresh_token = self._store.get(self._issuer, self._client_id)
        except CredentialNotFoundError:
            logger.debug("No cached credential for %s, starting browser login", self._issuer)
            token = self.browser_login(
                cancel_event=cancel_event,
                callback_timeout=callback_timeout,
                exchange_timeout=exchange_timeout,
            )
        else:
            logger.debug("Using cached refresh token for %s", self._issuer)
            token = Token(refresh_token=refresh_token)
        return self.client(token, timeout=client_timeout)

    def client(self, token: Token, timeout: Optional[float] = None) -> httpx.Client:
        """Wrap *token* in an :class:`httpx.Client` that refreshes it as needed."""
        return new_client(
            self._oauth2_client,
            token,
            timeout=self._config.client_timeout if timeout is None else timeout,
        )

    def store_token_in_cache(self, client: httpx.Client) -> None:
        """Persist the refresh token of a client built by this package.

        The token source's current token is used, refreshing it first if
        it has expired, so a rotated refresh token is the one stored.

        Raises:
            UnsupportedTransportError: If *client* does not authenticate
                through a :class:`~oidcauth.transport.TokenSourceAuth`. The
                store is not touched.
            MissingRefreshTokenError: If the token has no refresh token.
            TokenRefreshError: If refreshing the token failed.
            StoreError: If the credential store fails.
        """
        auth = client.auth
        if not isinstance(auth, TokenSourceAuth):
            raise UnsupportedTransportError(
                "HTTP client does not authenticate through an oidcauth token source"
            )
        token = auth.source.token()
        if not token.refresh_token:
            raise MissingRefreshTokenError("Token has no refresh token to store")
        self._store.set(self._issuer, self._client_id, token.refresh_token)
        logger.info("Stored refresh token for %s", self._issuer)

    def delete_token_from_cache(self) -> None:
        """Remove the cached refresh token for this issuer and client id.

        Raises:
            CredentialNotFoundError: If nothing was cached.
            StoreError: If the credential store fails.
        """
        self._store.delete(self._issuer, self._client_id)
        logger.info("Deleted cached refresh token for %s", self._issuer)


def create(
    issuer: str,
    client_id: str,
    *scopes: str,
    resolver: Optional[EndpointResolver] = None,
    launcher: Optional[BrowserLauncher] = None,
    store: Optional[CredentialStore] = None,
    config: Optional[SessionConfig] = None,
    client_secret: Optional[str] = None,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Session:
    """Discover *issuer*'s endpoints and return a :class:`Session`.

    ``"openid"`` is always added to *scopes*, so only additional scopes need
    to be given.

    Args:
        issuer: Issuer URL; a trailing slash is stripped.
        client_id: The registered OAuth2 client identifier.
        *scopes: Additional scopes to request.
        resolver: Endpoint resolver; defaults to HTTP discovery.
        launcher: Browser launcher; defaults to the platform's.
        store: Credential store; defaults to the system keyring.
        config: Session tunables; defaults to :func:`load_session_config`.
        client_secret: Secret for confidential clients. When ``None``,
            ``config.client_secret_source`` is resolved if set.
        timeout: Seconds to wait for discovery; defaults to
            ``config.discovery_timeout``. This is the only bound on the
            discovery request itself.
        cancel_event: Checked before and after discovery. Setting it does
            not interrupt a request in flight, but no session is returned
            once it is set.

    Raises:
        LoginCancelledError: If *cancel_event* was set.
        DiscoveryError: If the issuer is unreachable or its metadata invalid.
        ConfigError: If the configured client secret cannot be resolved.

    Example::

        session = create("https://accounts.example.com/", "my-cli", "profile")
        client = session.login_with_cache()
        session.store_token_in_cache(client)
    """
    issuer = issuer.rstrip("/")
    config = config or load_session_config()
    resolver = resolver if resolver is not None else HTTPEndpointResolver()
    if client_secret is None and config.client_secret_source:
        client_secret = resolve_credential(config.client_secret_source)

    _check_cancelled(cancel_event, issuer)
    endpoints = resolver.resolve(
        issuer, timeout=config.discovery_timeout if timeout is None else timeout
    )
    _check_cancelled(cancel_event, issuer)
    logger.debug(
        "Resolved endpoints for %s: authorize=%s token=%s",
        issuer,
        endpoints.authorization_endpoint,
        endpoints.token_endpoint,
    )
    return Session(
        issuer,
        client_id,
        endpoints,
        scopes=scopes,
        launcher=launcher,
        store=store,
        config=config,
        client_secret=client_secret,
    )


def _check_cancelled(cancel_event: Optional[threading.Event], issuer: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise LoginCancelledError(f"Session creation for {issuer} was cancelled")
