"""oidcauth -- browser-based OpenID Connect login for desktop and CLI programs.

This package authenticates an end user against an OpenID Connect issuer by
opening their browser, capturing the authorization-code redirect on a
one-shot loopback endpoint, and exchanging the code for tokens. The refresh
token can be kept in the operating system's credential store so later runs
skip the browser.

Typical workflow::

    import oidcauth

    session = oidcauth.create("https://accounts.example.com", "my-cli", "profile")
    client = session.login_with_cache()      # browser only if nothing cached
    session.store_token_in_cache(client)     # remember the refresh token
    client.get("https://api.example.com/me")

Modules:
    session: :class:`Session` and the :func:`create` factory.
    flow: The single-flight browser login.
    callback: The one-shot loopback callback server.
    oauth2: Authorization URLs, code exchange, and refresh grants.
    transport: Refreshing token source and the :class:`httpx.Auth` using it.
    credential_store: Keyring and file-backed refresh-token storage.
    discovery: Endpoint discovery from the issuer's metadata.
    browser: Platform browser launchers.
    config: Environment-driven configuration and credential sources.
    exceptions: The exception hierarchy.
"""

from oidcauth.exceptions import (
    AuthorizationDeniedError,
    BrowserLaunchError,
    CallbackTimeoutError,
    ConfigError,
    CredentialNotFoundError,
    CredentialStoreError,
    DiscoveryError,
    ListenerBindError,
    LoginCancelledError,
    LoginError,
    MissingRefreshTokenError,
    OIDCAuthError,
    StateMismatchError,
    StoreError,
    TokenExchangeError,
    TokenRefreshError,
    UnsupportedTransportError,
)
from oidcauth.models import ProviderMetadata, SessionConfig, Token
from oidcauth.session import Session, create

__version__ = "0.1.0"

__all__ = [
    "AuthorizationDeniedError",
    "BrowserLaunchError",
    "CallbackTimeoutError",
    "ConfigError",
    "CredentialNotFoundError",
    "CredentialStoreError",
    "DiscoveryError",
    "ListenerBindError",
    "LoginCancelledError",
    "LoginError",
    "MissingRefreshTokenError",
    "OIDCAuthError",
    "ProviderMetadata",
    "Session",
    "SessionConfig",
    "StateMismatchError",
    "StoreError",
    "Token",
    "TokenExchangeError",
    "TokenRefreshError",
    "UnsupportedTransportError",
    "create",
]
