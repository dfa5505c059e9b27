"""Exception hierarchy for oidcauth.

Every error raised by the package inherits from :class:`OIDCAuthError`, so
callers can catch the whole family with one ``except`` clause or pick out
the exact failure kind they want to react to.

Subclass hierarchy::

    OIDCAuthError
    +-- ConfigError
    +-- DiscoveryError
    +-- LoginError
    |   +-- ListenerBindError
    |   +-- BrowserLaunchError
    |   +-- StateMismatchError
    |   +-- AuthorizationDeniedError
    |   +-- CallbackTimeoutError
    |   +-- LoginCancelledError
    |   +-- TokenExchangeError
    |       +-- TokenRefreshError
    +-- CredentialStoreError
    |   +-- CredentialNotFoundError
    |   +-- StoreError
    +-- UnsupportedTransportError
    +-- MissingRefreshTokenError

A missing entry raises :class:`CredentialNotFoundError`; a failing backend
raises :class:`StoreError`. Neither is a subclass of the other.
"""

from __future__ import annotations

from typing import Optional


class OIDCAuthError(Exception):
    """Base exception for all oidcauth errors.

    Args:
        message: Human-readable error description.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(OIDCAuthError):
    """Raised for invalid configuration values or unresolvable credential sources."""


class DiscoveryError(OIDCAuthError):
    """Raised when the issuer's metadata is unreachable or invalid."""


class LoginError(OIDCAuthError):
    """Base class for failures of a single browser login attempt."""


class ListenerBindError(LoginError):
    """Raised when no loopback port could be bound for the callback listener."""


class BrowserLaunchError(LoginError):
    """Raised when the operating system could not open the authorization URL."""


class StateMismatchError(LoginError):
    """Raised when the callback's ``state`` does not match the attempt's state.

    The authorization code is never exchanged when this is raised.
    """


class AuthorizationDeniedError(LoginError):
    """Raised when the issuer redirects back with an ``error`` instead of a code.

    Args:
        message: Human-readable error description.
        error: The OAuth2 ``error`` code from the callback, if any.
        error_description: The optional ``error_description`` from the callback.
    """

    def __init__(
        self,
        message: str,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ):
        super().__init__(message)
        self.error = error
        self.error_description = error_description


class CallbackTimeoutError(LoginError):
    """Raised when no callback request arrived before the timeout."""


class LoginCancelledError(LoginError):
    """Raised when the caller cancelled the login before it completed."""


class TokenExchangeError(LoginError):
    """Raised when the token endpoint rejects the request or is unreachable."""


class TokenRefreshError(TokenExchangeError):
    """Raised when a refresh-token grant fails (typically a stale cached token)."""


class CredentialStoreError(OIDCAuthError):
    """Base class for credential store outcomes other than success."""


class CredentialNotFoundError(CredentialStoreError):
    """Raised when no credential is stored for the requested key."""


class StoreError(CredentialStoreError):
    """Raised when the credential store backend itself fails."""


class UnsupportedTransportError(OIDCAuthError):
    """Raised when an HTTP client is not backed by a managed token source."""


class MissingRefreshTokenError(OIDCAuthError):
    """Raised when a token has no refresh token to persist."""
