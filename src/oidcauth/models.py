"""Pydantic models shared across oidcauth modules.

**Protocol models** -- data that crosses the wire or the browser:
    :class:`ProviderMetadata`, :class:`Token`, and :class:`CallbackResult`.

**Configuration models** -- tunables for a session:
    :class:`SessionConfig`.

**Storage models** -- the on-disk shape used by
:class:`~oidcauth.credential_store.FileCredentialStore`:
    :class:`CredentialEntry` and :class:`CredentialFile`.

All models use Pydantic v2. :class:`ProviderMetadata` accepts unknown keys
so that the full discovery document stays available via ``model_extra``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# Tokens are treated as expired this long before their real expiry so that a
# request does not race the issuer's clock.
EXPIRY_DELTA = timedelta(seconds=10)


# --- Provider metadata ---


class ProviderMetadata(BaseModel):
    """The subset of an OpenID Connect discovery document used for login.

    Only ``authorization_endpoint`` and ``token_endpoint`` are required.
    ``jwks_uri`` is carried along as the verification context for callers
    that validate ID tokens themselves.

    Example::

        ProviderMetadata(
            issuer="https://accounts.example.com",
            authorization_endpoint="https://accounts.example.com/authorize",
            token_endpoint="https://accounts.example.com/token",
        )
    """

    model_config = ConfigDict(extra="allow")

    issuer: Optional[str] = None
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    scopes_supported: list[str] = Field(default_factory=list)
    code_challenge_methods_supported: list[str] = Field(default_factory=list)


# --- Tokens ---


class Token(BaseModel):
    """An OAuth2 token as issued by the token endpoint.

    Only :attr:`refresh_token` is ever persisted; access tokens are derived
    on demand by refreshing.

    Attributes:
        access_token: Bearer credential for API calls. Empty for a token
            rebuilt from the credential cache.
        token_type: Authorization scheme, usually ``"Bearer"``.
        refresh_token: Long-lived credential used to mint new access tokens.
        expiry: Aware UTC time at which the access token expires, or
            ``None`` when the issuer did not say.
        id_token: The raw OpenID Connect ID token, when returned.
        scope: Space-separated scopes actually granted, when returned.
    """

    access_token: str = ""
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> Token:
        """Build a token from a token-endpoint JSON response.

        ``expires_in`` (seconds) is converted to an absolute :attr:`expiry`.

        Raises:
            pydantic.ValidationError: If a field has the wrong type.
            ValueError: If ``expires_in`` is not a usable number of seconds.
        """
        expiry: Optional[datetime] = None
        expires_in = data.get("expires_in")
        if expires_in is not None and str(expires_in) != "":
            try:
                expiry = datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))
            except OverflowError as exc:
                raise ValueError(f"expires_in out of range: {expires_in!r}") from exc
        return cls(
            access_token=data.get("access_token", ""),
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            expiry=expiry,
            id_token=data.get("id_token"),
            scope=data.get("scope"),
        )

    @property
    def authorization_type(self) -> str:
        """The scheme for the ``Authorization`` header, normalised like ``Bearer``."""
        if self.token_type.lower() == "bearer":
            return "Bearer"
        return self.token_type

    def is_valid(self) -> bool:
        """Return ``True`` if the access token is present and not about to expire."""
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) < expiry - EXPIRY_DELTA


# --- Callback ---


class CallbackResult(BaseModel):
    """Query parameters captured from the single authorization callback request."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


# --- Configuration ---


class SessionConfig(BaseModel):
    """Tunables for a :class:`~oidcauth.session.Session`.

    Timeouts are in seconds. Use :func:`oidcauth.config.load_session_config`
    to build one with environment overrides applied.
    """

    discovery_timeout: float = Field(default=30.0, gt=0)
    exchange_timeout: float = Field(default=30.0, gt=0)
    callback_timeout: float = Field(
        default=300.0, gt=0, description="How long to wait for the browser redirect"
    )
    client_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for the authenticated HTTP client"
    )
    callback_path: str = Field(default="/callback", pattern=r"^/")
    use_pkce: bool = True
    announce_url: bool = Field(
        default=True,
        description="Print the authorization URL to stderr when opening the browser",
    )
    client_secret_source: Optional[str] = Field(
        default=None,
        description="Credential source for a confidential client: env:VAR, file:/path, "
        "keyring:service:account",
    )


# --- File credential storage ---


class CredentialEntry(BaseModel):
    """A refresh token stored for one account (client id) of a service (issuer)."""

    secret: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CredentialFile(BaseModel):
    """Contents of one credential file: every stored account for a single service."""

    service: str
    accounts: dict[str, CredentialEntry] = Field(default_factory=dict)
