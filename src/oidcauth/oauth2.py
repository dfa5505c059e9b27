"""OAuth2 authorization-code client: authorization URLs, code exchange, refresh.

:class:`OAuth2Client` holds a client's identity and the issuer's endpoints
and speaks the two token-endpoint grants the package needs:

1. ``authorization_code`` -- exchange the code from the browser callback
   (with the PKCE ``code_verifier`` when one was used, :rfc:`7636`).
2. ``refresh_token`` -- mint a fresh access token from a refresh token.

Also exports :func:`generate_pkce_pair`.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from typing import Any, Iterable, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from oidcauth.exceptions import TokenExchangeError, TokenRefreshError
from oidcauth.models import ProviderMetadata, Token

logger = logging.getLogger(__name__)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


class OAuth2Client:
    """Authorization-code client for one issuer and client id.

    Args:
        client_id: The registered OAuth2 client identifier.
        endpoints: Provider metadata with the authorization and token
            endpoints.
        scopes: Scopes to request.
        client_secret: Secret for confidential clients; ``None`` for public
            (native) clients.
    """

    def __init__(
        self,
        client_id: str,
        endpoints: ProviderMetadata,
        scopes: Iterable[str] = (),
        client_secret: Optional[str] = None,
    ) -> None:
        self.client_id = client_id
        self.endpoints = endpoints
        self.scopes = frozenset(scopes)
        self._client_secret = client_secret

    def authorization_url(
        self,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        """Build the URL the user's browser is sent to.

        Args:
            state: The attempt's anti-forgery token.
            redirect_uri: Loopback URI the issuer redirects back to.
            code_challenge: PKCE S256 challenge, or ``None`` to omit PKCE.

        Returns:
            The authorization endpoint with the request encoded in its query.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        if self.scopes:
            params["scope"] = " ".join(sorted(self.scopes))
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"

        endpoint = self.endpoints.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    def exchange(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        timeout: float = 30.0,
    ) -> Token:
        """Exchange an authorization code for tokens.

        Args:
            code: The authorization code received on the callback.
            redirect_uri: The redirect URI used in the authorization request.
            code_verifier: The PKCE verifier matching the challenge, if any.
            timeout: Seconds to wait for the token endpoint.

        Returns:
            The issued :class:`~oidcauth.models.Token`.

        Raises:
            TokenExchangeError: On HTTP errors or an unusable response.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        token = self._token_request(data, timeout, TokenExchangeError, "Token exchange")
        logger.debug("Exchanged authorization code at %s", self.endpoints.token_endpoint)
        return token

    def refresh(self, refresh_token: str, timeout: float = 30.0) -> Token:
        """Obtain a new access token using a refresh token.

        If the issuer does not rotate the refresh token, the old one is kept
        on the returned token.

        Raises:
            TokenRefreshError: On HTTP errors or an unusable response.
        """
        data: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        token = self._token_request(data, timeout, TokenRefreshError, "Token refresh")
        if not token.refresh_token:
            token = token.model_copy(update={"refresh_token": refresh_token})
        logger.debug("Refreshed access token at %s", self.endpoints.token_endpoint)
        return token

    def _token_request(
        self,
        data: dict[str, str],
        timeout: float,
        error_cls: type[TokenExchangeError],
        action: str,
    ) -> Token:
        data["client_id"] = self.client_id
        if self._client_secret:
            data["client_secret"] = self._client_secret

        try:
            response = httpx.post(
                self.endpoints.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
                timeout=timeout,
            )
            response.raise_for_status()
            token_data: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise error_cls(
                f"{action} failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{action} failed: {exc}") from exc
        except ValueError as exc:
            raise error_cls(f"{action} returned invalid JSON: {exc}") from exc

        if not isinstance(token_data, dict):
            raise error_cls(f"{action} response is not a JSON object")
        if "access_token" not in token_data:
            raise error_cls(f"{action} response missing 'access_token' field")

        try:
            return Token.from_response(token_data)
        except (ValidationError, ValueError, TypeError) as exc:
            raise error_cls(f"{action} response is invalid: {exc}") from exc
