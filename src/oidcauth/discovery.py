"""OpenID Connect endpoint discovery.

An :class:`EndpointResolver` turns an issuer URL into
:class:`~oidcauth.models.ProviderMetadata`. The default
:class:`HTTPEndpointResolver` fetches
``<issuer>/.well-known/openid-configuration`` and checks that the two
endpoints the login flow needs are present; it does not validate the rest of
the document.

Any object with a matching ``resolve`` method can be passed to
:func:`oidcauth.create` instead, which is how tests avoid the network.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from oidcauth.exceptions import DiscoveryError
from oidcauth.models import ProviderMetadata

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class EndpointResolver(Protocol):
    """Resolves an issuer URL into provider metadata."""

    def resolve(self, issuer: str, timeout: Optional[float] = None) -> ProviderMetadata:
        """Return metadata for *issuer* or raise :class:`DiscoveryError`."""
        ...


class HTTPEndpointResolver:
    """Fetch provider metadata from the issuer's discovery document.

    Args:
        http_client: Optional :class:`httpx.Client` to issue the request
            with. When ``None``, a one-off ``httpx.get`` is used.
    """

    def __init__(self, http_client: Optional[httpx.Client] = None) -> None:
        self._http_client = http_client

    def discovery_url(self, issuer: str) -> str:
        """Return the discovery document URL for *issuer*."""
        return issuer.rstrip("/") + WELL_KNOWN_PATH

    def resolve(self, issuer: str, timeout: Optional[float] = None) -> ProviderMetadata:
        """Fetch and validate the discovery document for *issuer*.

        Args:
            issuer: Canonical issuer URL (no trailing slash).
            timeout: Seconds to wait for the issuer; ``None`` means 30.

        Returns:
            The parsed :class:`~oidcauth.models.ProviderMetadata`.

        Raises:
            DiscoveryError: If the document cannot be fetched, is not a JSON
                object, or lacks ``authorization_endpoint`` /
                ``token_endpoint``.
        """
        url = self.discovery_url(issuer)
        logger.debug("Fetching OpenID configuration from %s", url)
        try:
            response = self._get(url, 30.0 if timeout is None else timeout)
            response.raise_for_status()
            doc: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise DiscoveryError(
                f"OpenID discovery failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"OpenID discovery failed: {exc}") from exc
        except ValueError as exc:
            raise DiscoveryError(f"OpenID discovery document is not valid JSON: {exc}") from exc

        if not isinstance(doc, dict):
            raise DiscoveryError("OpenID discovery document is not a JSON object")
        for field in ("authorization_endpoint", "token_endpoint"):
            if field not in doc:
                raise DiscoveryError(f"OpenID discovery document missing '{field}'")

        try:
            metadata = ProviderMetadata.model_validate(doc)
        except ValidationError as exc:
            raise DiscoveryError(f"Invalid OpenID discovery document: {exc}") from exc

        if metadata.issuer and metadata.issuer.rstrip("/") != issuer.rstrip("/"):
            logger.warning(
                "Issuer in discovery document (%s) differs from requested issuer (%s)",
                metadata.issuer,
                issuer,
            )
        return metadata

    def _get(self, url: str, timeout: float) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http_client is not None:
            return self._http_client.get(url, headers=headers, timeout=timeout)
        return httpx.get(url, headers=headers, timeout=timeout)
