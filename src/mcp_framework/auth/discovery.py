"""Authorization server metadata discovery.

Fetches OAuth 2.0 Authorization Server Metadata (RFC 8414) from
``/.well-known/oauth-authorization-server``, falling back to OpenID Connect
Discovery (``/.well-known/openid-configuration``) for providers that only
publish the latter. Documents are cached per issuer for one hour.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from authlib.oauth2.rfc8414 import get_well_known_url as get_oauth_well_known_url
from authlib.oidc.discovery import get_well_known_url as get_oidc_well_known_url
from pydantic import Field

from mcp_framework.errors import UpstreamError
from mcp_framework.models.base import FrameworkBaseModel
from mcp_framework.observability import get_logger
from mcp_framework.utils.cache import ExpiringCache

DISCOVERY_CACHE_TTL_SECONDS = 3600.0
DISCOVERY_CACHE_MAX_ENTRIES = 16
DEFAULT_DISCOVERY_TIMEOUT = 10.0


class AuthorizationServerMetadata(FrameworkBaseModel):
    """Subset of RFC 8414 metadata used by the resource server and PKCE flow.

    Attributes:
        issuer: Authorization server issuer identifier.
        authorization_endpoint: Endpoint the user agent is redirected to.
        token_endpoint: Code-for-token exchange endpoint.
        introspection_endpoint: RFC 7662 endpoint, if published.
        jwks_uri: JWKS endpoint, if published.
        scopes_supported: Advertised scopes.
        code_challenge_methods_supported: Advertised PKCE methods.
    """

    issuer: str = Field(..., description="Authorization server issuer identifier")
    authorization_endpoint: Optional[str] = Field(default=None)
    token_endpoint: Optional[str] = Field(default=None)
    introspection_endpoint: Optional[str] = Field(default=None)
    jwks_uri: Optional[str] = Field(default=None)
    scopes_supported: list[str] = Field(default_factory=list)
    code_challenge_methods_supported: list[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, data: Any) -> "AuthorizationServerMetadata":
        """Build from a raw metadata document, ignoring unknown members.

        Raises:
            ValueError: the document is not a JSON object, or ``issuer`` is
                missing or not a string.
        """
        if not isinstance(data, dict):
            raise ValueError("Metadata response is not a JSON object")
        issuer = data.get("issuer")
        if not issuer or not isinstance(issuer, str):
            raise ValueError("Metadata response missing required 'issuer'")

        def _str(name: str) -> Optional[str]:
            value = data.get(name)
            return value if isinstance(value, str) and value else None

        def _str_list(name: str) -> list[str]:
            value = data.get(name)
            return [str(s) for s in value] if isinstance(value, list) else []

        return cls(
            issuer=issuer,
            authorization_endpoint=_str("authorization_endpoint"),
            token_endpoint=_str("token_endpoint"),
            introspection_endpoint=_str("introspection_endpoint"),
            jwks_uri=_str("jwks_uri"),
            scopes_supported=_str_list("scopes_supported"),
            code_challenge_methods_supported=_str_list("code_challenge_methods_supported"),
        )


def metadata_urls(issuer_url: str) -> list[str]:
    """Return candidate metadata URLs for an issuer, RFC 8414 first."""
    issuer_url = issuer_url.rstrip("/")
    return [
        get_oauth_well_known_url(issuer_url, external=True),
        get_oidc_well_known_url(issuer_url, external=True),
    ]


class AuthorizationServerDiscovery:
    """Discovery client for authorization server metadata.

    Example:
        >>> discovery = AuthorizationServerDiscovery()
        >>> metadata = await discovery.discover("https://auth.example.com")
        >>> metadata.authorization_endpoint
        'https://auth.example.com/authorize'
    """

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        cache_ttl: float = DISCOVERY_CACHE_TTL_SECONDS,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout
        self._cache: ExpiringCache[str, AuthorizationServerMetadata] = ExpiringCache(
            default_ttl=cache_ttl, max_size=DISCOVERY_CACHE_MAX_ENTRIES
        )
        self._logger = logger if logger is not None else get_logger(__name__)

    async def discover(self, issuer_url: str) -> AuthorizationServerMetadata:
        """Return metadata for ``issuer_url``, from cache when fresh.

        Raises:
            UpstreamError: Neither well-known document could be fetched or parsed.
        """
        key = issuer_url.rstrip("/")
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        metadata = await self._fetch(key)
        self._cache.set(key, metadata)
        return metadata

    def clear_cache(self) -> None:
        self._cache.clear_all()

    async def _fetch(self, issuer_url: str) -> AuthorizationServerMetadata:
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(self._timeout)}
        if self._transport is not None:
            kwargs["transport"] = self._transport

        failures: list[str] = []
        async with httpx.AsyncClient(**kwargs) as client:
            for url in metadata_urls(issuer_url):
                try:
                    resp = await client.get(url, headers={"Accept": "application/json"})
                except httpx.HTTPError as e:
                    failures.append(f"{url}: {e}")
                    continue
                if not resp.is_success:
                    failures.append(f"{url}: HTTP {resp.status_code}")
                    continue
                try:
                    metadata = AuthorizationServerMetadata.from_document(resp.json())
                except ValueError as e:
                    failures.append(f"{url}: {e}")
                    continue
                self._logger.info("mcp.discovery.metadata_fetched", issuer=metadata.issuer, url=url)
                return metadata

        self._logger.warning("mcp.discovery.failed", issuer=issuer_url, failures=failures)
        raise UpstreamError(
            f"Unable to discover authorization server metadata for {issuer_url}",
            details={"issuer": issuer_url, "failures": failures},
        )
