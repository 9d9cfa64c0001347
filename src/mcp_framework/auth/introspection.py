"""OAuth2 token introspection for opaque tokens (RFC 7662).

Validates non-JWT (opaque) tokens through the provider's introspection
endpoint. Active results are cached under the SHA-256 digest of the token
(never the raw token) and dropped once either the cache TTL or the token's own
``exp`` has passed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from mcp_framework.auth.claims import REQUIRED_INTROSPECTION_CLAIMS, TokenClaims
from mcp_framework.auth.utils import parse_numeric_date
from mcp_framework.errors import (
    InactiveTokenError,
    MalformedTokenError,
    MissingClaimError,
    TokenExpiredError,
    TokenNotYetValidError,
    UpstreamError,
)
from mcp_framework.observability import get_logger
from mcp_framework.utils.cache import ExpiringCache
from mcp_framework.utils.sanitization import hash_token

DEFAULT_INTROSPECTION_CACHE_TTL = 300.0
DEFAULT_INTROSPECTION_TIMEOUT = 10.0
DEFAULT_INTROSPECTION_CACHE_SIZE = 1000


@dataclass
class IntrospectionConfig:
    """Configuration for RFC 7662 token introspection.

    Attributes:
        endpoint: URL of the introspection endpoint.
        client_id: Client id used for HTTP Basic auth to the endpoint.
        client_secret: Client secret used for HTTP Basic auth.
        cache_ttl: Seconds an active result stays cached.
        timeout: Request timeout in seconds.
        max_cache_size: Maximum cached results (0 = unlimited).
    """

    endpoint: str
    client_id: str
    client_secret: str
    cache_ttl: float = DEFAULT_INTROSPECTION_CACHE_TTL
    timeout: float = DEFAULT_INTROSPECTION_TIMEOUT
    max_cache_size: int = DEFAULT_INTROSPECTION_CACHE_SIZE


def _claims_exp(claims: TokenClaims) -> Optional[float]:
    return parse_numeric_date(claims.exp)


class IntrospectionValidator:
    """RFC 7662 token introspection client with caching.

    Calls the provider's introspection endpoint with client credentials
    (Basic auth). ``active: false`` is a rejection; any transport or protocol
    failure raises ``UpstreamError`` so the caller fails closed.

    Example:
        >>> validator = IntrospectionValidator(IntrospectionConfig(
        ...     endpoint="https://auth.example.com/oauth/introspect",
        ...     client_id="my-client",
        ...     client_secret="secret",
        ... ))
        >>> claims = await validator.validate("opaque-token-here")
        >>> claims.sub, claims.scopes
    """

    def __init__(
        self,
        config: IntrospectionConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._cache: ExpiringCache[str, TokenClaims] = ExpiringCache(
            default_ttl=config.cache_ttl,
            max_size=config.max_cache_size,
            expiry_of=_claims_exp,
            prune_threshold=config.max_cache_size or None,
        )
        self._logger = logger if logger is not None else get_logger(__name__)
        self.request_count = 0

    @property
    def config(self) -> IntrospectionConfig:
        return self._config

    def clear_cache(self) -> None:
        self._cache.clear_all()

    async def validate(self, token: str) -> TokenClaims:
        """Introspect a token and return its claims when active.

        Raises:
            InactiveTokenError: Endpoint reported ``active: false``.
            MissingClaimError: Active response lacks ``sub``, ``iss``, ``aud`` or ``exp``.
            TokenExpiredError / TokenNotYetValidError: Time claims out of range.
            UpstreamError: Endpoint unreachable, non-2xx, or malformed response.
        """
        key = hash_token(token)
        cached = self._cache.get(key)
        if cached is not None:
            self._check_time(cached.to_dict())
            return cached

        body = await self._do_introspect(token)

        if not body["active"]:
            self._logger.info("mcp.introspection.inactive")
            raise InactiveTokenError()

        for name in REQUIRED_INTROSPECTION_CLAIMS:
            if body.get(name) in (None, ""):
                raise MissingClaimError(name, source="Introspection response")

        self._check_time(body)

        payload = {k: v for k, v in body.items() if k != "active"}
        try:
            claims = TokenClaims.from_payload(payload)
        except ValueError as e:
            raise MalformedTokenError(f"Invalid introspection claims: {e}") from e

        self._cache.set(key, claims)
        self._logger.debug("mcp.introspection.active", sub=claims.sub, iss=claims.iss)
        return claims

    def _check_time(self, claims: dict[str, Any]) -> None:
        now = time.time()
        exp = parse_numeric_date(claims.get("exp"))
        if exp is None:
            raise MalformedTokenError("Invalid exp claim in introspection response")
        if now >= exp:
            raise TokenExpiredError(details={"exp": claims.get("exp")})
        if claims.get("nbf") is not None:
            nbf = parse_numeric_date(claims.get("nbf"))
            if nbf is None:
                raise MalformedTokenError("Invalid nbf claim in introspection response")
            if now < nbf:
                raise TokenNotYetValidError(details={"nbf": claims.get("nbf")})

    async def _do_introspect(self, token: str) -> dict[str, Any]:
        """Perform the HTTP introspection request (no cache)."""
        auth = (self._config.client_id, self._config.client_secret)
        data = {"token": token, "token_type_hint": "access_token"}

        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(self._config.timeout)}
        if self._transport is not None:
            kwargs["transport"] = self._transport

        self.request_count += 1
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                resp = await client.post(
                    self._config.endpoint,
                    auth=auth,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            self._logger.warning(
                "mcp.introspection.request_failed", endpoint=self._config.endpoint, error=str(e)
            )
            raise UpstreamError(
                f"Introspection request failed: {e}",
                details={"endpoint": self._config.endpoint},
            ) from e

        if not resp.is_success:
            raise UpstreamError(
                f"Introspection endpoint returned {resp.status_code}",
                details={"endpoint": self._config.endpoint},
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamError("Introspection response is not valid JSON") from e

        if not isinstance(body, dict) or not isinstance(body.get("active"), bool):
            raise UpstreamError("Introspection response missing boolean 'active'")
        return body
