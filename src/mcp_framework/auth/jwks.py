"""JWT validation against a JSON Web Key Set.

Fetches signing keys from the provider's JWKS URI and validates JWT access
tokens using joserfc. Keys are cached by key id (``kid``) with a bounded
number of entries and a TTL (default 15 minutes); an unknown ``kid`` triggers
a refetch, which supports key rotation. Any fetch failure fails closed.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Optional

import httpx
import structlog
from joserfc import jwk
from joserfc import jwt as jose_jwt
from joserfc.errors import BadSignatureError, DecodeError, JoseError
from joserfc.jws import extract_compact

from mcp_framework.auth.claims import REQUIRED_JWT_CLAIMS, TokenClaims
from mcp_framework.auth.utils import parse_numeric_date
from mcp_framework.errors import (
    AudienceMismatchError,
    InvalidSignatureError,
    IssuerMismatchError,
    MalformedTokenError,
    MissingClaimError,
    TokenExpiredError,
    TokenNotYetValidError,
    UnsupportedAlgorithmError,
    UpstreamError,
)
from mcp_framework.observability import get_logger
from mcp_framework.utils.cache import ExpiringCache
from mcp_framework.utils.sanitization import sanitize_url

logger = get_logger(__name__)

DEFAULT_ALGORITHMS = ["RS256", "ES256"]
JWKS_CACHE_TTL_SECONDS = 900.0
JWKS_CACHE_MAX_ENTRIES = 5
JWKS_REQUESTS_PER_MINUTE = 10
DEFAULT_HTTP_TIMEOUT = 10.0
WILDCARD_AUDIENCE = "*"


@dataclass
class JWTValidationConfig:
    """Configuration for JWT access token validation.

    Attributes:
        jwks_uri: URL of the JWKS endpoint.
        issuer: Expected ``iss`` claim (exact match).
        audience: Expected audience; ``"*"`` disables the audience check.
        algorithms: Allowed signing algorithms.
        cache_ttl: Seconds a fetched signing key stays cached.
        cache_max_entries: Maximum number of cached signing keys.
        rate_limit: Limit JWKS fetches to JWKS_REQUESTS_PER_MINUTE.
        timeout: Timeout in seconds for the JWKS request.
    """

    jwks_uri: str
    issuer: str
    audience: str
    algorithms: list[str] = field(default_factory=lambda: list(DEFAULT_ALGORITHMS))
    cache_ttl: float = JWKS_CACHE_TTL_SECONDS
    cache_max_entries: int = JWKS_CACHE_MAX_ENTRIES
    rate_limit: bool = True
    timeout: float = DEFAULT_HTTP_TIMEOUT


async def fetch_keys(
    jwks_uri: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> jwk.KeySet:
    """Fetch JWKS from URI and return a joserfc KeySet.

    Args:
        jwks_uri: URL of the JWKS endpoint (e.g. from authorization server metadata).
        transport: Optional httpx transport for testing.
        timeout: Request timeout in seconds.

    Returns:
        KeySet with every key published by the endpoint.

    Raises:
        UpstreamError: On network errors, timeouts, non-2xx responses or a
            malformed JWKS document.
    """
    kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout)}
    if transport is not None:
        kwargs["transport"] = transport

    try:
        async with httpx.AsyncClient(**kwargs) as client:
            resp = await client.get(jwks_uri, headers={"Accept": "application/json"})
            resp.raise_for_status()
            data = resp.json()
        key_set = jwk.KeySet.import_key_set(data)
    except httpx.HTTPStatusError as e:
        raise UpstreamError(
            f"JWKS endpoint returned {e.response.status_code}",
            details={"jwks_uri": jwks_uri},
            status_code=e.response.status_code,
            body=e.response.text,
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamError(
            f"Failed to fetch signing keys: {e}", details={"jwks_uri": jwks_uri}
        ) from e
    except (ValueError, TypeError, KeyError, JoseError) as e:
        raise UpstreamError(
            f"Invalid JWKS document: {e}", details={"jwks_uri": jwks_uri}
        ) from e

    logger.info("mcp.jwks.fetched", uri=sanitize_url(jwks_uri), key_count=len(key_set.keys))
    return key_set


class JWKSKeyCache:
    """Signing keys indexed by ``kid`` with TTL, size bound and fetch rate limit.

    A cache miss fetches the whole key set and caches every key that carries
    a ``kid``. Concurrent misses for the same ``kid`` are serialized so a burst
    of requests carrying a freshly rotated key causes a single fetch.
    """

    def __init__(
        self,
        jwks_uri: str,
        *,
        ttl: float = JWKS_CACHE_TTL_SECONDS,
        max_entries: int = JWKS_CACHE_MAX_ENTRIES,
        rate_limit: bool = True,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._jwks_uri = jwks_uri
        self._keys: ExpiringCache[str, Any] = ExpiringCache(default_ttl=ttl, max_size=max_entries)
        self._rate_limit = rate_limit
        self._timeout = timeout
        self._transport = transport
        self._fetch_times: deque[float] = deque()
        self._fetch_times_lock = Lock()
        self._fetch_lock = asyncio.Lock()
        self.fetch_count = 0

    def _acquire_fetch_slot(self) -> bool:
        if not self._rate_limit:
            return True
        now = time.monotonic()
        with self._fetch_times_lock:
            while self._fetch_times and now - self._fetch_times[0] >= 60.0:
                self._fetch_times.popleft()
            if len(self._fetch_times) >= JWKS_REQUESTS_PER_MINUTE:
                return False
            self._fetch_times.append(now)
            return True

    async def get_signing_key(self, kid: str) -> Any:
        """Return the key for ``kid``, fetching the JWKS on a cache miss.

        Raises:
            UpstreamError: JWKS unreachable, malformed, or fetch rate exceeded.
            InvalidSignatureError: No key with this ``kid`` is published.
        """
        key = self._keys.get(kid)
        if key is not None:
            return key

        async with self._fetch_lock:
            key = self._keys.get(kid)
            if key is not None:
                return key
            if not self._acquire_fetch_slot():
                logger.warning("mcp.jwks.rate_limited", uri=self._jwks_uri, kid=kid)
                raise UpstreamError(
                    "JWKS request rate limit exceeded", details={"jwks_uri": self._jwks_uri}
                )
            key_set = await fetch_keys(
                self._jwks_uri, transport=self._transport, timeout=self._timeout
            )
            self.fetch_count += 1
            for candidate in key_set.keys:
                if candidate.kid:
                    self._keys.set(candidate.kid, candidate)
                    if candidate.kid == kid:
                        key = candidate

        if key is None:
            raise InvalidSignatureError(
                f"Unable to find a signing key that matches kid: {kid}",
                details={"kid": kid},
            )
        return key

    def invalidate(self) -> None:
        self._keys.clear_all()


def decode_unverified(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Decode (without verifying) a compact JWT into ``(header, payload)``.

    Raises:
        MalformedTokenError: Not three segments, or undecodable header/payload.
    """
    if not token or token.count(".") != 2:
        raise MalformedTokenError("Invalid token format: unable to decode")
    try:
        compact = extract_compact(token.encode("ascii"))
        header = dict(compact.headers())
        payload = json.loads(compact.payload)
    except (JoseError, ValueError, UnicodeError) as e:
        raise MalformedTokenError("Invalid token format: unable to decode") from e
    if not isinstance(payload, dict):
        raise MalformedTokenError("Invalid token payload")
    return header, payload


class JWTValidator:
    """Validates JWT access tokens using keys published at a JWKS URI.

    Validation steps, in order:

    1. Decode the header; reject non-JWTs and tokens without ``kid``.
    2. Reject header algorithms outside the allow-list.
    3. Reject already-expired tokens before any network round-trip.
    4. Resolve the signing key by ``kid`` (cached; fetch failures fail closed).
    5. Verify the signature, then ``iss``, ``exp`` and ``nbf``.
    6. Check the audience: ``aud`` contains the configured audience, or
       ``client_id`` equals it (providers such as Cognito omit ``aud`` on
       access tokens). Skipped when the audience is ``"*"``.
    7. Require ``sub``, ``iss`` and ``exp``.

    Example:
        >>> validator = JWTValidator(JWTValidationConfig(
        ...     jwks_uri="https://auth.example.com/.well-known/jwks.json",
        ...     issuer="https://auth.example.com",
        ...     audience="https://mcp.example.com",
        ... ))
        >>> claims = await validator.validate(token)
    """

    def __init__(
        self,
        config: JWTValidationConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self._config = config
        self._algorithms = list(config.algorithms or DEFAULT_ALGORITHMS)
        self._keys = JWKSKeyCache(
            config.jwks_uri,
            ttl=config.cache_ttl,
            max_entries=config.cache_max_entries,
            rate_limit=config.rate_limit,
            timeout=config.timeout,
            transport=transport,
        )
        self._logger = logger if logger is not None else get_logger(__name__)
        self._logger.debug(
            "mcp.jwt.validator_initialized",
            jwks_uri=config.jwks_uri,
            audience=config.audience,
            algorithms=self._algorithms,
        )

    @property
    def config(self) -> JWTValidationConfig:
        return self._config

    @property
    def key_cache(self) -> JWKSKeyCache:
        return self._keys

    async def validate(self, token: str) -> TokenClaims:
        """Validate a JWT and return its claims.

        Raises:
            AuthenticationError: A typed subclass describing the rejection.
            UpstreamError: JWKS endpoint unreachable or malformed.
        """
        header, unverified = decode_unverified(token)

        kid = header.get("kid")
        if not kid:
            raise MalformedTokenError("Invalid token: missing kid in header")

        alg = header.get("alg")
        if alg not in self._algorithms:
            raise UnsupportedAlgorithmError(alg, self._algorithms)

        self._check_expiry(unverified)

        key = await self._keys.get_signing_key(str(kid))

        try:
            verified = jose_jwt.decode(token, key, algorithms=self._algorithms)
        except BadSignatureError as e:
            self._logger.warning("mcp.jwt.bad_signature", kid=kid)
            raise InvalidSignatureError("Token verification failed: invalid signature") from e
        except DecodeError as e:
            raise MalformedTokenError(f"Token verification failed: {e}") from e
        except JoseError as e:
            raise InvalidSignatureError(f"Token verification failed: {e}") from e

        claims = dict(verified.claims)
        self._check_required(claims)
        self._check_issuer(claims)
        self._check_expiry(claims)
        self._check_not_before(claims)
        self._check_audience(claims)

        self._logger.debug(
            "mcp.jwt.validated",
            sub=claims.get("sub"),
            iss=claims.get("iss"),
            aud=claims.get("aud", "<not present>"),
        )
        try:
            return TokenClaims.from_payload(claims)
        except ValueError as e:
            raise MalformedTokenError(f"Invalid token claims: {e}") from e

    def _check_required(self, claims: dict[str, Any]) -> None:
        for name in REQUIRED_JWT_CLAIMS:
            if claims.get(name) in (None, ""):
                raise MissingClaimError(name)

    def _check_issuer(self, claims: dict[str, Any]) -> None:
        if claims.get("iss") != self._config.issuer:
            raise IssuerMismatchError(
                f"Token issuer mismatch. Expected {self._config.issuer}, got {claims.get('iss')}",
                details={"expected": self._config.issuer, "iss": claims.get("iss")},
            )

    def _check_expiry(self, claims: dict[str, Any]) -> None:
        if "exp" not in claims:
            return
        exp = parse_numeric_date(claims.get("exp"))
        if exp is None:
            raise MalformedTokenError("Invalid exp claim")
        if time.time() >= exp:
            raise TokenExpiredError(details={"exp": claims.get("exp")})

    def _check_not_before(self, claims: dict[str, Any]) -> None:
        if claims.get("nbf") is None:
            return
        nbf = parse_numeric_date(claims.get("nbf"))
        if nbf is None:
            raise MalformedTokenError("Invalid nbf claim")
        if time.time() < nbf:
            raise TokenNotYetValidError(details={"nbf": claims.get("nbf")})

    def _check_audience(self, claims: dict[str, Any]) -> None:
        expected = self._config.audience
        if expected == WILDCARD_AUDIENCE:
            return
        aud = claims.get("aud")
        client_id = claims.get("client_id")
        if isinstance(aud, list):
            matched = expected in aud
        else:
            matched = aud == expected
        if not matched and client_id is not None:
            matched = client_id == expected
        if not matched:
            raise AudienceMismatchError(expected, aud, client_id)
