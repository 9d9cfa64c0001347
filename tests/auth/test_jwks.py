"""Unit tests for JWKS key caching and JWT access token validation."""

import asyncio
import time

import httpx
import pytest
from joserfc import jwk

from mcp_framework.auth.jwks import (
    JWKSKeyCache,
    JWTValidationConfig,
    JWTValidator,
    decode_unverified,
    fetch_keys,
)
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

JWKS_URI = "https://auth.example.com/.well-known/jwks.json"
ISSUER = "https://auth.example.com"
RESOURCE = "https://mcp.example.com"


async def test_fetch_keys_returns_key_set(jwks_endpoint) -> None:
    """Verify fetch_keys imports every key published by the endpoint."""
    key_set = await fetch_keys(JWKS_URI, transport=jwks_endpoint.transport)

    assert len(key_set.keys) == 1
    assert key_set.keys[0].kid == "test-key-1"


async def test_fetch_keys_raises_upstream_error_on_http_error(jwks_endpoint) -> None:
    jwks_endpoint.status_code = 503

    with pytest.raises(UpstreamError) as exc_info:
        await fetch_keys(JWKS_URI, transport=jwks_endpoint.transport)

    assert exc_info.value.status_code == 503
    assert exc_info.value.body == "unavailable"


async def test_fetch_keys_raises_upstream_error_on_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="Failed to fetch signing keys"):
        await fetch_keys(JWKS_URI, transport=httpx.MockTransport(handler))


async def test_fetch_keys_raises_upstream_error_on_invalid_document() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(UpstreamError, match="Invalid JWKS document"):
        await fetch_keys(JWKS_URI, transport=transport)


class TestDecodeUnverified:
    """Tests for decode_unverified()."""

    def test_returns_header_and_payload(self, make_token) -> None:
        header, payload = decode_unverified(make_token())
        assert header["kid"] == "test-key-1"
        assert header["alg"] == "RS256"
        assert payload["sub"] == "user-123"

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b", "a.b.c.d", "!!!.###.$$$"])
    def test_rejects_malformed_tokens(self, token: str) -> None:
        with pytest.raises(MalformedTokenError):
            decode_unverified(token)


class TestJWKSKeyCache:
    """Tests for the kid-indexed signing key cache."""

    async def test_caches_keys_between_lookups(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, transport=jwks_endpoint.transport)

        first = await cache.get_signing_key("test-key-1")
        second = await cache.get_signing_key("test-key-1")

        assert first is second
        assert cache.fetch_count == 1
        assert jwks_endpoint.requests == 1

    async def test_unknown_kid_triggers_refetch_for_rotation(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, transport=jwks_endpoint.transport)
        await cache.get_signing_key("test-key-1")

        rotated = jwk.RSAKey.generate_key(2048, parameters={"kid": "test-key-2"}, private=True)
        jwks_endpoint.keys.append(rotated)

        key = await cache.get_signing_key("test-key-2")

        assert key.kid == "test-key-2"
        assert cache.fetch_count == 2

    async def test_unknown_kid_after_fetch_is_signature_error(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, transport=jwks_endpoint.transport)

        with pytest.raises(InvalidSignatureError, match="unknown-kid"):
            await cache.get_signing_key("unknown-kid")

    async def test_concurrent_misses_fetch_once(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, transport=jwks_endpoint.transport)

        keys = await asyncio.gather(*(cache.get_signing_key("test-key-1") for _ in range(10)))

        assert all(k.kid == "test-key-1" for k in keys)
        assert jwks_endpoint.requests == 1

    async def test_rate_limit_fails_closed(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, transport=jwks_endpoint.transport)

        for i in range(10):
            with pytest.raises(InvalidSignatureError):
                await cache.get_signing_key(f"missing-{i}")

        with pytest.raises(UpstreamError, match="rate limit"):
            await cache.get_signing_key("missing-final")
        assert jwks_endpoint.requests == 10

    async def test_rate_limit_can_be_disabled(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, rate_limit=False, transport=jwks_endpoint.transport)

        for i in range(12):
            with pytest.raises(InvalidSignatureError):
                await cache.get_signing_key(f"missing-{i}")

        assert jwks_endpoint.requests == 12

    async def test_invalidate_forces_refetch(self, jwks_endpoint) -> None:
        cache = JWKSKeyCache(JWKS_URI, transport=jwks_endpoint.transport)
        await cache.get_signing_key("test-key-1")

        cache.invalidate()
        await cache.get_signing_key("test-key-1")

        assert cache.fetch_count == 2


class TestJWTValidator:
    """Tests for JWTValidator.validate()."""

    @pytest.fixture
    def validator(self, jwt_config, jwks_endpoint) -> JWTValidator:
        return JWTValidator(jwt_config, transport=jwks_endpoint.transport)

    async def test_accepts_valid_token(self, validator, make_token) -> None:
        claims = await validator.validate(make_token())

        assert claims.sub == "user-123"
        assert claims.iss == ISSUER
        assert claims.aud == RESOURCE
        assert claims.scopes == ["mcp:read", "mcp:write"]

    async def test_preserves_extension_claims(self, validator, make_token) -> None:
        claims = await validator.validate(make_token(email="user@example.com"))

        assert claims.to_dict()["email"] == "user@example.com"

    async def test_accepts_audience_list_containing_resource(self, validator, make_token) -> None:
        token = make_token(aud=["https://other.example.com", RESOURCE])

        claims = await validator.validate(token)

        assert RESOURCE in claims.audiences

    async def test_rejects_other_audience(self, validator, make_token) -> None:
        token = make_token(aud="https://other.example.com")

        with pytest.raises(AudienceMismatchError) as exc_info:
            await validator.validate(token)

        assert exc_info.value.expected == RESOURCE
        assert exc_info.value.aud == "https://other.example.com"
        assert exc_info.value.kind == "audience_mismatch"

    async def test_accepts_client_id_when_aud_absent(self, validator, make_token) -> None:
        token = make_token(aud=None, client_id=RESOURCE)

        claims = await validator.validate(token)

        assert claims.aud == []
        assert claims.to_dict()["client_id"] == RESOURCE

    async def test_rejects_client_id_mismatch_when_aud_absent(self, validator, make_token) -> None:
        token = make_token(aud=None, client_id="some-other-client")

        with pytest.raises(AudienceMismatchError):
            await validator.validate(token)

    async def test_wildcard_audience_skips_check(self, jwks_endpoint, make_token) -> None:
        config = JWTValidationConfig(jwks_uri=JWKS_URI, issuer=ISSUER, audience="*")
        validator = JWTValidator(config, transport=jwks_endpoint.transport)

        claims = await validator.validate(make_token(aud="https://other.example.com"))

        assert claims.sub == "user-123"

    async def test_expired_token_rejected_without_fetching_keys(
        self, validator, make_token, other_key, jwks_endpoint
    ) -> None:
        """An expired token is reported as expired even when its signature is bad."""
        token = make_token(key=other_key, exp=int(time.time()) - 60)

        with pytest.raises(TokenExpiredError) as exc_info:
            await validator.validate(token)

        assert exc_info.value.kind == "expired"
        assert jwks_endpoint.requests == 0

    async def test_rejects_bad_signature(self, validator, make_token, other_key) -> None:
        with pytest.raises(InvalidSignatureError):
            await validator.validate(make_token(key=other_key))

    async def test_rejects_missing_kid(self, validator, make_token) -> None:
        token = make_token(header={"alg": "RS256"})

        with pytest.raises(MalformedTokenError, match="kid"):
            await validator.validate(token)

    async def test_rejects_algorithm_outside_allow_list(self, validator, make_token) -> None:
        hmac_key = jwk.OctKey.generate_key(256)
        token = make_token(key=hmac_key, header={"alg": "HS256", "kid": "test-key-1"})

        with pytest.raises(UnsupportedAlgorithmError) as exc_info:
            await validator.validate(token)

        assert exc_info.value.algorithm == "HS256"

    async def test_rejects_issuer_mismatch(self, validator, make_token) -> None:
        with pytest.raises(IssuerMismatchError):
            await validator.validate(make_token(iss="https://evil.example.com"))

    async def test_rejects_future_nbf(self, validator, make_token) -> None:
        with pytest.raises(TokenNotYetValidError):
            await validator.validate(make_token(nbf=int(time.time()) + 600))

    @pytest.mark.parametrize("claim", ["sub", "exp"])
    async def test_rejects_missing_required_claim(self, validator, make_token, claim) -> None:
        with pytest.raises(MissingClaimError) as exc_info:
            await validator.validate(make_token(**{claim: None}))

        assert exc_info.value.claim == claim

    async def test_rejects_signed_claims_of_wrong_type(self, validator, make_token) -> None:
        with pytest.raises(MalformedTokenError, match="Invalid token claims"):
            await validator.validate(make_token(sub=123))

    async def test_jwks_outage_fails_closed(self, validator, make_token, jwks_endpoint) -> None:
        jwks_endpoint.status_code = 500

        with pytest.raises(UpstreamError):
            await validator.validate(make_token())

    async def test_signing_key_is_cached_across_tokens(
        self, validator, make_token, jwks_endpoint
    ) -> None:
        await validator.validate(make_token(sub="alice"))
        await validator.validate(make_token(sub="bob"))

        assert jwks_endpoint.requests == 1
        assert validator.key_cache.fetch_count == 1
