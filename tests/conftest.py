"""Shared pytest fixtures for MCP framework tests.

Provides an RSA signing key published through a mocked JWKS endpoint, a token
factory signing with that key, and OAuth configurations pointing at it.
"""

from __future__ import annotations

import importlib
import time
from collections.abc import Callable, Iterator
from typing import Any, Optional

import httpx
import pytest
from joserfc import jwk
from joserfc import jwt as jose_jwt

from mcp_framework.auth.config import OAuthConfig
from mcp_framework.auth.jwks import JWTValidationConfig

ISSUER = "https://auth.example.com"
RESOURCE = "https://mcp.example.com"
JWKS_URI = "https://auth.example.com/.well-known/jwks.json"
KEY_ID = "test-key-1"

TokenFactory = Callable[..., str]


class JWKSEndpoint:
    """Mock JWKS endpoint counting requests; keys and status can be swapped mid-test."""

    def __init__(self, keys: list[jwk.RSAKey]) -> None:
        self.keys = list(keys)
        self.status_code = 200
        self.requests = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert str(request.url) == JWKS_URI
        self.requests += 1
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="unavailable")
        return httpx.Response(200, json={"keys": [k.as_dict(private=False) for k in self.keys]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def _reset_sse_exit_event(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """sse-starlette may keep an exit event bound to the first test's event loop."""
    sse_module = importlib.import_module("sse_starlette.sse")
    status = getattr(sse_module, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        monkeypatch.setattr(status, "should_exit_event", None)
    yield


@pytest.fixture(scope="session")
def signing_key() -> jwk.RSAKey:
    return jwk.RSAKey.generate_key(2048, parameters={"kid": KEY_ID}, private=True)


@pytest.fixture(scope="session")
def other_key() -> jwk.RSAKey:
    """A key that is never published, for signature failures."""
    return jwk.RSAKey.generate_key(2048, parameters={"kid": KEY_ID}, private=True)


@pytest.fixture
def jwks_endpoint(signing_key: jwk.RSAKey) -> JWKSEndpoint:
    return JWKSEndpoint([signing_key])


@pytest.fixture
def make_token(signing_key: jwk.RSAKey) -> TokenFactory:
    """Build a signed JWT; claims override the defaults, ``None`` drops a claim.

    Example:
        >>> token = make_token(aud="https://other.example.com", nbf=None)
    """

    def _make(
        *,
        key: Optional[Any] = None,
        header: Optional[dict[str, Any]] = None,
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": "user-123",
            "iss": ISSUER,
            "aud": RESOURCE,
            "iat": now,
            "exp": now + 3600,
            "scope": "mcp:read mcp:write",
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jose_jwt.encode(
            header or {"alg": "RS256", "kid": KEY_ID},
            payload,
            key if key is not None else signing_key,
        )

    return _make


@pytest.fixture
def jwt_config() -> JWTValidationConfig:
    return JWTValidationConfig(jwks_uri=JWKS_URI, issuer=ISSUER, audience=RESOURCE)


@pytest.fixture
def oauth_config(jwt_config: JWTValidationConfig) -> OAuthConfig:
    return OAuthConfig(
        authorization_servers=[ISSUER],
        resource=RESOURCE,
        validation=jwt_config,
    )
