"""Tests for the FastAPI application factory and its non-transport routes."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from mcp_framework.auth.config import OAuthConfig
from mcp_framework.auth.flow import TokenResult
from mcp_framework.transport.config import CORSConfig, ServerConfig
from mcp_framework.transport.server import callback_redirect_uri, create_app

ISSUER = "https://auth.example.com"
RESOURCE = "https://mcp.example.com"


class _AuthServer:
    """Metadata and token endpoints for the callback route."""

    def __init__(self) -> None:
        self.token_requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/.well-known/oauth-authorization-server":
            return httpx.Response(
                200,
                json={
                    "issuer": ISSUER,
                    "authorization_endpoint": f"{ISSUER}/authorize",
                    "token_endpoint": f"{ISSUER}/token",
                },
            )
        if request.url.path == "/token":
            self.token_requests.append(request)
            return httpx.Response(200, json={"access_token": "access-abc", "expires_in": 60})
        return httpx.Response(404)


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app()) as test_client:
        yield test_client


class TestHealthAndMetadata:
    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_metadata_not_configured(self, client) -> None:
        response = client.get("/.well-known/oauth-protected-resource")

        assert response.status_code == 404
        assert response.json() == {"error": "OAuth not configured", "type": "configuration_error"}

    def test_metadata_served_without_authentication(self, oauth_config) -> None:
        with TestClient(create_app(oauth_config=oauth_config)) as client:
            response = client.get("/.well-known/oauth-protected-resource")

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "public, max-age=3600"
        assert response.json() == {"resource": RESOURCE, "authorization_servers": [ISSUER]}

    def test_health_not_authenticated_with_oauth(self, oauth_config) -> None:
        with TestClient(create_app(oauth_config=oauth_config)) as client:
            assert client.get("/health").status_code == 200

    def test_app_state(self, oauth_config) -> None:
        app = create_app(ServerConfig(transport="sse"), oauth_config)

        assert app.state.authenticator is not None
        assert app.state.flow_manager is None
        assert app.state.protected_resource_metadata.resource == RESOURCE
        assert app.state.config.endpoint == "/sse"


class TestCORS:
    @pytest.fixture
    def cors_client(self) -> Iterator[TestClient]:
        config = ServerConfig(cors=CORSConfig(allow_origin="https://app.example.com"))
        with TestClient(create_app(config)) as test_client:
            yield test_client

    def test_preflight(self, cors_client) -> None:
        response = cors_client.options(
            "/mcp",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Authorization, Mcp-Session-Id",
            },
        )

        assert response.status_code == 204
        assert response.content == b""
        assert response.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert "Mcp-Session-Id" in response.headers["Access-Control-Allow-Headers"]
        assert "DELETE" in response.headers["Access-Control-Allow-Methods"]
        assert response.headers["Access-Control-Max-Age"] == "86400"

    def test_preflight_from_unknown_origin_rejected(self, cors_client) -> None:
        response = cors_client.options(
            "/mcp",
            headers={
                "Origin": "https://evil.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 400
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_headers_on_regular_responses(self, cors_client) -> None:
        response = cors_client.get("/health", headers={"Origin": "https://app.example.com"})

        assert response.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert "Mcp-Session-Id" in response.headers["Access-Control-Expose-Headers"]
        assert "Access-Control-Max-Age" not in response.headers

    def test_no_cors_headers_by_default(self, client) -> None:
        response = client.get("/health", headers={"Origin": "https://app.example.com"})

        assert "Access-Control-Allow-Origin" not in response.headers


class TestOAuthCallback:
    @pytest.fixture
    def auth_server(self) -> _AuthServer:
        return _AuthServer()

    @pytest.fixture
    def hooks(self) -> dict[str, list[Any]]:
        return {"callback": [], "error": []}

    @pytest.fixture
    def app(self, jwt_config, auth_server, hooks) -> Any:
        config = OAuthConfig(
            authorization_servers=[ISSUER],
            resource=RESOURCE,
            validation=jwt_config,
            client_id="mcp-client",
        )

        async def on_callback(result: TokenResult, state: str) -> None:
            hooks["callback"].append((result, state))

        def on_error(error: Exception, state: Optional[str]) -> None:
            hooks["error"].append((error, state))

        return create_app(
            oauth_config=config,
            on_callback=on_callback,
            on_error=on_error,
            http_transport=httpx.MockTransport(auth_server.handler),
        )

    def test_successful_callback(self, app, auth_server, hooks) -> None:
        redirect_uri = "http://testserver/oauth/callback"
        flow = asyncio.run(app.state.flow_manager.start_authorization_flow(redirect_uri))

        with TestClient(app) as client:
            response = client.get("/oauth/callback", params={"code": "c0de", "state": flow.state})

        assert response.status_code == 200
        assert "Authorization Successful" in response.text
        (result, state), = hooks["callback"]
        assert result.access_token == "access-abc"
        assert state == flow.state
        assert b"redirect_uri=http%3A%2F%2Ftestserver%2Foauth%2Fcallback" in (
            auth_server.token_requests[0].content
        )

    def test_provider_error_is_escaped(self, app, hooks) -> None:
        with TestClient(app) as client:
            response = client.get(
                "/oauth/callback",
                params={"error": "access_denied", "error_description": "<script>x</script>"},
            )

        assert response.status_code == 400
        assert "<script>x</script>" not in response.text
        assert "&lt;script&gt;" in response.text
        assert len(hooks["error"]) == 1

    def test_missing_parameters(self, app) -> None:
        with TestClient(app) as client:
            response = client.get("/oauth/callback", params={"code": "c0de"})

        assert response.status_code == 400
        assert response.text == "Missing code or state parameter"

    def test_unknown_state(self, app, hooks) -> None:
        with TestClient(app) as client:
            response = client.get("/oauth/callback", params={"code": "c0de", "state": "forged"})

        assert response.status_code == 500
        assert "Authorization Error" in response.text
        (error, state), = hooks["error"]
        assert state == "forged"
        assert error.kind == "invalid_state"


def test_callback_redirect_uri_honours_forwarded_proto() -> None:
    from starlette.requests import Request

    request = Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "path": "/oauth/callback",
            "query_string": b"code=1&state=2",
            "headers": [(b"host", b"mcp.example.com"), (b"x-forwarded-proto", b"https")],
            "server": ("10.0.0.1", 8080),
        }
    )

    assert callback_redirect_uri(request) == "https://mcp.example.com/oauth/callback"
