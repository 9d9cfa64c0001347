"""Tests for OAuth resource server configuration."""

import pytest

from mcp_framework.auth.config import (
    OAuthConfig,
    create_token_validator,
    load_oauth_config_from_env,
)
from mcp_framework.auth.introspection import IntrospectionConfig, IntrospectionValidator
from mcp_framework.auth.jwks import DEFAULT_ALGORITHMS, JWTValidationConfig, JWTValidator
from mcp_framework.errors import ConfigurationError

BASE_ENV = {
    "MCP_OAUTH_RESOURCE": "https://mcp.example.com",
    "MCP_OAUTH_AUTHORIZATION_SERVERS": "https://auth.example.com, https://backup.example.com",
    "MCP_OAUTH_JWKS_URI": "https://auth.example.com/.well-known/jwks.json",
}


class TestOAuthConfig:
    def test_requires_resource(self, jwt_config) -> None:
        with pytest.raises(ConfigurationError, match="resource"):
            OAuthConfig(authorization_servers=["https://a"], resource="", validation=jwt_config)

    def test_requires_authorization_server(self, jwt_config) -> None:
        with pytest.raises(ConfigurationError, match="authorization server"):
            OAuthConfig(
                authorization_servers=[], resource="https://mcp.example.com", validation=jwt_config
            )

    def test_flow_config_requires_client_id(self, oauth_config) -> None:
        assert oauth_config.flow_config() is None

    def test_flow_config_copies_client_settings(self, jwt_config) -> None:
        config = OAuthConfig(
            authorization_servers=["https://auth.example.com"],
            resource="https://mcp.example.com",
            validation=jwt_config,
            client_id="mcp-client",
            client_secret="secret",
            scopes=["mcp:read"],
        )

        flow = config.flow_config()

        assert flow is not None
        assert flow.client_id == "mcp-client"
        assert flow.client_secret == "secret"
        assert flow.resource == "https://mcp.example.com"
        assert flow.authorization_servers == ["https://auth.example.com"]
        assert flow.scopes == ["mcp:read"]
        assert flow.callback_path == "/oauth/callback"


class TestCreateTokenValidator:
    def test_jwt_validator(self, jwt_config) -> None:
        assert isinstance(create_token_validator(jwt_config), JWTValidator)

    def test_introspection_validator(self) -> None:
        config = IntrospectionConfig(
            endpoint="https://auth.example.com/introspect", client_id="c", client_secret="s"
        )
        assert isinstance(create_token_validator(config), IntrospectionValidator)

    @pytest.mark.parametrize(
        "config",
        [
            JWTValidationConfig(jwks_uri="", issuer="https://a", audience="https://b"),
            JWTValidationConfig(jwks_uri="https://a/jwks", issuer="", audience="https://b"),
            JWTValidationConfig(jwks_uri="https://a/jwks", issuer="https://a", audience=""),
            IntrospectionConfig(endpoint="", client_id="c", client_secret="s"),
            IntrospectionConfig(endpoint="https://a/introspect", client_id="c", client_secret=""),
        ],
    )
    def test_incomplete_settings(self, config) -> None:
        with pytest.raises(ConfigurationError):
            create_token_validator(config)

    def test_unknown_config_type(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported"):
            create_token_validator(object())  # type: ignore[arg-type]


class TestLoadOAuthConfigFromEnv:
    def test_disabled_without_resource(self) -> None:
        assert load_oauth_config_from_env({}) is None

    def test_jwt_defaults(self) -> None:
        config = load_oauth_config_from_env(BASE_ENV)

        assert config is not None
        assert config.authorization_servers == [
            "https://auth.example.com",
            "https://backup.example.com",
        ]
        assert isinstance(config.validation, JWTValidationConfig)
        assert config.validation.issuer == "https://auth.example.com"
        assert config.validation.audience == "https://mcp.example.com"
        assert config.validation.algorithms == DEFAULT_ALGORITHMS
        assert config.cache_ttl == 300.0

    def test_jwt_overrides(self) -> None:
        env = {
            **BASE_ENV,
            "MCP_OAUTH_ISSUER": "https://issuer.example.com",
            "MCP_OAUTH_AUDIENCE": "*",
            "MCP_OAUTH_ALGORITHMS": "RS256",
            "MCP_OAUTH_CACHE_TTL": "60",
            "MCP_OAUTH_CLIENT_ID": "mcp-client",
            "MCP_OAUTH_SCOPES": "mcp:read,mcp:write",
        }

        config = load_oauth_config_from_env(env)

        assert config.validation.issuer == "https://issuer.example.com"
        assert config.validation.audience == "*"
        assert config.validation.algorithms == ["RS256"]
        assert config.cache_ttl == 60.0
        assert config.client_id == "mcp-client"
        assert config.scopes == ["mcp:read", "mcp:write"]

    def test_introspection(self) -> None:
        env = {
            "MCP_OAUTH_RESOURCE": "https://mcp.example.com",
            "MCP_OAUTH_AUTHORIZATION_SERVERS": "https://auth.example.com",
            "MCP_OAUTH_VALIDATION": "introspection",
            "MCP_OAUTH_INTROSPECTION_ENDPOINT": "https://auth.example.com/introspect",
            "MCP_OAUTH_CLIENT_ID": "client",
            "MCP_OAUTH_CLIENT_SECRET": "secret",
        }

        config = load_oauth_config_from_env(env)

        assert isinstance(config.validation, IntrospectionConfig)
        assert config.validation.endpoint == "https://auth.example.com/introspect"

    @pytest.mark.parametrize(
        "env",
        [
            {"MCP_OAUTH_RESOURCE": "https://mcp.example.com"},
            {**BASE_ENV, "MCP_OAUTH_JWKS_URI": ""},
            {**BASE_ENV, "MCP_OAUTH_VALIDATION": "introspection"},
            {**BASE_ENV, "MCP_OAUTH_VALIDATION": "saml"},
            {**BASE_ENV, "MCP_OAUTH_CACHE_TTL": "five minutes"},
        ],
    )
    def test_invalid_environment(self, env: dict) -> None:
        with pytest.raises(ConfigurationError):
            load_oauth_config_from_env(env)
