"""Tests for transport server configuration."""

import pytest

from mcp_framework.errors import ConfigurationError
from mcp_framework.transport.config import DEFAULT_MAX_MESSAGE_SIZE, CORSConfig, ServerConfig


class TestServerConfig:
    def test_defaults(self) -> None:
        config = ServerConfig()

        assert config.transport == "http-stream"
        assert config.endpoint == "/mcp"
        assert config.response_mode == "stream"
        assert config.max_message_size == DEFAULT_MAX_MESSAGE_SIZE
        assert config.cors is None
        assert config.auth_endpoints.sse and config.auth_endpoints.messages

    def test_sse_default_endpoint(self) -> None:
        config = ServerConfig(transport="sse")

        assert config.endpoint == "/sse"
        assert config.message_endpoint == "/messages"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"transport": "websocket"},
            {"response_mode": "chunked"},
            {"max_message_size": 0},
            {"endpoint": "mcp"},
            {"message_endpoint": "messages"},
        ],
    )
    def test_invalid_settings(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationError):
            ServerConfig(**kwargs)

    def test_from_env(self) -> None:
        config = ServerConfig.from_env(
            {
                "MCP_TRANSPORT": "sse",
                "MCP_HOST": "0.0.0.0",
                "MCP_PORT": "9000",
                "MCP_MESSAGE_ENDPOINT": "/rpc",
                "MCP_MAX_MESSAGE_SIZE": "1024",
                "MCP_CORS_ALLOW_ORIGIN": "https://app.example.com",
                "MCP_AUTH_SSE": "false",
            }
        )

        assert config.transport == "sse"
        assert config.host == "0.0.0.0"
        assert config.port == 9000
        assert config.endpoint == "/sse"
        assert config.message_endpoint == "/rpc"
        assert config.max_message_size == 1024
        assert config.cors is not None
        assert config.cors.allow_origin == "https://app.example.com"
        assert config.auth_endpoints.sse is False
        assert config.auth_endpoints.messages is True

    def test_from_env_rejects_non_numeric_port(self) -> None:
        with pytest.raises(ConfigurationError):
            ServerConfig.from_env({"MCP_PORT": "eighty"})


def test_cors_middleware_options_split_header_lists() -> None:
    options = CORSConfig(allow_origin="https://a.example.com, https://b.example.com").middleware_options()

    assert options["allow_origins"] == ["https://a.example.com", "https://b.example.com"]
    assert options["allow_methods"] == ["GET", "POST", "DELETE", "OPTIONS"]
    assert options["expose_headers"] == ["Content-Type", "Authorization", "Mcp-Session-Id"]
    assert options["max_age"] == 86400
