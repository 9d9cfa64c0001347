"""Tests for structured logging configuration.

This module tests the logging module that provides structured logging and
credential redaction for the MCP framework.
"""

import logging

import pytest
import structlog

from mcp_framework.observability.logging import (
    REDACTED_PLACEHOLDER,
    configure_logging,
    get_logger,
    is_debug_mode,
    sanitize_for_logging,
)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_logging_sets_up_structlog(self) -> None:
        configure_logging(log_format="console", log_level="DEBUG", force=True)

        assert get_logger("test") is not None

    def test_configure_logging_respects_log_level(self) -> None:
        configure_logging(log_format="console", log_level="WARNING", force=True)

        assert logging.getLogger().level == logging.WARNING

    def test_json_format_emits_event_name(
        self, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("MCP_DEBUG", raising=False)
        configure_logging(log_format="json", log_level="INFO", force=True)

        get_logger("mcp_framework.test").info(
            "mcp.test.event", session_id="s-1", access_token="abc123", status_code=502
        )

        out = capsys.readouterr().out
        assert '"event": "mcp.test.event"' in out
        assert '"session_id": "s-1"' in out
        assert '"status_code": 502' in out
        assert "abc123" not in out
        assert REDACTED_PLACEHOLDER in out

    def teardown_method(self) -> None:
        structlog.contextvars.clear_contextvars()
        configure_logging(log_format="console", log_level="INFO", force=True)


class TestSanitizeForLogging:
    def test_redacts_sensitive_keys(self) -> None:
        data = {
            "sub": "alice",
            "access_token": "abc",
            "client_secret": "s3cret",
            "code_verifier": "v",
            "Authorization": "Bearer abc",
        }

        result = sanitize_for_logging(data)

        assert result["sub"] == "alice"
        for key in ("access_token", "client_secret", "code_verifier", "Authorization"):
            assert result[key] == REDACTED_PLACEHOLDER

    def test_nested_structures(self) -> None:
        data = {"response": {"refresh_token": "r"}, "items": [{"password": "p"}, "plain"]}

        result = sanitize_for_logging(data)

        assert result["response"]["refresh_token"] == REDACTED_PLACEHOLDER
        assert result["items"] == [{"password": REDACTED_PLACEHOLDER}, "plain"]

    def test_empty(self) -> None:
        assert sanitize_for_logging({}) == {}


@pytest.mark.parametrize(("value", "expected"), [("true", True), ("1", True), ("no", False), ("", False)])
def test_is_debug_mode(monkeypatch: pytest.MonkeyPatch, value: str, expected: bool) -> None:
    monkeypatch.setenv("MCP_DEBUG", value)

    assert is_debug_mode() is expected
