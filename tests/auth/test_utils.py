"""Tests for auth utility helpers."""

import pytest

from mcp_framework.auth.utils import parse_numeric_date, parse_scope


class TestParseScope:
    def test_space_separated_string(self) -> None:
        assert parse_scope("mcp:read  mcp:write") == ["mcp:read", "mcp:write"]

    def test_list(self) -> None:
        assert parse_scope(["mcp:read", "mcp:write"]) == ["mcp:read", "mcp:write"]

    @pytest.mark.parametrize("claim", [None, 42, {"scope": "x"}, ""])
    def test_invalid_or_empty_returns_empty(self, claim: object) -> None:
        assert parse_scope(claim) == []


class TestParseNumericDate:
    def test_int_and_float(self) -> None:
        assert parse_numeric_date(1700000000) == 1700000000.0
        assert parse_numeric_date(1700000000.5) == 1700000000.5

    @pytest.mark.parametrize("value", [None, "1700000000", True])
    def test_rejects_non_numbers(self, value: object) -> None:
        assert parse_numeric_date(value) is None
