"""Validated token claims produced by every token validator."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mcp_framework.auth.utils import parse_scope

REQUIRED_JWT_CLAIMS = ("sub", "iss", "exp")
REQUIRED_INTROSPECTION_CLAIMS = ("sub", "iss", "aud", "exp")


class TokenClaims(BaseModel):
    """Claims of an accepted access token.

    Immutable once produced. Extension claims (``client_id``, ``email``,
    provider-specific fields) are preserved as extra attributes and returned
    by ``to_dict``.

    Attributes:
        sub: Subject (user or client identifier).
        iss: Issuer identifier.
        aud: Audience, a string or a list of strings. Empty when the token was
            accepted without an ``aud`` claim (wildcard audience or
            ``client_id`` match).
        exp: Expiration timestamp (Unix).
        nbf: Not-before timestamp, if present.
        iat: Issued-at timestamp, if present.
        scope: Raw scope claim, if present.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    sub: str
    iss: str
    aud: str | list[str] = Field(default_factory=list)
    exp: int | float
    nbf: int | float | None = None
    iat: int | float | None = None
    scope: str | list[str] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        return cls.model_validate(payload)

    @property
    def scopes(self) -> list[str]:
        return parse_scope(self.scope)

    @property
    def audiences(self) -> list[str]:
        if isinstance(self.aud, str):
            return [self.aud]
        return list(self.aud)

    def to_dict(self) -> dict[str, Any]:
        """Return the claims exactly as they appeared in the token payload."""
        return {**self.model_dump(exclude_unset=True), **(self.model_extra or {})}
