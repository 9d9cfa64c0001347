"""Bearer token authentication for protected transport endpoints.

``ResourceServerAuthenticator`` extracts the bearer token from the request,
rejects tokens passed in the query string, validates through the configured
token validator (with a decision cache keyed by the token digest), and is the
single place that builds the 401 response and its ``WWW-Authenticate``
challenge (RFC 6750 section 3).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Union

import httpx
import structlog
from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse

from mcp_framework.auth.claims import TokenClaims
from mcp_framework.auth.config import OAuthConfig, TokenValidator, create_token_validator
from mcp_framework.auth.utils import parse_numeric_date
from mcp_framework.errors import AuthenticationError, UpstreamError
from mcp_framework.observability import get_logger
from mcp_framework.utils.cache import ExpiringCache
from mcp_framework.utils.sanitization import hash_token, sanitize_token

HTTP_UNAUTHORIZED = 401
REALM = "MCP Server"
QUERY_TOKEN_PARAMS = ("access_token", "token")
DECISION_CACHE_MAX_SIZE = 1000

ERROR_INVALID_REQUEST = "invalid_request"
ERROR_INVALID_TOKEN = "invalid_token"
ERROR_UNAUTHORIZED = "Unauthorized"


@dataclass(frozen=True)
class AuthDecision:
    """Outcome of authenticating one request.

    Attributes:
        accepted: Whether the request carries a valid token.
        claims: Validated claims when accepted.
        error: The rejection cause; None when accepted or when no token was sent.
        challenge_error: RFC 6750 ``error`` code for the challenge, if any.
        token: The raw bearer token when one was extracted.
    """

    accepted: bool
    claims: Optional[TokenClaims] = None
    error: Optional[Union[AuthenticationError, UpstreamError]] = None
    challenge_error: Optional[str] = None
    token: Optional[str] = None

    @property
    def description(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, UpstreamError):
            return "Token validation is temporarily unavailable"
        return self.error.message


def _decision_expiry(decision: AuthDecision) -> Optional[float]:
    if decision.claims is None:
        return None
    return parse_numeric_date(decision.claims.exp)


def _quote(value: str) -> str:
    return value.replace("\\", "").replace('"', "'")


class ResourceServerAuthenticator:
    """Authenticates requests against an OAuth resource server configuration.

    Example:
        >>> authenticator = ResourceServerAuthenticator(oauth_config)
        >>> decision = await authenticator.authenticate(request)
        >>> if not decision.accepted:
        ...     return authenticator.unauthorized_response(decision)
    """

    def __init__(
        self,
        config: OAuthConfig,
        *,
        validator: Optional[TokenValidator] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self._config = config
        self._logger = logger if logger is not None else get_logger(__name__)
        self._validator = validator or create_token_validator(
            config.validation, transport=transport, logger=self._logger
        )
        self._decisions: ExpiringCache[str, AuthDecision] = ExpiringCache(
            default_ttl=config.cache_ttl,
            max_size=DECISION_CACHE_MAX_SIZE,
            expiry_of=_decision_expiry,
            prune_threshold=DECISION_CACHE_MAX_SIZE,
        )
        self._logger.info(
            "mcp.auth.initialized",
            resource=config.resource,
            validation=type(config.validation).__name__,
            authorization_servers=config.authorization_servers,
        )

    @property
    def config(self) -> OAuthConfig:
        return self._config

    @property
    def validator(self) -> TokenValidator:
        return self._validator

    @property
    def decision_cache(self) -> ExpiringCache[str, AuthDecision]:
        return self._decisions

    def extract_token(self, request: HTTPConnection) -> Optional[str]:
        """Return the token from ``Bearer <token>``, or None if absent or malformed."""
        header_value = request.headers.get(self._config.header_name)
        if not header_value:
            return None
        parts = header_value.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer":
            self._logger.warning("mcp.auth.malformed_header", header=self._config.header_name)
            return None
        token = parts[1]
        if not token.strip():
            self._logger.warning("mcp.auth.empty_token")
            return None
        return token

    async def authenticate(self, request: HTTPConnection) -> AuthDecision:
        """Authenticate ``request``; never raises for expected failures."""
        for name in QUERY_TOKEN_PARAMS:
            if name in request.query_params:
                self._logger.warning("mcp.auth.token_in_query", param=name, path=request.url.path)
                return AuthDecision(
                    accepted=False,
                    error=AuthenticationError(
                        "Access tokens must not be passed in the query string",
                        kind="token_in_query",
                    ),
                    challenge_error=ERROR_INVALID_REQUEST,
                )

        header_value = request.headers.get(self._config.header_name)
        if not header_value:
            self._logger.info("mcp.auth.missing_token", path=request.url.path)
            return AuthDecision(accepted=False)

        token = self.extract_token(request)
        if token is None:
            return AuthDecision(
                accepted=False,
                error=AuthenticationError(
                    "Invalid Authorization header format: expected 'Bearer <token>'",
                    kind="malformed_header",
                ),
                challenge_error=ERROR_INVALID_REQUEST,
            )

        key = hash_token(token)
        cached = self._decisions.get(key)
        if cached is not None:
            return replace(cached, token=token)

        decision = await self._validate(token)
        if not isinstance(decision.error, UpstreamError):
            self._decisions.set(key, replace(decision, token=None))
        return decision

    async def _validate(self, token: str) -> AuthDecision:
        try:
            claims = await self._validator.validate(token)
        except UpstreamError as e:
            self._logger.error(
                "mcp.auth.upstream_failure",
                token=sanitize_token(token),
                error=e.message,
                status_code=e.status_code,
            )
            return AuthDecision(
                accepted=False, error=e, challenge_error=ERROR_INVALID_TOKEN, token=token
            )
        except AuthenticationError as e:
            self._logger.warning(
                "mcp.auth.rejected", token=sanitize_token(token), kind=e.kind, error=e.message
            )
            return AuthDecision(
                accepted=False, error=e, challenge_error=ERROR_INVALID_TOKEN, token=token
            )

        self._logger.info("mcp.auth.accepted", sub=claims.sub, scope=claims.scope or "N/A")
        return AuthDecision(accepted=True, claims=claims, token=token)

    def www_authenticate_header(
        self, error: Optional[str] = None, error_description: Optional[str] = None
    ) -> str:
        header = f'Bearer realm="{REALM}", resource="{self._config.resource}"'
        if error:
            header += f', error="{_quote(error)}"'
        if error_description:
            header += f', error_description="{_quote(error_description)}"'
        return header

    def unauthorized_response(self, decision: AuthDecision) -> JSONResponse:
        """Build the 401 response carrying the challenge for ``decision``."""
        return JSONResponse(
            status_code=HTTP_UNAUTHORIZED,
            content={
                "error": decision.description or ERROR_UNAUTHORIZED,
                "status": HTTP_UNAUTHORIZED,
                "type": AuthenticationError.type,
            },
            headers={
                "WWW-Authenticate": self.www_authenticate_header(
                    decision.challenge_error, decision.description
                )
            },
        )
