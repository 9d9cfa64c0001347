"""OAuth 2.1 authorization code flow with PKCE.

Starts authorization requests against a discovered authorization server and
exchanges the returned code for tokens. Every flow carries an S256 code
challenge and an RFC 8707 ``resource`` indicator so issued tokens are bound to
this server. Pending flows are kept in memory keyed by ``state``, redeemed
exactly once, and swept after ten minutes.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
import structlog
from authlib.common.urls import add_params_to_uri
from authlib.oauth2.rfc7636 import create_s256_code_challenge
from pydantic import Field

from mcp_framework.auth.discovery import AuthorizationServerDiscovery, AuthorizationServerMetadata
from mcp_framework.errors import ConfigurationError, InvalidStateError, UpstreamError
from mcp_framework.models.base import FrameworkBaseModel
from mcp_framework.observability import get_logger
from mcp_framework.utils.cache import ExpiringCache

PKCE_SESSION_TTL_SECONDS = 600.0
PKCE_MAX_PENDING_FLOWS = 1000
PKCE_VERIFIER_BYTES = 32
DEFAULT_CALLBACK_PATH = "/oauth/callback"
DEFAULT_TOKEN_TIMEOUT = 10.0

RESERVED_AUTHORIZATION_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "state",
        "code_challenge",
        "code_challenge_method",
        "resource",
    }
)


@dataclass
class AuthorizationFlowConfig:
    """Configuration for the PKCE authorization code flow.

    Attributes:
        client_id: OAuth client id registered with the authorization server.
        resource: Canonical URI of this resource server (RFC 8707 indicator).
        authorization_servers: Issuer URLs; the first one drives the flow.
        client_secret: Optional secret for confidential clients (HTTP Basic).
        scopes: Scopes requested in the authorization URL.
        callback_path: Path the authorization server redirects back to.
        timeout: Timeout in seconds for the token request.
    """

    client_id: str
    resource: str
    authorization_servers: list[str]
    client_secret: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    callback_path: str = DEFAULT_CALLBACK_PATH
    timeout: float = DEFAULT_TOKEN_TIMEOUT


@dataclass(frozen=True)
class PKCESession:
    """A pending authorization request awaiting its callback."""

    state: str
    code_verifier: str
    code_challenge: str
    resource_uri: str
    redirect_uri: str
    created_at: float


class AuthorizationRequest(FrameworkBaseModel):
    """Result of starting a flow: where to send the user agent, and the state."""

    authorization_url: str
    state: str


class TokenResult(FrameworkBaseModel):
    """Tokens returned by the authorization server's token endpoint."""

    access_token: str
    token_type: str = Field(default="Bearer")
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None


def generate_code_verifier() -> str:
    """Return a URL-safe verifier built from 32 random bytes (43 characters)."""
    return secrets.token_urlsafe(PKCE_VERIFIER_BYTES)


def generate_pkce_pair() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` using the S256 method."""
    verifier = generate_code_verifier()
    return verifier, create_s256_code_challenge(verifier)


def _parse_token_response(body: Any) -> TokenResult:
    if not isinstance(body, dict):
        raise UpstreamError("Token response is not a JSON object")
    access_token = body.get("access_token")
    if not access_token or not isinstance(access_token, str):
        raise UpstreamError("Token response missing 'access_token'")
    expires_in = body.get("expires_in")
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float, str)):
        expires_in = None
    else:
        try:
            expires_in = int(expires_in)
        except ValueError:
            expires_in = None
    refresh_token = body.get("refresh_token")
    scope = body.get("scope")
    return TokenResult(
        access_token=access_token,
        token_type=str(body.get("token_type") or "Bearer"),
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        expires_in=expires_in,
        scope=scope if isinstance(scope, str) else None,
    )


class AuthorizationFlowManager:
    """Runs the authorization code + PKCE flow for one client registration.

    Example:
        >>> manager = AuthorizationFlowManager(AuthorizationFlowConfig(
        ...     client_id="mcp-client",
        ...     resource="https://mcp.example.com",
        ...     authorization_servers=["https://auth.example.com"],
        ... ))
        >>> request = await manager.start_authorization_flow("https://mcp.example.com/oauth/callback")
        >>> # redirect the user agent to request.authorization_url, then:
        >>> tokens = await manager.handle_callback(code, request.state, redirect_uri)
    """

    def __init__(
        self,
        config: AuthorizationFlowConfig,
        *,
        discovery: Optional[AuthorizationServerDiscovery] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        if not config.client_id:
            raise ConfigurationError("Authorization flow requires a client_id")
        if not config.resource:
            raise ConfigurationError("Authorization flow requires a resource URI")
        if not config.authorization_servers:
            raise ConfigurationError("Authorization flow requires an authorization server")
        self._config = config
        self._transport = transport
        self._discovery = discovery or AuthorizationServerDiscovery(transport=transport)
        self._clock = clock
        self._sessions: ExpiringCache[str, PKCESession] = ExpiringCache(
            default_ttl=PKCE_SESSION_TTL_SECONDS,
            max_size=PKCE_MAX_PENDING_FLOWS,
            clock=clock,
            prune_threshold=PKCE_MAX_PENDING_FLOWS,
        )
        self._logger = logger if logger is not None else get_logger(__name__)

    @property
    def config(self) -> AuthorizationFlowConfig:
        return self._config

    async def _metadata(self) -> AuthorizationServerMetadata:
        return await self._discovery.discover(self._config.authorization_servers[0])

    async def start_authorization_flow(
        self,
        redirect_uri: str,
        extra_params: Optional[dict[str, str]] = None,
    ) -> AuthorizationRequest:
        """Create a PKCE session and return the authorization URL for it.

        Args:
            redirect_uri: Callback URL registered with the authorization server.
            extra_params: Additional query parameters (e.g. ``prompt``); they
                cannot replace the security parameters of the request.

        Raises:
            ConfigurationError: The server advertises no authorization endpoint.
            UpstreamError: Metadata discovery failed.
        """
        metadata = await self._metadata()
        if not metadata.authorization_endpoint:
            raise ConfigurationError(
                "Authorization server metadata has no authorization_endpoint",
                details={"issuer": metadata.issuer},
            )

        verifier, challenge = generate_pkce_pair()
        state = secrets.token_urlsafe(PKCE_VERIFIER_BYTES)
        session = PKCESession(
            state=state,
            code_verifier=verifier,
            code_challenge=challenge,
            resource_uri=self._config.resource,
            redirect_uri=redirect_uri,
            created_at=self._clock(),
        )
        self._sessions.set(state, session)

        params: list[tuple[str, str]] = [
            ("response_type", "code"),
            ("client_id", self._config.client_id),
            ("redirect_uri", redirect_uri),
            ("state", state),
            ("code_challenge", challenge),
            ("code_challenge_method", "S256"),
            ("resource", self._config.resource),
        ]
        if self._config.scopes:
            params.append(("scope", " ".join(self._config.scopes)))
        for name, value in (extra_params or {}).items():
            if name in RESERVED_AUTHORIZATION_PARAMS or (name == "scope" and self._config.scopes):
                self._logger.warning("mcp.oauth.extra_param_ignored", param=name)
                continue
            params.append((name, value))

        url = add_params_to_uri(metadata.authorization_endpoint, params)
        self._logger.info(
            "mcp.oauth.flow_started",
            issuer=metadata.issuer,
            resource=self._config.resource,
            pending=self._sessions.size(),
        )
        return AuthorizationRequest(authorization_url=url, state=state)

    async def handle_callback(self, code: str, state: str, redirect_uri: str) -> TokenResult:
        """Redeem ``state`` and exchange ``code`` for tokens.

        Raises:
            InvalidStateError: ``state`` unknown, already used, or older than 10 minutes.
            ConfigurationError: The server advertises no token endpoint.
            UpstreamError: Token request failed or returned a non-2xx status.
        """
        self._sessions.cleanup_expired()
        session = self._sessions.pop(state)
        if session is None:
            self._logger.warning("mcp.oauth.invalid_state")
            raise InvalidStateError()

        if session.redirect_uri != redirect_uri:
            self._logger.warning(
                "mcp.oauth.redirect_uri_changed",
                expected=session.redirect_uri,
                received=redirect_uri,
            )

        metadata = await self._metadata()
        if not metadata.token_endpoint:
            raise ConfigurationError(
                "Authorization server metadata has no token_endpoint",
                details={"issuer": metadata.issuer},
            )

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": session.code_verifier,
            "resource": session.resource_uri,
            "client_id": self._config.client_id,
        }
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(self._config.timeout)}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        auth = (
            (self._config.client_id, self._config.client_secret)
            if self._config.client_secret
            else None
        )

        try:
            async with httpx.AsyncClient(**kwargs) as client:
                resp = await client.post(
                    metadata.token_endpoint,
                    data=data,
                    auth=auth,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Token request failed: {e}",
                details={"token_endpoint": metadata.token_endpoint},
            ) from e

        if not resp.is_success:
            self._logger.warning(
                "mcp.oauth.token_exchange_failed",
                token_endpoint=metadata.token_endpoint,
                status_code=resp.status_code,
            )
            raise UpstreamError(
                f"Token exchange failed with status {resp.status_code}: {resp.text}",
                details={"token_endpoint": metadata.token_endpoint},
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamError("Token response is not valid JSON") from e

        result = _parse_token_response(body)
        self._logger.info(
            "mcp.oauth.token_acquired",
            token_endpoint=metadata.token_endpoint,
            expires_in=result.expires_in,
        )
        return result

    def pending_flows(self) -> int:
        """Return the number of unexpired pending flows."""
        self._sessions.cleanup_expired()
        return self._sessions.size()
