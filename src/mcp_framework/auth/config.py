"""OAuth resource server configuration.

Bundles the validator configuration with the resource identity published in
Protected Resource Metadata, and builds the matching token validator.

Environment variables read by ``load_oauth_config_from_env``:
    MCP_OAUTH_RESOURCE: Canonical URI of this server (enables OAuth when set).
    MCP_OAUTH_AUTHORIZATION_SERVERS: Comma-separated issuer URLs.
    MCP_OAUTH_VALIDATION: ``jwt`` (default) or ``introspection``.
    MCP_OAUTH_JWKS_URI, MCP_OAUTH_ISSUER, MCP_OAUTH_AUDIENCE, MCP_OAUTH_ALGORITHMS:
        JWT validation settings. Issuer defaults to the first authorization
        server and audience to the resource.
    MCP_OAUTH_INTROSPECTION_ENDPOINT: RFC 7662 endpoint for introspection.
    MCP_OAUTH_CLIENT_ID, MCP_OAUTH_CLIENT_SECRET: Client credentials used by
        introspection and the authorization code flow.
    MCP_OAUTH_SCOPES: Space- or comma-separated scopes for the flow.
    MCP_OAUTH_CACHE_TTL: Bearer decision cache TTL in seconds.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

import httpx
import structlog

from mcp_framework.auth.flow import DEFAULT_CALLBACK_PATH, AuthorizationFlowConfig
from mcp_framework.auth.introspection import IntrospectionConfig, IntrospectionValidator
from mcp_framework.auth.jwks import DEFAULT_ALGORITHMS, JWTValidationConfig, JWTValidator
from mcp_framework.errors import ConfigurationError

DEFAULT_HEADER_NAME = "Authorization"
DEFAULT_DECISION_CACHE_TTL = 300.0

TokenValidator = Union[JWTValidator, IntrospectionValidator]
ValidationConfig = Union[JWTValidationConfig, IntrospectionConfig]


@dataclass
class OAuthConfig:
    """Resource server OAuth configuration.

    Attributes:
        authorization_servers: Issuer URLs advertised in resource metadata.
        resource: Canonical URI of this server, used as the token audience.
        validation: JWT or introspection validator settings.
        header_name: Header carrying the bearer token.
        cache_ttl: Seconds a bearer decision stays cached.
        client_id: Client id for the authorization code flow.
        client_secret: Client secret for the authorization code flow.
        scopes: Scopes requested by the authorization code flow.
        callback_path: Path of the OAuth callback route.
    """

    authorization_servers: list[str]
    resource: str
    validation: ValidationConfig
    header_name: str = DEFAULT_HEADER_NAME
    cache_ttl: float = DEFAULT_DECISION_CACHE_TTL
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    callback_path: str = DEFAULT_CALLBACK_PATH

    def __post_init__(self) -> None:
        if not self.resource:
            raise ConfigurationError("OAuth configuration requires a resource URI")
        if not [s for s in self.authorization_servers if s]:
            raise ConfigurationError("OAuth configuration requires at least one authorization server")
        if not self.header_name:
            raise ConfigurationError("OAuth header_name must not be empty")

    def flow_config(self) -> Optional[AuthorizationFlowConfig]:
        """Return the authorization code flow settings, or None without a client id."""
        if not self.client_id:
            return None
        return AuthorizationFlowConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            resource=self.resource,
            authorization_servers=list(self.authorization_servers),
            scopes=list(self.scopes),
            callback_path=self.callback_path,
        )


def create_token_validator(
    config: ValidationConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    logger: Optional[structlog.stdlib.BoundLogger] = None,
) -> TokenValidator:
    """Build the validator matching ``config``.

    Raises:
        ConfigurationError: Required settings for the chosen variant are missing.
    """
    if isinstance(config, JWTValidationConfig):
        if not config.jwks_uri:
            raise ConfigurationError("OAuth JWT validation requires jwks_uri")
        if not config.issuer:
            raise ConfigurationError("OAuth JWT validation requires an issuer")
        if not config.audience:
            raise ConfigurationError("OAuth JWT validation requires an audience")
        return JWTValidator(config, transport=transport, logger=logger)
    if isinstance(config, IntrospectionConfig):
        if not config.endpoint:
            raise ConfigurationError("OAuth introspection validation requires an endpoint")
        if not config.client_id or not config.client_secret:
            raise ConfigurationError("OAuth introspection validation requires client credentials")
        return IntrospectionValidator(config, transport=transport, logger=logger)
    raise ConfigurationError(f"Unsupported validation config: {type(config).__name__}")


def _split(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part for part in value.replace(",", " ").split() if part]


def load_oauth_config_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[OAuthConfig]:
    """Build an ``OAuthConfig`` from ``MCP_OAUTH_*`` variables.

    Returns:
        The configuration, or None when ``MCP_OAUTH_RESOURCE`` is unset.

    Raises:
        ConfigurationError: OAuth is enabled but a required variable is missing.
    """
    env = os.environ if environ is None else environ
    resource = env.get("MCP_OAUTH_RESOURCE", "").strip()
    if not resource:
        return None

    servers = _split(env.get("MCP_OAUTH_AUTHORIZATION_SERVERS"))
    if not servers:
        raise ConfigurationError("MCP_OAUTH_AUTHORIZATION_SERVERS is required when OAuth is enabled")

    client_id = env.get("MCP_OAUTH_CLIENT_ID") or None
    client_secret = env.get("MCP_OAUTH_CLIENT_SECRET") or None
    mode = env.get("MCP_OAUTH_VALIDATION", "jwt").strip().lower()

    validation: ValidationConfig
    if mode == "jwt":
        jwks_uri = env.get("MCP_OAUTH_JWKS_URI", "").strip()
        if not jwks_uri:
            raise ConfigurationError("OAuth JWT validation requires jwks_uri (MCP_OAUTH_JWKS_URI)")
        validation = JWTValidationConfig(
            jwks_uri=jwks_uri,
            issuer=env.get("MCP_OAUTH_ISSUER") or servers[0],
            audience=env.get("MCP_OAUTH_AUDIENCE") or resource,
            algorithms=_split(env.get("MCP_OAUTH_ALGORITHMS")) or list(DEFAULT_ALGORITHMS),
        )
    elif mode == "introspection":
        endpoint = env.get("MCP_OAUTH_INTROSPECTION_ENDPOINT", "").strip()
        if not endpoint or not client_id or not client_secret:
            raise ConfigurationError(
                "OAuth introspection validation requires MCP_OAUTH_INTROSPECTION_ENDPOINT, "
                "MCP_OAUTH_CLIENT_ID and MCP_OAUTH_CLIENT_SECRET"
            )
        validation = IntrospectionConfig(
            endpoint=endpoint, client_id=client_id, client_secret=client_secret
        )
    else:
        raise ConfigurationError(f"Unknown MCP_OAUTH_VALIDATION: {mode!r}")

    try:
        cache_ttl = float(env.get("MCP_OAUTH_CACHE_TTL", DEFAULT_DECISION_CACHE_TTL))
    except ValueError as e:
        raise ConfigurationError("MCP_OAUTH_CACHE_TTL must be a number") from e

    return OAuthConfig(
        authorization_servers=servers,
        resource=resource,
        validation=validation,
        cache_ttl=cache_ttl,
        client_id=client_id,
        client_secret=client_secret,
        scopes=_split(env.get("MCP_OAUTH_SCOPES")),
    )
