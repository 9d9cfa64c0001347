"""MCP Framework Authentication Layer.

This module makes the server an OAuth 2.1 resource server:
- Bearer token validation via JWKS (JWT) or token introspection (RFC 7662)
- Authorization server metadata discovery (RFC 8414 / OIDC)
- Authorization code flow with PKCE and resource indicators (RFC 8707)
- Request authentication with ``WWW-Authenticate`` challenges (RFC 6750)

Public exports:
    OAuthConfig: Resource server configuration
    load_oauth_config_from_env: Build OAuthConfig from MCP_OAUTH_* variables
    create_token_validator: Build the validator for a validation config
    JWTValidator, JWTValidationConfig: JWKS-backed JWT validation
    IntrospectionValidator, IntrospectionConfig: RFC 7662 validation
    TokenClaims: Claims of an accepted token
    AuthorizationServerDiscovery, AuthorizationServerMetadata: Metadata discovery
    AuthorizationFlowManager, AuthorizationFlowConfig: PKCE flow
    AuthorizationRequest, TokenResult: Flow results
    ResourceServerAuthenticator, AuthDecision: Request authentication
"""

from mcp_framework.auth.authenticator import AuthDecision, ResourceServerAuthenticator
from mcp_framework.auth.claims import TokenClaims
from mcp_framework.auth.config import (
    OAuthConfig,
    TokenValidator,
    create_token_validator,
    load_oauth_config_from_env,
)
from mcp_framework.auth.discovery import AuthorizationServerDiscovery, AuthorizationServerMetadata
from mcp_framework.auth.flow import (
    AuthorizationFlowConfig,
    AuthorizationFlowManager,
    AuthorizationRequest,
    TokenResult,
)
from mcp_framework.auth.introspection import IntrospectionConfig, IntrospectionValidator
from mcp_framework.auth.jwks import JWTValidationConfig, JWTValidator

__all__ = [
    "AuthDecision",
    "AuthorizationFlowConfig",
    "AuthorizationFlowManager",
    "AuthorizationRequest",
    "AuthorizationServerDiscovery",
    "AuthorizationServerMetadata",
    "IntrospectionConfig",
    "IntrospectionValidator",
    "JWTValidationConfig",
    "JWTValidator",
    "OAuthConfig",
    "ResourceServerAuthenticator",
    "TokenClaims",
    "TokenResult",
    "TokenValidator",
    "create_token_validator",
    "load_oauth_config_from_env",
]
