"""FastAPI application factory for the MCP transports.

Routes:
    GET  /health                                  liveness, never authenticated
    GET  /.well-known/oauth-protected-resource    RFC 9728 metadata, never authenticated
    GET  <callback_path>                          OAuth callback (when a client id is configured)
    POST|GET|DELETE <endpoint>                    streamable HTTP (``http-stream``)
    GET  <endpoint>, POST <message_endpoint>      SSE (``sse``)
"""

from __future__ import annotations

import html
import inspect
from collections.abc import Awaitable
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional, Union

import httpx
from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from mcp_framework import __version__
from mcp_framework.auth.authenticator import ResourceServerAuthenticator
from mcp_framework.auth.config import OAuthConfig
from mcp_framework.auth.flow import AuthorizationFlowManager, TokenResult
from mcp_framework.discovery import wellknown
from mcp_framework.errors import MCPFrameworkError
from mcp_framework.observability import get_logger
from mcp_framework.transport.config import ServerConfig
from mcp_framework.transport.gate import TransportAuthGate
from mcp_framework.transport.handlers import HandlerRegistry, create_default_registry
from mcp_framework.transport.middleware import TransportCORSMiddleware
from mcp_framework.transport.session import SessionRegistry
from mcp_framework.transport.sse import SSETransport
from mcp_framework.transport.streamable_http import StreamableHTTPTransport

logger = get_logger(__name__)

CallbackHook = Callable[[TokenResult, str], Union[None, Awaitable[None]]]
ErrorHook = Callable[[Exception, Optional[str]], Union[None, Awaitable[None]]]

SUCCESS_PAGE = """<html>
  <body>
    <h1>Authorization Successful</h1>
    <p>You can now close this window and return to your application.</p>
    <script>setTimeout(() => window.close(), 2000);</script>
  </body>
</html>
"""


def _error_page(title: str, *lines: str) -> str:
    body = "\n".join(f"    <p>{html.escape(line)}</p>" for line in lines if line)
    return f"<html>\n  <body>\n    <h1>{html.escape(title)}</h1>\n{body}\n  </body>\n</html>\n"


async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


def callback_redirect_uri(request: Request) -> str:
    """Rebuild the redirect URI the authorization server called back on."""
    proto = request.headers.get("x-forwarded-proto", "http").split(",")[0].strip()
    host = request.headers.get("host", request.url.netloc)
    return f"{proto}://{host}{request.url.path}"


def create_app(
    config: Optional[ServerConfig] = None,
    oauth_config: Optional[OAuthConfig] = None,
    registry: Optional[HandlerRegistry] = None,
    *,
    authenticator: Optional[ResourceServerAuthenticator] = None,
    flow_manager: Optional[AuthorizationFlowManager] = None,
    on_callback: Optional[CallbackHook] = None,
    on_error: Optional[ErrorHook] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Transport settings; defaults to streamable HTTP on ``/mcp``.
        oauth_config: Enables bearer authentication, protected resource
            metadata and (with a client id) the OAuth callback route.
        registry: JSON-RPC handlers; defaults to ``initialize`` and ``ping``.
        authenticator: Overrides the authenticator built from ``oauth_config``.
        flow_manager: Overrides the PKCE flow manager built from ``oauth_config``.
        on_callback: Called with ``(TokenResult, state)`` after a successful callback.
        on_error: Called with ``(error, state)`` when a callback fails.
        http_transport: httpx transport for upstream calls (testing).

    Raises:
        ConfigurationError: Invalid OAuth or transport configuration.

    Example:
        >>> app = create_app(ServerConfig(transport="sse"), oauth_config)
        >>> # uvicorn.run(app, host="127.0.0.1", port=8080)
    """
    config = config or ServerConfig()
    registry = registry or create_default_registry(server_name=config.server_name)

    metadata: Optional[wellknown.ProtectedResourceMetadata] = None
    if oauth_config is not None:
        metadata = wellknown.ProtectedResourceMetadata(
            oauth_config.resource, oauth_config.authorization_servers
        )
        if authenticator is None:
            authenticator = ResourceServerAuthenticator(oauth_config, transport=http_transport)
        if flow_manager is None:
            flow_config = oauth_config.flow_config()
            if flow_config is not None:
                flow_manager = AuthorizationFlowManager(flow_config, transport=http_transport)

    sessions = SessionRegistry()
    gate = TransportAuthGate(authenticator, config.auth_endpoints)

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> Any:
        yield
        sessions.close_all()

    app = FastAPI(
        title="MCP Server",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=_lifespan,
    )
    app.state.config = config
    app.state.sessions = sessions
    app.state.handlers = registry
    app.state.gate = gate
    app.state.authenticator = authenticator
    app.state.flow_manager = flow_manager
    app.state.protected_resource_metadata = metadata

    if config.cors is not None:
        app.add_middleware(TransportCORSMiddleware, **config.cors.middleware_options())

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness probe: always OK if the process is running."""
        return JSONResponse(content={"status": "ok"})

    @app.get(wellknown.WELLKNOWN_PROTECTED_RESOURCE_PATH)
    async def protected_resource_metadata() -> Response:
        return wellknown.get_protected_resource_response(metadata)

    if flow_manager is not None:
        callback_path = flow_manager.config.callback_path

        @app.get(callback_path)
        async def oauth_callback(request: Request) -> Response:
            params = request.query_params
            state = params.get("state")
            error = params.get("error")
            if error:
                description = params.get("error_description") or ""
                logger.error("mcp.oauth.callback_error", error=error, description=description)
                await _call_hook(on_error, Exception(description or error), state)
                return HTMLResponse(
                    _error_page("Authorization Failed", f"Error: {error}", description),
                    status_code=400,
                )

            code = params.get("code")
            if not code or not state:
                logger.error("mcp.oauth.callback_missing_params")
                return PlainTextResponse("Missing code or state parameter", status_code=400)

            redirect_uri = callback_redirect_uri(request)
            try:
                result = await flow_manager.handle_callback(code, state, redirect_uri)
            except MCPFrameworkError as e:
                logger.error("mcp.oauth.callback_failed", error=e.message, error_type=e.type)
                await _call_hook(on_error, e, state)
                return HTMLResponse(_error_page("Authorization Error", e.message), status_code=500)

            await _call_hook(on_callback, result, state)
            logger.info("mcp.oauth.callback_succeeded")
            return HTMLResponse(SUCCESS_PAGE)

    endpoint = config.endpoint or ""
    if config.transport == "sse":
        sse = SSETransport(
            sessions,
            registry,
            gate,
            message_endpoint=config.message_endpoint,
            max_message_size=config.max_message_size,
            ping_interval=config.ping_interval,
        )
        app.state.transport = sse
        app.add_api_route(endpoint, sse.handle_stream, methods=["GET"], response_model=None)
        app.add_api_route(
            config.message_endpoint, sse.handle_message, methods=["POST"], response_model=None
        )
    else:
        http = StreamableHTTPTransport(
            sessions,
            registry,
            gate,
            response_mode=config.response_mode,
            max_message_size=config.max_message_size,
            ping_interval=config.ping_interval,
        )
        app.state.transport = http
        app.add_api_route(endpoint, http.handle_post, methods=["POST"], response_model=None)
        app.add_api_route(endpoint, http.handle_get, methods=["GET"], response_model=None)
        app.add_api_route(endpoint, http.handle_delete, methods=["DELETE"], response_model=None)

    logger.info(
        "mcp.server.created",
        transport=config.transport,
        endpoint=endpoint,
        oauth=oauth_config is not None,
        callback=flow_manager is not None,
        cors=config.cors is not None,
    )
    return app
