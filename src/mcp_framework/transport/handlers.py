"""Handler registry for JSON-RPC method dispatch.

The transports hand every validated request or notification to a
``HandlerRegistry``. Only the session-level methods (``initialize`` and
``ping``) are handled by default; tool, prompt and resource dispatch is
registered on top by the application.

Thread Safety:
    All operations on HandlerRegistry are thread-safe. The registry uses
    an internal RLock to protect concurrent access to the handler mapping.

Example:
    >>> registry = create_default_registry(server_name="demo", server_version="1.0.0")
    >>> registry.register("tools/list", list_tools)
    >>> response = await registry.dispatch(message, context)
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable
from concurrent.futures import Executor
from threading import RLock
from typing import Any, Callable, Optional, Union

from mcp_framework import __version__
from mcp_framework.errors import MCPFrameworkError
from mcp_framework.observability import get_logger
from mcp_framework.transport.context import RequestContext
from mcp_framework.transport.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    JsonRpcRequest,
    JsonRpcResponse,
    error_body,
    to_request,
)

logger = get_logger(__name__)

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
DEFAULT_SERVER_NAME = "mcp-framework"

Handler = Callable[[JsonRpcRequest, RequestContext], Union[Any, Awaitable[Any]]]


class InvalidParamsError(MCPFrameworkError):
    """Raised by handlers to answer with JSON-RPC ``-32602``."""

    type = "invalid_params"


def validate_handler(handler: Handler) -> None:
    """Validate that a handler accepts ``(request, context)``.

    Raises:
        TypeError: If handler is not callable or has the wrong arity.
    """
    if not callable(handler):
        raise TypeError("Handler must be callable")
    try:
        sig = inspect.signature(handler)
    except (ValueError, TypeError):
        raise TypeError("Handler signature could not be inspected") from None
    params = list(sig.parameters)
    if len(params) == 2 or len(params) == 3 and params[0] in ("self", "cls"):
        return
    raise TypeError(f"Handler must accept (request, context); got {len(params)} parameters: {params}")


class HandlerRegistry:
    """Registry mapping JSON-RPC method names to handlers.

    Handlers may be sync or async. Sync handlers run in an executor so they
    never block the event loop.
    """

    def __init__(self, executor: Optional[Executor] = None) -> None:
        self._handlers: dict[str, Handler] = {}
        self._lock = RLock()
        self._executor = executor

    def register(self, method: str, handler: Handler) -> None:
        validate_handler(handler)
        with self._lock:
            is_override = method in self._handlers
            self._handlers[method] = handler
        logger.debug(
            "mcp.handler.registered",
            method=method,
            handler_name=getattr(handler, "__name__", str(handler)),
            is_override=is_override,
        )

    def has_handler(self, method: str) -> bool:
        with self._lock:
            return method in self._handlers

    def list_handlers(self) -> list[str]:
        with self._lock:
            return list(self._handlers.keys())

    async def dispatch(
        self, message: dict[str, Any], context: RequestContext
    ) -> Optional[dict[str, Any]]:
        """Dispatch one validated request or notification.

        Returns:
            The serialized JSON-RPC response for requests; None for
            notifications (which never produce a response, even on error).
        """
        request = to_request(message)
        start_time = time.perf_counter()

        with self._lock:
            handler = self._handlers.get(request.method)

        if handler is None:
            logger.warning("mcp.handler.not_found", method=request.method, **context.log_context())
            if request.is_notification:
                return None
            return error_body(METHOD_NOT_FOUND, request_id=request.id, data={"method": request.method})

        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(request, context)
            else:
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(self._executor, handler, request, context)
                if inspect.isawaitable(result):
                    result = await result
        except InvalidParamsError as e:
            logger.warning("mcp.handler.invalid_params", method=request.method, error=e.message)
            if request.is_notification:
                return None
            return error_body(INVALID_PARAMS, e.message, request_id=request.id)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "mcp.handler.error",
                method=request.method,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
                **context.log_context(),
            )
            if request.is_notification:
                return None
            return error_body(INTERNAL_ERROR, request_id=request.id)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "mcp.handler.completed",
            method=request.method,
            duration_ms=round(duration_ms, 2),
            **context.log_context(),
        )
        if request.id is None:
            return None
        return JsonRpcResponse(result=result if result is not None else {}, id=request.id).model_dump()


def create_initialize_handler(
    server_name: str = DEFAULT_SERVER_NAME,
    server_version: str = __version__,
    capabilities: Optional[dict[str, Any]] = None,
) -> Handler:
    """Create the ``initialize`` handler negotiating the protocol version."""

    async def initialize(request: JsonRpcRequest, context: RequestContext) -> dict[str, Any]:
        requested = request.named_params().get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        logger.info(
            "mcp.session.initialize",
            requested_version=requested,
            protocol_version=version,
            **context.log_context(),
        )
        return {
            "protocolVersion": version,
            "capabilities": dict(capabilities or {}),
            "serverInfo": {"name": server_name, "version": server_version},
        }

    return initialize


async def ping_handler(request: JsonRpcRequest, context: RequestContext) -> dict[str, Any]:
    return {}


async def initialized_notification_handler(
    request: JsonRpcRequest, context: RequestContext
) -> None:
    logger.debug("mcp.session.initialized", **context.log_context())


def create_default_registry(
    server_name: str = DEFAULT_SERVER_NAME,
    server_version: str = __version__,
    capabilities: Optional[dict[str, Any]] = None,
) -> HandlerRegistry:
    """Create a registry handling ``initialize``, ``ping`` and ``notifications/initialized``."""
    registry = HandlerRegistry()
    registry.register("initialize", create_initialize_handler(server_name, server_version, capabilities))
    registry.register("ping", ping_handler)
    registry.register("notifications/initialized", initialized_notification_handler)
    return registry
