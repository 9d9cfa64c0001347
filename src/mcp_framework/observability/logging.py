"""Structured logging for the MCP framework.

Every component logs through structlog with dotted event names
(``mcp.auth.rejected``, ``mcp.session.created``, ...) and key/value context.
Output goes through the stdlib root logger so uvicorn and library records
share one renderer.

Credential handling: a processor in the chain redacts event fields whose
name looks sensitive (tokens, secrets, PKCE verifiers, authorization codes
and headers) unless ``MCP_DEBUG`` is enabled. Bearer tokens should still be
passed through ``sanitize_token`` before they are logged at all.

Environment Variables:
    MCP_LOG_FORMAT: "json" (production) or "console" (development, default)
    MCP_LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR
    MCP_SERVICE_NAME: Value bound as ``service`` on every event
    MCP_DEBUG: "true"/"1"/"yes"/"on" disables redaction

Example:
    >>> from mcp_framework.observability.logging import configure_logging, get_logger
    >>> configure_logging(log_format="json", log_level="INFO")
    >>> get_logger("mcp_framework.auth").info("mcp.auth.accepted", sub="user-1")
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

REDACTED_PLACEHOLDER = "***REDACTED***"

ENV_DEBUG = "MCP_DEBUG"

# Field names (case-insensitive) whose values never reach output
_SENSITIVE_SUBSTRINGS = ("password", "secret", "verifier")
_SENSITIVE_SUFFIXES = ("token", "authorization", "auth_code", "authorization_code")
_SENSITIVE_NAMES = frozenset({"code"})

# structlog bookkeeping fields that must survive redaction
_PROTECTED_FIELDS = frozenset({"event", "level", "logger", "timestamp", "service"})

_configured = False


@dataclass(frozen=True)
class LoggingSettings:
    """Resolved logging options; explicit arguments win over environment."""

    log_format: str = "console"
    log_level: str = "INFO"
    service_name: str = "mcp-framework"

    @classmethod
    def resolve(
        cls,
        log_format: Optional[str] = None,
        log_level: Optional[str] = None,
        service_name: Optional[str] = None,
    ) -> "LoggingSettings":
        env = os.environ
        return cls(
            log_format=(log_format or env.get("MCP_LOG_FORMAT") or cls.log_format).lower(),
            log_level=(log_level or env.get("MCP_LOG_LEVEL") or cls.log_level).upper(),
            service_name=service_name or env.get("MCP_SERVICE_NAME") or cls.service_name,
        )


def _looks_sensitive(field: str) -> bool:
    lowered = field.lower()
    return (
        lowered in _SENSITIVE_NAMES
        or lowered.endswith(_SENSITIVE_SUFFIXES)
        or any(marker in lowered for marker in _SENSITIVE_SUBSTRINGS)
    )


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_for_logging(value)
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with sensitive values replaced.

    A field is sensitive when its name contains password, secret or
    verifier, ends in token or authorization, or names an authorization
    code. Nested dicts and lists are handled recursively.

    Example:
        >>> sanitize_for_logging({"sub": "alice", "access_token": "abc"})
        {'sub': 'alice', 'access_token': '***REDACTED***'}
    """
    return {
        key: REDACTED_PLACEHOLDER if _looks_sensitive(key) else _redact_value(value)
        for key, value in data.items()
    }


def is_debug_mode() -> bool:
    """True when ``MCP_DEBUG`` holds a truthy value."""
    return os.environ.get(ENV_DEBUG, "").strip().lower() in ("true", "1", "yes", "on")


def redact_sensitive_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """structlog processor applying ``sanitize_for_logging`` to event fields."""
    if is_debug_mode():
        return event_dict
    for key in list(event_dict):
        if key in _PROTECTED_FIELDS:
            continue
        if _looks_sensitive(key):
            event_dict[key] = REDACTED_PLACEHOLDER
        else:
            event_dict[key] = _redact_value(event_dict[key])
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive_fields,
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True, exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging(
    log_format: Optional[str] = None,
    log_level: Optional[str] = None,
    service_name: Optional[str] = None,
    force: bool = False,
) -> None:
    """Install the structlog pipeline on the stdlib root logger.

    Runs once per process unless ``force`` is set; ``get_logger`` calls it
    lazily with environment defaults.
    """
    global _configured

    if _configured and not force:
        return

    settings = LoggingSettings.resolve(log_format, log_level, service_name)
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))

    structlog.contextvars.bind_contextvars(service=settings.service_name)
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, configuring logging on first use.

    Components take an optional ``logger`` argument and fall back to the
    module logger obtained here.
    """
    if not _configured:
        configure_logging()
    return structlog.stdlib.get_logger(name)


__all__ = [
    "REDACTED_PLACEHOLDER",
    "LoggingSettings",
    "configure_logging",
    "get_logger",
    "is_debug_mode",
    "redact_sensitive_fields",
    "sanitize_for_logging",
]
