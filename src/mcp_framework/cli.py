"""Command-line interface for running an MCP server.

Configuration comes from ``MCP_*`` environment variables (see
``mcp_framework.transport.config`` and ``mcp_framework.auth.config``);
command-line options override them.

Example:
    >>> # From terminal:
    >>> # mcp-framework --version
    >>> # mcp-framework serve --transport sse --port 8080
    >>> # mcp-framework metadata
"""

from typing import Optional

import typer
import uvicorn

from mcp_framework import __version__
from mcp_framework.auth.config import load_oauth_config_from_env
from mcp_framework.discovery.wellknown import ProtectedResourceMetadata
from mcp_framework.errors import ConfigurationError
from mcp_framework.observability import configure_logging, get_logger
from mcp_framework.transport.config import ServerConfig
from mcp_framework.transport.server import create_app

app = typer.Typer(help="MCP Framework CLI.")

logger = get_logger(__name__)


def _version_callback(value: bool) -> None:
    """Print the version and exit when requested."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


VERSION_OPTION = typer.Option(
    False,
    "--version",
    help="Show MCP Framework version and exit.",
    callback=_version_callback,
    is_eager=True,
)
TRANSPORT_OPTION = typer.Option(None, "--transport", "-t", help="http-stream or sse.")
HOST_OPTION = typer.Option(None, "--host", help="Bind host.")
PORT_OPTION = typer.Option(None, "--port", "-p", help="Bind port.")
ENDPOINT_OPTION = typer.Option(None, "--endpoint", help="Transport endpoint path.")
LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, ...).")


@app.callback()
def cli(version: bool = VERSION_OPTION) -> None:
    """MCP Framework CLI entrypoint."""


def build_server_config(
    transport: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    endpoint: Optional[str] = None,
) -> ServerConfig:
    """Return ``ServerConfig.from_env()`` with command-line overrides applied."""
    env_config = ServerConfig.from_env()
    return ServerConfig(
        transport=transport or env_config.transport,  # type: ignore[arg-type]
        host=host or env_config.host,
        port=port or env_config.port,
        endpoint=endpoint or (env_config.endpoint if not transport else None),
        message_endpoint=env_config.message_endpoint,
        response_mode=env_config.response_mode,
        max_message_size=env_config.max_message_size,
        cors=env_config.cors,
        auth_endpoints=env_config.auth_endpoints,
    )


@app.command("serve")
def serve(
    transport: Optional[str] = TRANSPORT_OPTION,
    host: Optional[str] = HOST_OPTION,
    port: Optional[int] = PORT_OPTION,
    endpoint: Optional[str] = ENDPOINT_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
) -> None:
    """Run the MCP server with uvicorn."""
    configure_logging(log_level=log_level.upper() if log_level else None)
    try:
        config = build_server_config(transport, host, port, endpoint)
        oauth_config = load_oauth_config_from_env()
        server = create_app(config, oauth_config)
    except ConfigurationError as exc:
        raise typer.BadParameter(exc.message) from exc

    logger.info(
        "mcp.cli.serve",
        transport=config.transport,
        host=config.host,
        port=config.port,
        oauth=oauth_config is not None,
    )
    uvicorn.run(server, host=config.host, port=config.port, log_config=None)


@app.command("metadata")
def metadata() -> None:
    """Print the Protected Resource Metadata document (RFC 9728)."""
    try:
        oauth_config = load_oauth_config_from_env()
        if oauth_config is None:
            typer.echo("OAuth not configured (set MCP_OAUTH_RESOURCE)", err=True)
            raise typer.Exit(code=1)
        document = ProtectedResourceMetadata(
            oauth_config.resource, oauth_config.authorization_servers
        )
    except ConfigurationError as exc:
        raise typer.BadParameter(exc.message) from exc
    typer.echo(document.to_json())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
