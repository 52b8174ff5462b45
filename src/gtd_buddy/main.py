"""Command-line interface for the GTD-Buddy MCP server."""

import argparse
import asyncio
import logging
import sys

import uvicorn

from .task_management.catalog import ToolCatalog
from .task_management.config import ServerConfig
from .task_management.database import SQLiteDocumentStore
from .task_management.exceptions import ConfigurationError
from .task_management.http_server import create_app
from .task_management.mcp_server import TOOL_NAMES, create_mcp_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="GTD-Buddy MCP Server - GTD task management tools for AI assistants",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gtd-buddy-mcp                          # Serve MCP over HTTP on HOST:PORT
  gtd-buddy-mcp --port 8080 -v           # Custom port, debug logging
  gtd-buddy-mcp --transport stdio        # Single local client over stdio

Environment:
  GTD_USER_ID         User whose tasks this server manages (required)
  GTD_DATABASE_PATH   Path to the task store database (required)
  GTD_API_TOKEN       Bearer token required on the HTTP endpoint (optional)
  GTD_TIMEZONE        IANA timezone defining "today" (default: system)
  GTD_STORE_TIMEOUT   Seconds before a store call fails (default: 10)
  GTD_SESSION_IDLE_TIMEOUT
                      Seconds before an idle HTTP session is closed (default: 1800)
  HOST, PORT          HTTP bind address (default: 0.0.0.0:3001)

Variables may also be set in a .env file in the working directory.
        """,
    )

    parser.add_argument(
        "--transport",
        choices=["http", "stdio"],
        default="http",
        help="Transport to serve MCP on (default: http)",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind the HTTP server to (overrides HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind the HTTP server to (overrides PORT)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def configure_logging(verbose: bool) -> None:
    """Log to stderr so stdio transport output stays clean."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


async def run_stdio(config: ServerConfig) -> None:
    """
    Serve a single MCP client over stdio.

    Args:
        config: Process configuration
    """
    store = SQLiteDocumentStore(config.database_path, timeout=config.store_timeout)
    await store.initialize()
    try:
        catalog = ToolCatalog(store, config.user_id, timezone=config.timezone)
        mcp = create_mcp_server(catalog)
        logger.info(
            f"MCP Server initialized with {len(TOOL_NAMES)} tools "
            f"(transport=stdio, user={config.user_id})"
        )
        await mcp.run_async(transport="stdio")
    finally:
        await store.close()


def run_http(config: ServerConfig, host: str, port: int, verbose: bool) -> None:
    """
    Serve MCP over HTTP with one session per client.

    Args:
        config: Process configuration
        host: Bind host
        port: Bind port
        verbose: Enable uvicorn debug logging
    """
    logger.info(
        f"MCP Server initialized with {len(TOOL_NAMES)} tools "
        f"(transport=http, user={config.user_id})"
    )
    logger.info(f"Server will listen on http://{host}:{port}/mcp")
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_level="debug" if verbose else "info",
    )


def cli_entry() -> None:
    """CLI entry point for the MCP server."""
    parser = create_argument_parser()
    args = parser.parse_args()
    configure_logging(args.verbose)

    try:
        config = ServerConfig.from_env()
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        if args.transport == "stdio":
            asyncio.run(run_stdio(config))
        else:
            run_http(
                config,
                host=args.host or config.host,
                port=args.port if args.port is not None else config.port,
                verbose=args.verbose,
            )
    except KeyboardInterrupt:
        pass  # Graceful shutdown


if __name__ == "__main__":
    cli_entry()
