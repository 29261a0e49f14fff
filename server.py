"""
MCP Server Entry Point for the Model Catalog
Run with: python server.py
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import httpx
from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from mcp import types

from catalog import __version__
from config import CatalogConfig, DatabaseConfig
from container import CatalogContainer
from database import DatabaseConnection
from utils.serialization import to_json

# Initialize logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize server
app = Server("model-catalog-mcp-server")
container: Optional[CatalogContainer] = None


@app.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """
    List the static catalog tools followed by every tool compiled from the
    current metadata bundle (list_<entity>, search_<entity>, ...).
    """
    from tools import get_tool_catalog

    if not container.config.enabled:
        return []
    bundle = await container.generator.get_metadata()
    return get_tool_catalog(bundle)


@app.call_tool()
async def handle_call_tool(
    name: str, arguments: dict[str, Any]
) -> list[types.TextContent]:
    """
    Route a tool call to its handler.

    Static tools are resolved through the handler registry; anything else is
    looked up in the compiled bundle and sent to the dispatcher.
    """
    arguments = arguments or {}

    try:
        from handlers import get_handler, get_compiled_handler
        from errors import CatalogDisabledError

        if not container.config.enabled:
            return [types.TextContent(
                type="text",
                text=to_json(CatalogDisabledError("AI assistant is disabled").to_envelope())
            )]

        handler = get_handler(name) or await get_compiled_handler(container, name)
        if not handler:
            return [types.TextContent(
                type="text",
                text=f"Unknown tool: {name}"
            )]

        return await handler(container, arguments)

    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return [types.TextContent(
            type="text",
            text=f"Error executing {name}: {e}"
        )]


async def _connect() -> CatalogContainer:
    catalog_config = CatalogConfig.from_environment()
    db_config = DatabaseConfig.from_environment()

    db = DatabaseConnection(db_config)
    await db.connect()
    logger.info(f"Connected to database: {db_config.database} at {db_config.host}")

    return CatalogContainer(db, catalog_config)


async def main():
    """Main entry point for MCP server"""
    global container

    try:
        container = await _connect()

        logger.info("Model Catalog MCP Server starting...")
        logger.info(f"Environment: {container.config.environment}")

        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="model-catalog-mcp-server",
                    server_version=__version__,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={}
                    )
                )
            )
    except Exception as e:
        logger.error(f"Failed to start MCP server: {e}", exc_info=True)
        raise
    finally:
        if container:
            await container.db.disconnect()
            logger.info("Database connection closed")


async def generate_metadata(output: Path):
    """Compile the bundle once and write it to a JSON file."""
    catalog = await _connect()
    try:
        bundle = await catalog.generator.write_metadata(output)
        print(f"Metadata written to {output}")
        print(f"  Entities: {len(bundle.entities)}")
        print(f"  Tools:    {len(bundle.tools)}")
        print(f"  Version:  {bundle.version}")
        for line in bundle.diagnostics:
            print(f"  ! {line}")
    finally:
        await catalog.db.disconnect()


def clear_remote_cache(host: str, port: int, schema: bool, metadata: bool) -> dict:
    """
    Ask a running HTTP server to clear its caches.
    The caches live in the server process, so there is nothing to clear locally.
    """
    prefix = CatalogConfig.from_environment().api_prefix.rstrip("/")
    caches = [name for name, flag in (("schema", schema), ("metadata", metadata)) if flag]

    response = httpx.post(
        f"http://{host}:{port}{prefix}/cache/clear",
        json={"caches": caches},
        timeout=10.0,
    )
    response.raise_for_status()
    return response.json()


def cli_entry():
    """Entry point for console script - wraps async main()"""
    import argparse

    parser = argparse.ArgumentParser(description="Model Catalog MCP Server")
    parser.add_argument('--version', '-v', action='store_true', help='Show version')
    parser.add_argument('--http', action='store_true', help='Run in HTTP mode')
    parser.add_argument('--port', type=int, default=3333, help='Port for HTTP mode (default: 3333)')
    parser.add_argument('--host', type=str, default='127.0.0.1', help='Host for HTTP mode (default: 127.0.0.1)')
    parser.add_argument('--generate-metadata', action='store_true', help='Write the compiled metadata bundle to a file and exit')
    parser.add_argument('--output', type=str, default='metadata.json', help='Output path for --generate-metadata (default: metadata.json)')
    parser.add_argument('--clear-cache', action='store_true', help='Clear the caches of the HTTP server at --host/--port')
    parser.add_argument('--schema', action='store_true', help='With --clear-cache: clear only the schema cache')
    parser.add_argument('--metadata', action='store_true', help='With --clear-cache: clear only the metadata cache')

    args = parser.parse_args()

    if args.version:
        print(f"model-catalog-mcp-server version {__version__}")
        sys.exit(0)

    if args.generate_metadata:
        asyncio.run(generate_metadata(Path(args.output)))
        sys.exit(0)

    if args.clear_cache:
        try:
            result = clear_remote_cache(args.host, args.port, args.schema, args.metadata)
        except httpx.HTTPError as e:
            print(f"Failed to clear cache: {e}", file=sys.stderr)
            sys.exit(1)
        print(to_json(result))
        sys.exit(0)

    if args.http:
        logger.info(f"Starting in HTTP mode on {args.host}:{args.port}")
        from transport.http import run_http_server
        run_http_server(host=args.host, port=args.port)
    else:
        # Default: stdio mode
        logger.info("Starting in stdio mode...")
        asyncio.run(main())


if __name__ == "__main__":
    cli_entry()
