"""Rally MCP Server - Expose Rally user stories and relationships to AI assistants."""
import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any, Awaitable, Callable, Optional

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, Resource, ResourceTemplate, TextContent, Tool
from pydantic import AnyUrl

from rally_core.client import RallyClient
from rally_core.config import Settings, get_settings
from rally_core.connection import ConnectionCheck, ConnectionStatus, validate_connection
from rally_core.errors import ConfigurationError, RallyError, ValidationError
from rally_core.stories import StoryAdapter

from . import __version__
from . import handlers
from . import resources
from . import tools

logger = logging.getLogger("rally-mcp")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

Handler = Callable[[dict, StoryAdapter, handlers.ProgressReporter], Awaitable[handlers.ToolResult]]

# Tool name -> (handler, action used in error messages)
TOOL_HANDLERS: dict[str, tuple[Handler, str]] = {
    # Story handlers
    "createStory": (handlers.handle_create_story, "creating story"),
    "updateStory": (handlers.handle_update_story, "updating story"),
    "deleteStory": (handlers.handle_delete_story, "deleting story"),
    # Relationship handlers
    "createRelationship": (handlers.handle_create_relationship, "creating relationship"),
    "removeRelationship": (handlers.handle_remove_relationship, "removing relationship"),
    "getRelationships": (handlers.handle_get_relationships, "getting relationships"),
}


def configure_logging(level: int = logging.INFO) -> None:
    """Send all logging to stderr; stdout carries the stdio protocol stream."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def _error_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=True)


async def dispatch_tool(
    name: str,
    arguments: Optional[dict],
    adapter: StoryAdapter,
    progress: Optional[handlers.ProgressReporter] = None,
) -> CallToolResult:
    """Run a tool handler; every failure becomes an error result, nothing is raised.

    Without a reporter, progress is only logged.
    """
    logger.info(f"Tool call: {name} with arguments: {arguments}")

    entry = TOOL_HANDLERS.get(name)
    if entry is None:
        logger.warning(f"Unknown tool requested: {name}")
        return _error_result(f"Unknown tool: {name}")
    handler, action = entry
    if progress is None:
        progress = handlers.ProgressReporter(name)

    try:
        content, structured = await handler(dict(arguments or {}), adapter, progress)
    except ValidationError as e:
        logger.warning(f"Rejected {name} call: {e}")
        return _error_result(str(e))
    except RallyError as e:
        logger.error(f"Rally error during {name} call: {type(e).__name__}: {e}")
        return _error_result(f"Error {action}: {e}")
    except Exception as e:
        logger.error(f"Unexpected error during {name} call:")
        logger.error(f"  Error type: {type(e).__name__}")
        logger.error(f"  Error message: {str(e)}")
        logger.error(f"  Traceback:\n{traceback.format_exc()}")
        return _error_result(f"Error {action}: {type(e).__name__}: {e}")

    return CallToolResult(content=content, structuredContent=structured, isError=False)


def create_server(adapter: StoryAdapter) -> Server:
    """Build an MCP server bound to one StoryAdapter (and therefore one RallyClient)."""
    server = Server("rally-mcp", version=__version__)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available MCP tools for Rally story management."""
        return tools.get_tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: Any) -> CallToolResult:
        ctx = server.request_context
        token = ctx.meta.progressToken if ctx.meta is not None else None
        progress = handlers.ProgressReporter(name, session=ctx.session, token=token)
        return await dispatch_tool(name, arguments, adapter, progress)

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        return resources.get_resources()

    @server.list_resource_templates()
    async def list_resource_templates() -> list[ResourceTemplate]:
        return resources.get_resource_templates()

    @server.read_resource()
    async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
        text = await resources.read_resource(adapter, str(uri))
        return [ReadResourceContents(content=text, mime_type=resources.JSON_MIME_TYPE)]

    return server


async def background_validation(client: RallyClient) -> ConnectionCheck:
    """Validate credentials without blocking startup; logs the outcome."""
    logger.info("Starting Rally API validation in background")
    progress = handlers.ProgressReporter("server_initialization")
    await progress.report(10, "Server initialized, validating Rally API connection")
    check = await validate_connection(client)
    await progress.report(100, f"Rally API validation finished: {check.status.value}")

    if check.status is ConnectionStatus.VALID:
        logger.info(f"Rally API validation completed successfully (workspace {check.workspace_ref})")
    elif check.status is ConnectionStatus.VALID_WITH_WARNING:
        logger.warning(f"Rally API validation succeeded with a warning: {check.message}")
    else:
        logger.warning(f"WARNING: Rally API credentials issue detected - {check.message}")
        logger.warning("The server is running, but Rally API calls may fail")
        logger.warning("Check your .env file and make sure RALLY_API_KEY and RALLY_WORKSPACE are correct")
    return check


async def run_stdio(settings: Settings) -> None:
    """Run the MCP server over stdio."""
    async with RallyClient(settings) as client:
        server = create_server(StoryAdapter(client))
        validation = asyncio.create_task(background_validation(client))
        try:
            async with stdio_server() as (read_stream, write_stream):
                logger.info("STDIO server started")
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            validation.cancel()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rally-mcp", description="MCP server for Rally user stories")
    parser.add_argument("--http", action="store_true", help="Serve streamable HTTP instead of stdio")
    parser.add_argument("--host", help="HTTP bind address (default: HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, help="HTTP port (default: PORT or 3000)")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    """Console entry point."""
    args = parse_args(argv)
    configure_logging()

    try:
        settings = get_settings()
    except ConfigurationError as e:
        logger.error(f"Server failed to start: {e}")
        sys.exit(1)
    logging.getLogger().setLevel(settings.logging_level)

    if args.http:
        from .http_app import run_http

        run_http(settings, host=args.host, port=args.port)
    else:
        asyncio.run(run_stdio(settings))


if __name__ == "__main__":
    main()
