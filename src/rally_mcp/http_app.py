"""Rally MCP over streamable HTTP.

Routes:
- POST/GET/DELETE /mcp   MCP streamable HTTP; sessions are keyed by the mcp-session-id header
- GET /health            liveness plus the last credential validation outcome
- GET /                  server info
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

from rally_core.client import RallyClient
from rally_core.config import Settings
from rally_core.stories import StoryAdapter

from . import __version__
from .server import background_validation, create_server

logger = logging.getLogger("rally-mcp.http")


class MCPEndpoint:
    """ASGI endpoint forwarding requests to the session manager."""

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope, receive, send) -> None:
        await self.session_manager.handle_request(scope, receive, send)


def create_app(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    validate_on_startup: bool = True,
) -> FastAPI:
    """Build the FastAPI application around one RallyClient.

    Args:
        settings: Runtime settings
        transport: Optional httpx transport for the Rally client (tests)
        validate_on_startup: Run credential validation in the background at startup
    """
    client = RallyClient(settings, transport=transport)
    session_manager = StreamableHTTPSessionManager(app=create_server(StoryAdapter(client)))

    async def validate() -> None:
        app.state.connection = await background_validation(client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        validation = asyncio.create_task(validate()) if validate_on_startup else None
        try:
            async with session_manager.run():
                logger.info("Streamable HTTP session manager started")
                yield
        finally:
            if validation is not None:
                validation.cancel()
            await client.aclose()
            logger.info("HTTP server shut down")

    app = FastAPI(
        title="Rally MCP Server",
        description="Model Context Protocol server for Rally user stories",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.connection = None
    app.state.rally_client = client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["mcp-session-id"],
    )

    app.add_route("/mcp", MCPEndpoint(session_manager), methods=["GET", "POST", "DELETE"], include_in_schema=False)

    @app.get("/")
    def root():
        """Root endpoint with server info."""
        return {
            "name": "rally-mcp",
            "version": __version__,
            "transport": "streamable-http",
            "mcp": "/mcp",
            "health": "/health",
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        connection = app.state.connection
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connection": connection.to_dict() if connection is not None else None,
        }

    return app


def run_http(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the HTTP application with uvicorn."""
    import uvicorn

    host = host or settings.host
    port = port or settings.port
    logger.info(f"HTTP server listening on {host}:{port}")
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=logging.getLevelName(settings.logging_level).lower(),
    )
