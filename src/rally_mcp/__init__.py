"""Rally MCP Server - Model Context Protocol integration.

This package provides MCP (Model Context Protocol) integration for Rally,
enabling AI assistants to manage user stories and their relationships.

Modules:
- server: MCP server factory, tool dispatch, stdio transport and CLI entry point
- http_app: streamable HTTP transport (FastAPI)
- formatters: Response formatting utilities
- tools: MCP tool definitions
- handlers: Tool implementation handlers
- resources: MCP resource definitions and readers
"""

__version__ = "1.0.0"

# Export shared modules for use by both transports
from . import formatters
from . import tools
from . import handlers
from . import resources

__all__ = ["formatters", "tools", "handlers", "resources", "__version__"]
