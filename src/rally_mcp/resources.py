"""MCP resource definitions and readers.

Resources:
- rally://stories                listing (scoped to workspace and default project)
- rally://stories?<query>        listing with free-form Rally query parameters
- rally://story/{id}             single story by ObjectID
"""
import logging
from typing import Optional
from urllib.parse import parse_qsl, unquote, urlsplit

from mcp.types import Resource, ResourceTemplate

from rally_core.errors import RallyError
from rally_core.stories import StoryAdapter

from . import formatters

logger = logging.getLogger("rally-mcp.resources")

SCHEME = "rally"
JSON_MIME_TYPE = "application/json"


def get_resources() -> list[Resource]:
    return [
        Resource(
            uri="rally://stories",
            name="stories",
            description="User stories in the configured workspace and default project",
            mimeType=JSON_MIME_TYPE,
        ),
    ]


def get_resource_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            uriTemplate="rally://stories{?query*}",
            name="stories-query",
            description="User stories filtered by Rally query parameters "
                        "(e.g., rally://stories?pageSize=5&query=(ScheduleState = Defined))",
            mimeType=JSON_MIME_TYPE,
        ),
        ResourceTemplate(
            uriTemplate="rally://story/{id}",
            name="story",
            description="A single user story by ObjectID",
            mimeType=JSON_MIME_TYPE,
        ),
    ]


class UnknownResourceError(ValueError):
    """Raised for URIs outside the rally:// resource set."""


def parse_resource_uri(uri: str) -> tuple[str, Optional[str], dict[str, str]]:
    """Split a resource URI into (kind, story id, query parameters).

    Raises:
        UnknownResourceError: if the URI is not a known rally:// resource
    """
    parts = urlsplit(uri)
    if parts.scheme != SCHEME:
        raise UnknownResourceError(f"Unknown resource: {uri}")

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    path = parts.path.strip("/")

    if parts.netloc == "stories" and not path:
        return "stories", None, query
    if parts.netloc == "story" and path and "/" not in path:
        return "story", unquote(path), query
    raise UnknownResourceError(f"Unknown resource: {uri}")


async def read_stories(adapter: StoryAdapter, query_params: dict[str, str]) -> str:
    logger.info(f"Fetching stories with query parameters: {query_params}")
    try:
        page = await adapter.list_stories(query_params)
    except RallyError as e:
        logger.error(f"Error fetching stories: {e}")
        return formatters.format_error_document(str(e))
    return formatters.format_story_page(page)


async def read_story(adapter: StoryAdapter, story_id: str) -> str:
    logger.info(f"Fetching story {story_id}")
    try:
        story = await adapter.get(story_id)
    except RallyError as e:
        logger.error(f"Error fetching story {story_id}: {e}")
        return formatters.format_error_document(str(e))
    if not story:
        return formatters.format_error_document(f"Story not found with ID: {story_id}")
    return formatters.format_story(story)


async def read_resource(adapter: StoryAdapter, uri: str) -> str:
    """Read a rally:// resource and return its JSON text."""
    kind, story_id, query_params = parse_resource_uri(uri)
    if kind == "story":
        return await read_story(adapter, story_id)
    return await read_stories(adapter, query_params)
