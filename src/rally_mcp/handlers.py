"""Common MCP tool handlers shared between stdio and HTTP transports.

This module provides handler logic that can be used by both:
- rally_mcp/server.py (stdio transport)
- rally_mcp/http_app.py (streamable HTTP transport)

All handlers follow a consistent pattern:
- Accept: arguments dict (already validated against the tool's input schema), a StoryAdapter
  and a ProgressReporter for the call
- Return: tuple of (list[TextContent], Optional[dict]) where second element is structured content
- Raise: RallyError subclasses on failure; the server turns them into error results
- Log all operations for debugging
"""
import logging
from typing import Any, Optional

from mcp.types import ProgressToken, TextContent

from rally_core.relationships import RelationshipOp
from rally_core.stories import StoryAdapter, StoryCreate, StoryFields

from . import formatters

logger = logging.getLogger("rally-mcp.handlers")

ToolResult = tuple[list[TextContent], Optional[dict]]

UPDATABLE_FIELDS = ("name", "description", "state", "estimate", "priority")

PROGRESS_TOTAL = 100.0


class ProgressReporter:
    """Progress updates for one tool call.

    Updates are always logged. They are sent to the client as MCP progress
    notifications only when the request carried a progressToken.
    """

    def __init__(self, operation: str, session: Any = None, token: Optional[ProgressToken] = None):
        self.operation = operation
        self.session = session
        self.token = token

    async def report(self, progress: float, message: str) -> None:
        logger.info(f"Progress update for {self.operation}: {progress:g}% - {message}")
        if self.session is None or self.token is None:
            return
        await self.session.send_progress_notification(
            self.token,
            progress,
            total=PROGRESS_TOTAL,
            message=message,
        )


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


# ============================================================================
# Story Handlers
# ============================================================================

async def handle_create_story(arguments: dict, adapter: StoryAdapter, progress: ProgressReporter) -> ToolResult:
    """Create a story.

    projectId, when given and non-empty, overrides the configured default project.
    """
    await progress.report(10, "Preparing story data")
    fields = StoryCreate.model_validate(arguments)

    await progress.report(50, "Sending request to Rally API")
    story = await adapter.create(fields)
    logger.info(f"Successfully created story {story.formatted_id}: {story.name}")
    await progress.report(100, "Story created successfully")

    structured = {"formattedId": story.formatted_id, "objectId": story.object_id}
    return _text(formatters.format_created_story(story)), structured


async def handle_update_story(arguments: dict, adapter: StoryAdapter, progress: ProgressReporter) -> ToolResult:
    """Update only the fields present in the arguments.

    A field passed as null is sent as an explicit clear. Fails without any
    request when no field besides id is present.
    """
    await progress.report(10, "Preparing story update data")
    story_id = arguments["id"]
    fields = StoryFields.model_validate({k: v for k, v in arguments.items() if k in UPDATABLE_FIELDS})

    await progress.report(50, "Sending update request to Rally API")
    await adapter.update(story_id, fields)
    logger.info(f"Successfully updated story {story_id}")
    await progress.report(100, "Story updated successfully")

    return _text(f"Successfully updated story {story_id}"), None


async def handle_delete_story(arguments: dict, adapter: StoryAdapter, progress: ProgressReporter) -> ToolResult:
    story_id = arguments["id"]
    await progress.report(50, "Sending delete request to Rally API")
    await adapter.delete(story_id)
    await progress.report(100, "Story deleted successfully")
    return _text(f"Successfully deleted story {story_id}"), None


# ============================================================================
# Relationship Handlers
# ============================================================================

async def _change_relationship(
    arguments: dict,
    adapter: StoryAdapter,
    progress: ProgressReporter,
    op: RelationshipOp,
) -> ToolResult:
    source_id = arguments["sourceId"]
    target_id = arguments["targetId"]
    relationship_type = arguments["relationshipType"]
    verb = "created" if op is RelationshipOp.ADD else "removed"

    await progress.report(10, "Preparing relationship data")
    await progress.report(50, "Sending request to Rally API")
    await adapter.mutate_relationship(source_id, target_id, relationship_type, op)
    await progress.report(100, f"Relationship {verb} successfully")

    text = formatters.format_relationship_change(verb, relationship_type, source_id, target_id)
    return _text(text), None


async def handle_create_relationship(arguments: dict, adapter: StoryAdapter, progress: ProgressReporter) -> ToolResult:
    """Add a relationship from sourceId to targetId.

    Self-relationships are rejected before any request is made.
    """
    return await _change_relationship(arguments, adapter, progress, RelationshipOp.ADD)


async def handle_remove_relationship(arguments: dict, adapter: StoryAdapter, progress: ProgressReporter) -> ToolResult:
    """Remove a relationship; removing one that does not exist is a successful no-op."""
    return await _change_relationship(arguments, adapter, progress, RelationshipOp.REMOVE)


async def handle_get_relationships(arguments: dict, adapter: StoryAdapter, progress: ProgressReporter) -> ToolResult:
    artifact_id = arguments["artifactId"]
    await progress.report(50, "Fetching relationships from Rally API")
    snapshot = await adapter.get_relationships(artifact_id)
    logger.info(f"Retrieved relationships for {artifact_id}: {sorted(snapshot)}")
    await progress.report(100, "Relationships retrieved successfully")

    return _text(formatters.format_relationships(artifact_id, snapshot)), {"relationships": snapshot}
