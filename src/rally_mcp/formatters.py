"""Shared formatting functions for MCP responses.

This module provides consistent formatting for both stdio and HTTP MCP endpoints.
"""
import json

from rally_core.stories import StoryPage, StoryRecord


def format_created_story(story: StoryRecord) -> str:
    """Format the confirmation for a newly created story."""
    project_info = f"\nProject: {story.project_ref}" if story.project_ref else ""
    return f"""Successfully created story "{story.name}" with ID {story.formatted_id}
ObjectID: {story.object_id}{project_info}"""


def format_relationships(artifact_id: str, snapshot: dict) -> str:
    """Format a relationship snapshot as indented JSON."""
    return f"Relationships for {artifact_id}:\n{json.dumps(snapshot, indent=2)}"


def format_relationship_change(verb: str, relationship_type: str, source_id: str, target_id: str) -> str:
    return f"Successfully {verb} {relationship_type} relationship from {source_id} to {target_id}"


def story_uri(story: dict) -> str:
    return f"rally://story/{story.get('ObjectID')}"


def format_story_page(page: StoryPage) -> str:
    """Render a listing page as a JSON document (one entry per story, with its resource URI)."""
    stories = [{"uri": story_uri(story), **story} for story in page.results]
    document = {
        "stories": stories,
        "total": page.total,
        "pageSize": page.page_size,
        "startIndex": page.start_index,
        "hasMore": page.has_more,
    }
    if page.warnings:
        document["warnings"] = page.warnings
    return json.dumps(document, indent=2)


def format_story(story: dict) -> str:
    return json.dumps(story, indent=2)


def format_error_document(message: str) -> str:
    """JSON body returned by resources when the backend call fails."""
    return json.dumps({"error": message}, indent=2)
