"""Shared MCP tool definitions for Rally.

This module provides the definitive list of MCP tools used by both stdio and HTTP transports.
This prevents code drift and ensures both endpoints expose identical functionality.
"""

from mcp.types import Tool

from rally_core.relationships import RelationshipKind

RELATIONSHIP_TYPES = [kind.value for kind in RelationshipKind]


def _relationship_schema() -> dict:
    return {
        "type": "object",
        "properties": {
            "sourceId": {
                "type": "string",
                "minLength": 1,
                "description": "ID of the source artifact (the story being modified)"
            },
            "targetId": {
                "type": "string",
                "minLength": 1,
                "description": "ID of the target artifact"
            },
            "relationshipType": {
                "type": "string",
                "enum": RELATIONSHIP_TYPES,
                "description": "Relationship type: " + ", ".join(RELATIONSHIP_TYPES)
            }
        },
        "required": ["sourceId", "targetId", "relationshipType"]
    }


def get_tools() -> list[Tool]:
    """Get the list of all MCP tools for Rally story management."""
    return [
        # ============================================================================
        # Story Tools
        # ============================================================================
        Tool(
            name="createStory",
            description="Create a user story in the configured Rally workspace. "
                       "The story goes to the configured default project unless projectId is given. "
                       "Returns the new story's formatted ID (e.g., US123).",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Story name"
                    },
                    "description": {
                        "type": "string",
                        "description": "Story description (HTML allowed)"
                    },
                    "projectId": {
                        "type": "string",
                        "description": "Project ObjectID (overrides the default project)"
                    },
                    "state": {
                        "type": "string",
                        "description": "Schedule state (e.g., Defined, In-Progress, Completed, Accepted)"
                    },
                    "estimate": {
                        "type": "number",
                        "description": "Plan estimate in points"
                    },
                    "priority": {
                        "type": "string",
                        "description": "Priority"
                    }
                },
                "required": ["name"]
            }
        ),
        Tool(
            name="updateStory",
            description="Update fields of an existing story. Only the fields given are changed; "
                       "pass null for description or priority to clear it. "
                       "At least one field besides id is required.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Story ObjectID"
                    },
                    "name": {
                        "type": "string",
                        "minLength": 1,
                        "description": "New story name"
                    },
                    "description": {
                        "type": ["string", "null"],
                        "description": "New description (null clears it)"
                    },
                    "state": {
                        "type": "string",
                        "description": "New schedule state"
                    },
                    "estimate": {
                        "type": ["number", "null"],
                        "description": "New plan estimate (null clears it)"
                    },
                    "priority": {
                        "type": ["string", "null"],
                        "description": "New priority (null clears it)"
                    }
                },
                "required": ["id"]
            }
        ),
        Tool(
            name="deleteStory",
            description="Delete a story.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Story ObjectID"
                    }
                },
                "required": ["id"]
            }
        ),
        # ============================================================================
        # Relationship Tools
        # ============================================================================
        Tool(
            name="createRelationship",
            description="Link two artifacts. Parent sets the source's single parent; all other types "
                       "add the target to a collection on the source. Rally maintains the inverse link "
                       "(e.g., Predecessor ↔ Successor) on the target. Source and target must differ.",
            inputSchema=_relationship_schema()
        ),
        Tool(
            name="removeRelationship",
            description="Unlink two artifacts. Removing a Parent clears the source's parent. "
                       "Removing a relationship that does not exist succeeds without change.",
            inputSchema=_relationship_schema()
        ),
        Tool(
            name="getRelationships",
            description="Get an artifact's relationships as display names: Predecessors, Successors, "
                       "Children, Parent, Blocked, Blocker, Duplicates. Fields Rally does not return are omitted.",
            inputSchema={
                "type": "object",
                "properties": {
                    "artifactId": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Artifact ObjectID"
                    }
                },
                "required": ["artifactId"]
            }
        ),
    ]
