"""Story (HierarchicalRequirement) operations against the Rally API.

StoryAdapter translates sparse field sets into Rally's nested object envelope,
merges the workspace and default project context, and maps responses back to
StoryRecord. Every operation resolves the workspace reference on first use;
later calls on the same client reuse the cached reference.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .client import ARTIFACT_TYPE, RallyClient
from .errors import ValidationError
from .relationships import (
    SNAPSHOT_FIELDS,
    RelationshipKind,
    RelationshipOp,
    RelationshipSnapshot,
    parse_relationships,
    plan_mutation,
)

logger = logging.getLogger("rally-core.stories")

# Story field -> Rally attribute
FIELD_MAP: dict[str, str] = {
    "name": "Name",
    "description": "Description",
    "state": "ScheduleState",
    "estimate": "PlanEstimate",
    "priority": "Priority",
}


def project_ref(project_id: str) -> str:
    return f"/project/{project_id}"


class StoryFields(BaseModel):
    """Sparse story fields.

    Only fields explicitly given are sent: an omitted field is left untouched,
    a field given as None (or an empty string) is sent as an explicit clear.
    Presence is tracked by pydantic's ``model_fields_set``.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = Field(None, alias="projectId")
    state: Optional[str] = None
    estimate: Optional[float] = None
    priority: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def to_backend(self, exclude_none: bool = False) -> dict:
        """Map present fields to Rally attribute names."""
        changes: dict[str, Any] = {}
        for name, value in self.model_dump(exclude_unset=True, exclude_none=exclude_none).items():
            if name == "project_id":
                changes["Project"] = {"_ref": project_ref(value)} if value else None
            else:
                changes[FIELD_MAP[name]] = value
        return changes


class StoryCreate(StoryFields):
    """Fields for a new story; a non-empty name is required."""

    name: str = Field(..., min_length=1)


class StoryRecord(BaseModel):
    """A story as returned by Rally.

    Backend fields beyond the modeled ones are kept untouched in ``model_extra``.
    """

    object_id: int = Field(alias="ObjectID")
    formatted_id: Optional[str] = Field(None, alias="FormattedID")
    name: str = Field(alias="Name", min_length=1)
    description: Optional[str] = Field(None, alias="Description")
    project: Optional[dict] = Field(None, alias="Project")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def project_ref(self) -> Optional[str]:
        return (self.project or {}).get("_ref")


@dataclass
class StoryPage:
    """One page of a story listing."""

    results: list[dict]
    total: int
    page_size: int
    start_index: int = 1
    warnings: list[str] = field(default_factory=list)

    @property
    def has_more(self) -> bool:
        # Rally start indexes are 1-based
        return self.start_index - 1 + len(self.results) < self.total


class StoryAdapter:
    """Create, update, delete and read stories; apply relationship changes."""

    def __init__(self, client: RallyClient):
        self.client = client

    async def _scope_params(self) -> dict:
        workspace_ref = await self.client.ensure_workspace()
        return {"workspace": workspace_ref, "project": self.client.project_ref}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, fields: StoryCreate) -> StoryRecord:
        """Create a story in the resolved workspace.

        An explicit, non-empty project in ``fields`` wins over the configured
        default project.
        """
        operation = f"Failed to create story {fields.name!r}"
        workspace_ref = await self.client.ensure_workspace()

        body = fields.to_backend(exclude_none=True)
        if not body.get("Project"):
            # An empty projectId means the default project
            body.pop("Project", None)
        body["Workspace"] = {"_ref": workspace_ref}
        if "Project" not in body and self.client.project_ref:
            body["Project"] = {"_ref": self.client.project_ref}

        result = await self.client.post(f"/{ARTIFACT_TYPE}/create", operation, json={ARTIFACT_TYPE: body})
        record = StoryRecord.model_validate(result["CreateResult"]["Object"])
        logger.info(f"Created story {record.formatted_id} ({record.object_id}): {record.name}")
        return record

    async def update(self, story_id: str, fields: StoryFields) -> dict:
        """Send only the fields present in ``fields``.

        Raises:
            ValidationError: if no fields are present (no request is made)
        """
        if fields.is_empty():
            raise ValidationError("No fields provided for update. Story was not modified.")

        changes = fields.to_backend()
        await self.client.ensure_workspace()
        result = await self.client.post(
            f"/{ARTIFACT_TYPE}/{story_id}",
            f"Failed to update story {story_id}",
            json={ARTIFACT_TYPE: changes},
        )
        logger.info(f"Updated story {story_id}: {sorted(changes)}")
        return result

    async def delete(self, story_id: str) -> None:
        await self.client.ensure_workspace()
        await self.client.delete(f"/{ARTIFACT_TYPE}/{story_id}", f"Failed to delete story {story_id}")
        logger.info(f"Deleted story {story_id}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, story_id: str) -> dict:
        """Fetch one story; returns the unwrapped artifact."""
        params = await self._scope_params()
        result = await self.client.get(f"/{ARTIFACT_TYPE}/{story_id}", f"Failed to fetch story {story_id}", params=params)
        return result.get(ARTIFACT_TYPE, result)

    async def list_stories(self, query_params: Optional[dict[str, str]] = None) -> StoryPage:
        """List stories in the workspace (and default project), passing query parameters through."""
        params = await self._scope_params()
        params.update(query_params or {})
        result = await self.client.get(f"/{ARTIFACT_TYPE}", "Failed to fetch stories", params=params)

        query_result = result.get("QueryResult", result)
        results = query_result.get("Results") or []
        return StoryPage(
            results=results,
            total=query_result.get("TotalResultCount", len(results)),
            page_size=query_result.get("PageSize", len(results)),
            start_index=query_result.get("StartIndex", 1),
            warnings=query_result.get("Warnings") or [],
        )

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def mutate_relationship(
        self,
        source_id: str,
        target_id: str,
        kind: Union[str, RelationshipKind],
        op: Union[str, RelationshipOp],
    ) -> dict:
        """Add or remove a relationship from ``source_id`` to ``target_id``.

        Removing a relationship that does not exist succeeds without change.

        Raises:
            ValidationError: self-relationship or unknown kind (before any request)
        """
        if source_id == target_id:
            raise ValidationError("Source and target cannot be the same artifact.")
        plan = plan_mutation(kind, op)

        verb = "create" if plan.op is RelationshipOp.ADD else "remove"
        await self.client.ensure_workspace()
        result = await self.client.post(
            f"/{ARTIFACT_TYPE}/{source_id}",
            f"Failed to {verb} {plan.kind.value} relationship from {source_id} to {target_id}",
            json={ARTIFACT_TYPE: plan.build_payload(target_id)},
        )
        logger.info(
            f"{verb.capitalize()}d {plan.kind.value} relationship {source_id} -> {target_id} "
            f"({plan.collection_name}, {plan.cardinality.value})"
        )
        return result

    async def get_relationships(self, artifact_id: str) -> RelationshipSnapshot:
        workspace_ref = await self.client.ensure_workspace()
        result = await self.client.get(
            f"/{ARTIFACT_TYPE}/{artifact_id}",
            f"Failed to get relationships for {artifact_id}",
            params={"fetch": ",".join(SNAPSHOT_FIELDS), "workspace": workspace_ref},
        )
        return parse_relationships(result.get(ARTIFACT_TYPE))
