"""Relationship translation between semantic link kinds and Rally collections.

Every relationship kind maps to exactly one backend field and one cardinality:
Parent is a single reference, everything else is a collection. Adds and
removes against a collection are tagged instructions; a single reference is
replaced, or cleared with an explicit null (omitting the field would leave it
unchanged).

Kinds pair up as inverses (Predecessor/Successor, Parent/Child,
Blocker/Blocked, Duplicate/Duplicated). Rally maintains the inverse link on
the target itself, possibly after a delay, so nothing here writes it.

Read side: relationship snapshots are built from the fields fetched for an
artifact. Duplicated is writable but is not part of the fetched field set,
so it never appears in a snapshot.
"""
import enum
from dataclasses import dataclass
from typing import Optional, Union

from .client import ARTIFACT_TYPE
from .errors import ValidationError


class RelationshipKind(str, enum.Enum):
    """Relationship from a source artifact to a target artifact."""

    PREDECESSOR = "Predecessor"
    SUCCESSOR = "Successor"
    PARENT = "Parent"
    CHILD = "Child"
    BLOCKER = "Blocker"
    BLOCKED = "Blocked"
    DUPLICATE = "Duplicate"
    DUPLICATED = "Duplicated"


class Cardinality(str, enum.Enum):
    SINGLE = "single"
    MULTI = "multi"


class RelationshipOp(str, enum.Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class RelationshipSpec:
    """Backend mapping for one relationship kind."""

    kind: RelationshipKind
    collection: str                   # Field written on the source artifact
    cardinality: Cardinality
    inverse: RelationshipKind         # Kind implied on the target
    snapshot_field: Optional[str]     # Field read back into snapshots (None: not read)


RELATIONSHIPS: dict[RelationshipKind, RelationshipSpec] = {
    spec.kind: spec
    for spec in (
        RelationshipSpec(RelationshipKind.PREDECESSOR, "Predecessors", Cardinality.MULTI, RelationshipKind.SUCCESSOR, "Predecessors"),
        RelationshipSpec(RelationshipKind.SUCCESSOR, "Successors", Cardinality.MULTI, RelationshipKind.PREDECESSOR, "Successors"),
        RelationshipSpec(RelationshipKind.PARENT, "Parent", Cardinality.SINGLE, RelationshipKind.CHILD, "Parent"),
        RelationshipSpec(RelationshipKind.CHILD, "Children", Cardinality.MULTI, RelationshipKind.PARENT, "Children"),
        RelationshipSpec(RelationshipKind.BLOCKER, "Blockers", Cardinality.MULTI, RelationshipKind.BLOCKED, "Blocker"),
        RelationshipSpec(RelationshipKind.BLOCKED, "Blocked", Cardinality.MULTI, RelationshipKind.BLOCKER, "Blocked"),
        RelationshipSpec(RelationshipKind.DUPLICATE, "Duplicates", Cardinality.MULTI, RelationshipKind.DUPLICATED, "Duplicates"),
        RelationshipSpec(RelationshipKind.DUPLICATED, "Duplicated", Cardinality.MULTI, RelationshipKind.DUPLICATE, None),
    )
}

# Fields fetched when reading relationships, in display order
SNAPSHOT_FIELDS: tuple[str, ...] = (
    "Predecessors",
    "Successors",
    "Children",
    "Parent",
    "Blocked",
    "Blocker",
    "Duplicates",
)
SINGLE_SNAPSHOT_FIELDS = frozenset({"Parent"})

RelationshipSnapshot = dict[str, Union[list[str], str]]


def artifact_ref(artifact_id: str) -> str:
    return f"/{ARTIFACT_TYPE}/{artifact_id}"


def parse_kind(value: Union[str, RelationshipKind]) -> RelationshipKind:
    """Coerce a kind name to RelationshipKind.

    Raises:
        ValidationError: for unknown kinds
    """
    try:
        return RelationshipKind(value)
    except ValueError:
        allowed = ", ".join(kind.value for kind in RelationshipKind)
        raise ValidationError(
            f"Unsupported relationship type: {value}. Relationship type must be one of: {allowed}"
        ) from None


def parse_op(value: Union[str, RelationshipOp]) -> RelationshipOp:
    try:
        return RelationshipOp(value)
    except ValueError:
        raise ValidationError(f"Unsupported relationship operation: {value}. Must be 'add' or 'remove'") from None


def inverse_of(kind: Union[str, RelationshipKind]) -> RelationshipKind:
    return RELATIONSHIPS[parse_kind(kind)].inverse


@dataclass(frozen=True)
class MutationPlan:
    """How to add or remove one relationship on the source artifact."""

    kind: RelationshipKind
    op: RelationshipOp
    collection_name: str
    cardinality: Cardinality

    @property
    def inverse(self) -> RelationshipKind:
        return RELATIONSHIPS[self.kind].inverse

    def build_payload(self, target_id: str) -> dict:
        """Field-level update body for the source artifact."""
        reference = {"_ref": artifact_ref(target_id)}
        if self.cardinality is Cardinality.SINGLE:
            return {self.collection_name: reference if self.op is RelationshipOp.ADD else None}
        return {self.collection_name: {"_type": self.op.value, **reference}}

    def apply_to_snapshot(self, snapshot: RelationshipSnapshot, target_name: str) -> RelationshipSnapshot:
        """Return a copy of ``snapshot`` as it would read after this mutation.

        A collection emptied by a remove is dropped from the snapshot, matching
        how absent fields are treated when parsing.
        """
        result: RelationshipSnapshot = {
            field: list(value) if isinstance(value, list) else value
            for field, value in snapshot.items()
        }
        field = RELATIONSHIPS[self.kind].snapshot_field
        if field is None:
            return result

        if self.cardinality is Cardinality.SINGLE:
            if self.op is RelationshipOp.ADD:
                result[field] = target_name
            else:
                result.pop(field, None)
            return result

        names = list(result.get(field) or [])
        if self.op is RelationshipOp.ADD:
            if target_name not in names:
                names.append(target_name)
            result[field] = names
        else:
            names = [name for name in names if name != target_name]
            if names:
                result[field] = names
            else:
                result.pop(field, None)
        return result


def plan_mutation(
    kind: Union[str, RelationshipKind],
    op: Union[str, RelationshipOp],
) -> MutationPlan:
    """Look up the backend collection and payload shape for a relationship change.

    Raises:
        ValidationError: for unknown kinds or operations
    """
    spec = RELATIONSHIPS[parse_kind(kind)]
    return MutationPlan(
        kind=spec.kind,
        op=parse_op(op),
        collection_name=spec.collection,
        cardinality=spec.cardinality,
    )


def _display_name(item) -> Optional[str]:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return item.get("Name") or item.get("_refObjectName")
    return None


def _collection_names(value) -> list[str]:
    if not isinstance(value, dict):
        return []
    items = value.get("_tagsNameArray") or []
    return [name for name in (_display_name(item) for item in items) if name]


def parse_relationships(artifact: Optional[dict]) -> RelationshipSnapshot:
    """Extract relationship display names from a fetched artifact.

    Fields missing from the artifact are omitted from the snapshot. A present
    collection without a name list reads as an empty list. A null Parent is
    treated as missing.
    """
    snapshot: RelationshipSnapshot = {}
    if not artifact:
        return snapshot

    for field in SNAPSHOT_FIELDS:
        value = artifact.get(field)
        if value is None:
            continue
        if field in SINGLE_SNAPSHOT_FIELDS:
            name = value.get("_refObjectName") if isinstance(value, dict) else None
            if name:
                snapshot[field] = name
        else:
            snapshot[field] = _collection_names(value)
    return snapshot
