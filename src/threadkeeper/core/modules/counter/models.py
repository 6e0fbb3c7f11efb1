"""Per-parent sequence counters and the parent/child relations they number."""

from dataclasses import dataclass
from enum import StrEnum


class ChildKind(StrEnum):
    """Kinds of child entities that receive sequential numbers from their parent."""

    THREAD = "thread"
    ENTRY = "entry"

    @property
    def relation(self) -> "Relation":
        return RELATIONS[self]


@dataclass(frozen=True)
class Relation:
    """Where a child kind and its parent live in the database."""

    parent_collection: str
    child_collection: str
    parent_field: str  # Field on the child that references the parent
    count_field: str  # Cached child count on the parent


RELATIONS: dict[ChildKind, Relation] = {
    ChildKind.THREAD: Relation("tenants", "threads", "tenant_id", "thread_count"),
    ChildKind.ENTRY: Relation("threads", "entries", "thread_id", "entry_count"),
}
