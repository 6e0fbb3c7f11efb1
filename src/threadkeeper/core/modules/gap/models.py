from uuid import UUID

from pydantic import BaseModel, Field

from threadkeeper.core.modules.counter.models import ChildKind


class GapReport(BaseModel):
    """Allocated numbers of one parent compared with what the durable store holds."""

    kind: ChildKind
    parent_id: UUID
    high_water_mark: int = Field(..., description="Last number handed out by the allocator")
    max_persisted: int = Field(..., description="Highest number stored for this parent")
    persisted_count: int
    in_flight: list[int] = Field(default_factory=list, description="Allocated numbers still being created")
    dead_lettered: list[int] = Field(default_factory=list, description="Numbers whose creation task is dead")
    missing: list[int] = Field(default_factory=list, description="Unfulfilled numbers not accounted for by any task")
    counter_behind_store: bool = Field(
        False, description="Allocator counter is below the highest stored number, so the next allocation collides"
    )

    @property
    def has_gaps(self) -> bool:
        return bool(self.dead_lettered or self.missing)


class OperationalHealth(BaseModel):
    """Summary used by the ops health endpoint."""

    status: str  # "ok" or "degraded"
    counters_behind_store: int = 0
    gap_policy: str
    dead_tasks: int
    backlog: int
    gaps: list[GapReport] = Field(default_factory=list)
