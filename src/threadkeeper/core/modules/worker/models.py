from datetime import datetime
from enum import StrEnum
from typing import Any, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from threadkeeper.core.db import MongoModel
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.utils import now


class TaskState(StrEnum):
    """Lifecycle of a creation task.

    pending -> running -> succeeded | retrying | dead, and retrying -> running
    on the next attempt. Dead is terminal and only reached once the attempt
    budget is spent (or the task could not be queued at all).
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    DEAD = "dead"


class CreationTask(BaseModel):
    """Request to persist one child row under an already allocated number."""

    id: UUID = Field(default_factory=uuid4)
    kind: ChildKind
    parent_id: UUID
    number: int
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = 0  # Attempts started so far
    state: TaskState = TaskState.PENDING
    last_error: str | None = None
    timed_out: bool = False  # An earlier attempt hit the task timeout and may have stored the row
    enqueued_at: datetime = Field(default_factory=now)


class DeadTask(MongoModel):
    """A creation task that exhausted its retry budget, kept for inspection and manual requeue."""

    kind: ChildKind
    parent_id: UUID
    number: int
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int
    last_error: str | None = None
    enqueued_at: datetime
    dead_at: datetime = Field(default_factory=now)

    @classmethod
    def from_task(cls, task: CreationTask) -> Self:
        return cls(
            id=task.id,
            kind=task.kind,
            parent_id=task.parent_id,
            number=task.number,
            payload=task.payload,
            attempts=task.attempt,
            last_error=task.last_error,
            enqueued_at=task.enqueued_at,
        )

    def to_task(self) -> CreationTask:
        """Fresh task for the same allocation with a full retry budget."""
        return CreationTask(id=self.id, kind=self.kind, parent_id=self.parent_id, number=self.number, payload=self.payload)


class WorkerStats(BaseModel):
    """Snapshot of the creation worker pool."""

    queued: int
    waiting_retry: int
    in_flight: int
    backlog_limit: int
    concurrency: int
