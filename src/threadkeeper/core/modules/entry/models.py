from datetime import datetime
from uuid import UUID

from pydantic import Field

from threadkeeper.core.db import MongoModel
from threadkeeper.utils import now


class Entry(MongoModel):
    """Numbered child of a thread carrying a text body."""

    thread_id: UUID
    number: int  # Sequential per thread, unique together with thread_id
    body: str
    created_at: datetime = Field(default_factory=now)
