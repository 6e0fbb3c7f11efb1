from datetime import datetime
from uuid import UUID

from pydantic import Field

from threadkeeper.core.db import MongoModel
from threadkeeper.utils import now


class IndexedEntry(MongoModel):
    """Search projection of an entry. Shares its id with the entry it mirrors."""

    thread_id: UUID
    body: str
    indexed_at: datetime = Field(default_factory=now)
