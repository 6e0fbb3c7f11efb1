from datetime import datetime
from uuid import UUID

from pydantic import Field

from threadkeeper.core.db import MongoModel
from threadkeeper.utils import now


class Thread(MongoModel):
    """Numbered child of a tenant."""

    tenant_id: UUID
    number: int  # Sequential per tenant, unique together with tenant_id
    entry_count: int = 0  # Cached, only exact right after a reconciliation sweep
    count_version: int = 0
    created_at: datetime = Field(default_factory=now)
