from datetime import datetime

from pydantic import Field

from threadkeeper.core.db import MongoModel
from threadkeeper.utils import generate_token, now


class Tenant(MongoModel):
    """Root of ownership. Created synchronously, deleting it removes every descendant."""

    token: str = Field(default_factory=generate_token)  # Opaque external identifier, unique
    display_name: str
    thread_count: int = 0  # Cached, only exact right after a reconciliation sweep
    count_version: int = 0  # Bumped on every cache write
    created_at: datetime = Field(default_factory=now)
