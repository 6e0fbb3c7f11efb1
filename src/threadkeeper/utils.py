import secrets
from datetime import UTC, datetime


def now() -> datetime:
    return datetime.now(UTC)


def generate_token() -> str:
    """Opaque external identifier for a tenant."""
    return secrets.token_hex(16)
