from enum import StrEnum

from pydantic_settings import BaseSettings


class GapPolicy(StrEnum):
    """How unfulfilled sequence numbers are treated by operational checks."""

    ACCEPT = "accept"  # Gaps are reported but do not degrade health
    ALERT = "alert"  # Gaps are logged as errors and degrade health


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3100
    debug: bool = False
    cors_origins: list[str] = []
    # Number allocation sits on the request path and must stay in a single-digit millisecond budget
    allocator_timeout_ms: int = 5
    # Creation worker pool
    worker_concurrency: int = 8
    worker_backlog_limit: int = 10_000  # Queued plus waiting-for-retry tasks before producers are rejected
    max_attempts: int = 5  # Attempts per creation task before it is dead-lettered
    retry_base_delay: float = 1.0  # Seconds; doubled on every further attempt
    retry_max_delay: float = 60.0
    task_timeout_seconds: float = 30.0
    shutdown_grace_seconds: float = 10.0
    # Counter-cache reconciliation
    reconcile_interval_seconds: float = 300.0  # 0 disables the scheduled sweep
    reconcile_cas_attempts: int = 3
    # Startup recovery of allocator counters and the search index
    recovery_on_start: bool = True
    recovery_sample_size: int = 5
    gap_policy: GapPolicy = GapPolicy.ACCEPT

    model_config = {
        "env_file": [".env"],
        "env_prefix": "THREADKEEPER_",
        "extra": "ignore",
    }
