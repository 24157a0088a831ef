"""Health monitor and heartbeat configuration."""

from pydantic import BaseModel, Field


class HealthConfig(BaseModel):
    """Heartbeat cadence and health fusion thresholds."""

    heartbeat_interval_seconds: float = Field(default=15.0, gt=0)
    starting_grace_seconds: float = Field(
        default=30.0,
        ge=0,
        description="How long a never-probed running server may report Starting",
    )
    heartbeat_failure_threshold: int = Field(default=3, ge=1)
    heartbeat_url: str | None = Field(
        default=None,
        description="Control-plane heartbeat sink; heartbeats are only logged when unset",
    )
    heartbeat_timeout_seconds: float = Field(default=5.0, gt=0)
