"""MCP discovery configuration."""

from pydantic import BaseModel, Field, model_validator


class DiscoveryConfig(BaseModel):
    """Probe cadence and liveness thresholds."""

    interval_seconds: float = Field(default=60.0, gt=0)
    jitter_seconds: float = Field(default=10.0, ge=0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive failures before a server is unreachable",
    )
    probe_host: str = Field(
        default="127.0.0.1",
        description="Host on which published SSE/WebSocket ports are reached",
    )
    protocol_version: str = Field(default="2025-06-18")

    @model_validator(mode="after")
    def check_jitter(self) -> "DiscoveryConfig":
        """Jitter may not exceed the interval."""
        if self.jitter_seconds >= self.interval_seconds:
            raise ValueError("jitter_seconds must be smaller than interval_seconds")
        return self
