"""Deployment validation configuration."""

from pydantic import BaseModel, Field, model_validator


class ContainerDefaults(BaseModel):
    """Base container settings that deploy overrides are merged onto."""

    env: dict[str, str] = Field(default_factory=dict)
    memory: str | None = Field(default=None, description="Memory limit, e.g. '512m'")
    cpu: float | None = Field(default=None, gt=0, description="CPU limit in cores")
    restart_policy: str | None = Field(default=None, description="Engine restart policy name")
    command: list[str] | None = None


class DeployConfig(BaseModel):
    """Port reservation, concurrency cap and image defaults."""

    port_range_start: int = Field(default=30100, ge=1, le=65535)
    port_range_end: int = Field(default=30999, ge=1, le=65535)
    container_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Container-side port for SSE/WebSocket servers",
    )
    max_concurrent_deploys: int = Field(default=10, ge=1)
    sse_endpoint_path: str = Field(default="/sse")
    websocket_endpoint_path: str = Field(default="/ws")
    defaults: ContainerDefaults = Field(default_factory=ContainerDefaults)
    image_defaults: dict[str, ContainerDefaults] = Field(
        default_factory=dict,
        description="Per-image defaults keyed by image reference",
    )

    @model_validator(mode="after")
    def check_port_range(self) -> "DeployConfig":
        """Reject an empty reserved range."""
        if self.port_range_end < self.port_range_start:
            raise ValueError("port_range_end must be >= port_range_start")
        return self
