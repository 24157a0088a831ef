"""Container runtime client configuration."""

from pydantic import BaseModel, Field


class RuntimeConfig(BaseModel):
    """Docker engine access and call policy."""

    base_url: str | None = Field(
        default=None,
        description="Docker daemon URL; DOCKER_HOST/environment when unset",
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-call timeout")
    pull_timeout_seconds: float = Field(default=300.0, gt=0, description="Image pull timeout")
    max_attempts: int = Field(default=3, ge=1, description="Attempts for transient errors")
    backoff_base_seconds: float = Field(default=0.5, ge=0, description="Exponential backoff base")
    stop_timeout_seconds: int = Field(
        default=10,
        ge=0,
        description="Grace period before the engine kills a stopping container",
    )
