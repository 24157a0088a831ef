"""Credential broker and refresh configuration."""

from pydantic import BaseModel, Field


class CredentialsConfig(BaseModel):
    """Settings for fetching and refreshing OAuth credential bundles."""

    broker_url: str | None = Field(
        default=None,
        description="Credential broker endpoint; OAuth deploys fail closed when unset",
    )
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    refresh_floor_seconds: int = Field(
        default=900,
        gt=0,
        description="Upper bound on time between refreshes",
    )
    refresh_skew_seconds: int = Field(
        default=60,
        ge=0,
        description="Refresh this long before the earliest token expiry",
    )
    refresh_check_interval_seconds: float = Field(default=5.0, gt=0)
    env_prefix: str = Field(
        default="AGENTOPIA_OAUTH_",
        min_length=1,
        description="Prefix of injected credential environment variables",
    )
