"""Domain models for managed instances."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolbox_agent.containers.models import ContainerSpec


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


class ContainerType(str, Enum):
    """Kind of tool container."""

    STANDARD_TOOL = "standard_tool"
    MCP_SERVER = "mcp_server"


class TransportType(str, Enum):
    """Channel an MCP server speaks on."""

    NONE = "none"
    STDIO = "stdio"
    SSE = "sse"
    WEBSOCKET = "websocket"


class HealthStatus(str, Enum):
    """Derived health of one instance or of the whole host."""

    STARTING = "starting"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    STOPPING = "stopping"
    STOPPED = "stopped"


class CapabilitySnapshot(BaseModel):
    """Result of one successful discovery probe.

    Replaced wholesale on each successful probe.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tools: list[dict[str, Any]] = Field(default_factory=list)
    resources: list[dict[str, Any]] = Field(default_factory=list)
    prompts: list[dict[str, Any]] = Field(default_factory=list)
    probed_at: datetime = Field(default_factory=utc_now)
    transport_type: TransportType
    server_info: dict[str, Any] | None = None
    protocol_version: str | None = None


class HealthMetrics(BaseModel):
    """Latest health sample for an instance."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    reachable: bool
    response_time_ms: float | None = None
    oauth_connections_valid: bool = True
    timestamp: datetime = Field(default_factory=utc_now)


class ManagedInstance(BaseModel):
    """One deployed container under agent control."""

    instance_name: str
    account_tool_instance_id: str
    container_id: str
    container_type: ContainerType
    transport_type: TransportType = TransportType.NONE
    endpoint_path: str | None = None
    port_bindings: dict[int, int] = Field(default_factory=dict)
    oauth_connection_ids: list[str] = Field(default_factory=list)
    oauth_scopes: list[str] = Field(default_factory=list)
    agent_id: str | None = None
    image: str = ""
    spec: ContainerSpec = Field(
        default_factory=ContainerSpec,
        description="Creation spec without credential variables, used to recreate",
    )
    capabilities: CapabilitySnapshot | None = None
    health_status: HealthStatus = HealthStatus.STARTING
    health_metrics: HealthMetrics | None = None
    last_health_check_at: datetime | None = None
    last_capability_refresh_at: datetime | None = None
    last_oauth_refresh_at: datetime | None = None
    credentials_expire_at: datetime | None = None
    missing_since: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    registered_at: datetime = Field(
        default_factory=utc_now,
        description="Start of the current Starting grace window (deploy, rebuild, restart)",
    )

    @property
    def is_mcp(self) -> bool:
        """Whether this instance is an MCP server."""
        return self.container_type == ContainerType.MCP_SERVER

    @property
    def host_port(self) -> int | None:
        """The single published host port, if any."""
        if not self.port_bindings:
            return None
        return next(iter(self.port_bindings.values()))
