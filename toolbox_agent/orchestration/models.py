"""Result models returned by orchestration operations.

Field names are camelCase on the wire, except the top-level status keys
which keep the historical snake_case layout.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolbox_agent.discovery.models import DiscoveryState
from toolbox_agent.registry.models import (
    CapabilitySnapshot,
    ContainerType,
    HealthMetrics,
    HealthStatus,
    TransportType,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InstanceDescriptor(_CamelModel):
    """Public view of one managed instance."""

    instance_id: str
    instance_name: str
    container_id: str
    container_type: ContainerType
    transport_type: TransportType
    endpoint_path: str | None = None
    endpoint_url: str | None = None
    port_bindings: dict[int, int] = Field(default_factory=dict)
    capabilities: CapabilitySnapshot | None = None
    health_status: HealthStatus
    health_metrics: HealthMetrics | None = None
    discovery_state: DiscoveryState | None = None
    oauth_connections: list[str] = Field(default_factory=list)
    last_health_check: datetime | None = None
    last_capability_refresh: datetime | None = None
    last_oauth_refresh: datetime | None = None
    created_at: datetime


class DeployResult(_CamelModel):
    """Outcome of a successful deploy."""

    success: bool = True
    instance_name: str
    container_id: str
    container_type: ContainerType
    transport_type: TransportType
    endpoint_path: str | None = None
    endpoint_url: str | None = None
    port_bindings: dict[int, int] = Field(default_factory=dict)
    capabilities: CapabilitySnapshot | None = None
    discovery_state: DiscoveryState | None = None
    oauth_connections_injected: list[str] = Field(default_factory=list)
    health_status: HealthStatus


class TeardownResult(_CamelModel):
    """Teardown acknowledgement. Teardown of an unknown name succeeds."""

    success: bool = True
    instance_name: str
    existed: bool


class LifecycleResult(_CamelModel):
    """Start/stop acknowledgement."""

    success: bool = True
    instance_name: str
    container_id: str
    health_status: HealthStatus


class RefreshResult(_CamelModel):
    """Credential refresh acknowledgement."""

    success: bool = True
    instance_name: str
    container_id: str
    oauth_connections: list[str] = Field(default_factory=list)
    next_refresh_at: datetime | None = None


class ProbeResult(_CamelModel):
    """Outcome of a forced discovery probe."""

    instance_name: str
    discovery_state: DiscoveryState
    consecutive_failures: int
    last_error: str | None = None
    last_latency_ms: float | None = None
    capabilities: CapabilitySnapshot | None = None


class DiscoverySummary(_CamelModel):
    """Aggregate counts over discovered servers."""

    total_servers: int
    healthy_servers: int
    transport_distribution: dict[str, int] = Field(default_factory=dict)


class DiscoveryResult(_CamelModel):
    """Every managed instance with capabilities and health."""

    servers: list[InstanceDescriptor] = Field(default_factory=list)
    summary: DiscoverySummary


class ToolInstances(_CamelModel):
    """Instances split by container type."""

    standard_tools: list[InstanceDescriptor] = Field(default_factory=list)
    mcp_servers: list[InstanceDescriptor] = Field(default_factory=list)


class MCPDiscoveryStatus(DiscoverySummary):
    """Discovery summary plus credential validity across instances."""

    oauth_connections_valid: bool = True


class SystemMetrics(BaseModel):
    """Host load figures."""

    load_average: list[float] | None = None
    cpu_count: int | None = None


class StatusReport(BaseModel):
    """Agent status payload: base fields plus orchestration extensions."""

    status: HealthStatus
    timestamp: datetime
    version: str
    service: str
    tool_instances: ToolInstances
    mcp_discovery: MCPDiscoveryStatus
    system_metrics: SystemMetrics
