"""Deploy request and normalized configuration models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from toolbox_agent.containers.models import ContainerSpec
from toolbox_agent.registry.models import ContainerType, TransportType


class DeployRequest(BaseModel):
    """Raw deploy command from the control plane (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    docker_image_url: str = Field(alias="dockerImageUrl")
    instance_name_on_toolbox: str = Field(alias="instanceNameOnToolbox")
    account_tool_instance_id: str = Field(alias="accountToolInstanceId")
    mcp_server_type: str | None = Field(default=None, alias="mcpServerType")
    mcp_transport_type: str | None = Field(default=None, alias="mcpTransportType")
    mcp_endpoint_path: str | None = Field(default=None, alias="mcpEndpointPath")
    oauth_connection_ids: list[str] = Field(default_factory=list, alias="oauthConnectionIds")
    base_config_override: dict[str, Any] | None = Field(default=None, alias="baseConfigOverride")
    agent_id: str | None = Field(default=None, alias="agentId")
    required_scopes: list[str] = Field(default_factory=list, alias="requiredScopes")
    replace: bool = False


class ConfigOverride(BaseModel):
    """Caller overrides merged on top of image and global defaults."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    env: dict[str, str] | None = None
    port_bindings: dict[int, int] | None = Field(default=None, alias="portBindings")
    memory: str | None = None
    cpu: float | None = Field(default=None, gt=0)
    command: list[str] | None = None
    restart_policy: str | None = Field(default=None, alias="restartPolicy")
    container_port: int | None = Field(default=None, ge=1, le=65535, alias="containerPort")


class NormalizedConfig(BaseModel):
    """Validated deploy configuration.

    The only form passed beyond the configuration manager. Host ports
    for SSE and WebSocket servers are filled in by port reservation.
    """

    instance_name: str
    image: str
    account_tool_instance_id: str
    agent_id: str | None = None
    container_type: ContainerType
    transport_type: TransportType = TransportType.NONE
    endpoint_path: str | None = None
    container_port: int | None = None
    port_bindings: dict[int, int] = Field(default_factory=dict)
    oauth_connection_ids: list[str] = Field(default_factory=list)
    required_scopes: list[str] = Field(default_factory=list)
    replace: bool = False
    spec: ContainerSpec

    @property
    def unbound_port(self) -> int | None:
        """Container port of a network transport still lacking a host port."""
        if self.port_bindings:
            return None
        return self.container_port

    @property
    def needs_port(self) -> bool:
        """Whether a network transport still lacks its host port."""
        return self.unbound_port is not None
