"""Agent identity configuration."""

from pydantic import BaseModel, Field


class AgentConfig(BaseModel):
    """Identity of this agent on the host.

    The name is stamped on every managed container as the management label,
    so two agents must never share one.
    """

    name: str = Field(
        default="toolbox-agent",
        min_length=1,
        description="Value of the agentopia.managed_by label",
    )
    agent_version: str | None = Field(
        default=None,
        description="Version reported in status and heartbeats; package version when unset",
    )
    advertise_host: str | None = Field(
        default=None,
        description="Host used in endpoint URLs reported to the control plane; probe host when unset",
    )
