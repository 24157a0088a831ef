"""Durable container labels.

Labels are the only state that survives an agent restart: the registry
is rebuilt from them. build_labels and parse_labels are inverses for the
fields they carry.
"""

from datetime import datetime

from pydantic import BaseModel, Field

MANAGED_BY = "agentopia.managed_by"
TOOL_TYPE = "agentopia.tool.type"
MCP_TRANSPORT = "agentopia.mcp.transport"
MCP_ENDPOINT = "agentopia.mcp.endpoint"
ACCOUNT_TOOL_INSTANCE_ID = "agentopia.account_tool_instance_id"
AGENT_ID = "agentopia.agent_id"
OAUTH_CONNECTION_IDS = "agentopia.oauth.connection_ids"
OAUTH_SCOPES = "agentopia.oauth.scopes"
CREATED_AT = "agentopia.created_at"

# Name suffix of the previous container kept aside while a refresh recreates it
ASIDE_SUFFIX = "-refresh-prev"


class LabelData(BaseModel):
    """Instance metadata recoverable from labels."""

    managed_by: str
    tool_type: str
    transport: str | None = None
    endpoint_path: str | None = None
    account_tool_instance_id: str
    agent_id: str | None = None
    oauth_connection_ids: list[str] = Field(default_factory=list)
    oauth_scopes: list[str] = Field(default_factory=list)
    created_at: datetime | None = None


def managed_filter(agent_name: str) -> dict[str, str]:
    """Label filter selecting containers owned by this agent."""
    return {MANAGED_BY: agent_name}


def build_labels(data: LabelData) -> dict[str, str]:
    """Render label data as a container label map.

    Optional fields are omitted rather than written empty.
    """
    labels = {
        MANAGED_BY: data.managed_by,
        TOOL_TYPE: data.tool_type,
        ACCOUNT_TOOL_INSTANCE_ID: data.account_tool_instance_id,
    }
    if data.transport:
        labels[MCP_TRANSPORT] = data.transport
    if data.endpoint_path:
        labels[MCP_ENDPOINT] = data.endpoint_path
    if data.agent_id:
        labels[AGENT_ID] = data.agent_id
    if data.oauth_connection_ids:
        labels[OAUTH_CONNECTION_IDS] = ",".join(data.oauth_connection_ids)
    if data.oauth_scopes:
        labels[OAUTH_SCOPES] = ",".join(data.oauth_scopes)
    if data.created_at:
        labels[CREATED_AT] = data.created_at.isoformat()
    return labels


def parse_labels(labels: dict[str, str]) -> LabelData | None:
    """Recover label data from a container label map.

    Returns:
        LabelData, or None when the required labels are missing
    """
    managed_by = labels.get(MANAGED_BY)
    tool_type = labels.get(TOOL_TYPE)
    owner = labels.get(ACCOUNT_TOOL_INSTANCE_ID)
    if not managed_by or not tool_type or not owner:
        return None

    created_at = None
    if labels.get(CREATED_AT):
        try:
            created_at = datetime.fromisoformat(labels[CREATED_AT])
        except ValueError:
            created_at = None

    return LabelData(
        managed_by=managed_by,
        tool_type=tool_type,
        transport=labels.get(MCP_TRANSPORT) or None,
        endpoint_path=labels.get(MCP_ENDPOINT) or None,
        account_tool_instance_id=owner,
        agent_id=labels.get(AGENT_ID) or None,
        oauth_connection_ids=_split(labels.get(OAUTH_CONNECTION_IDS)),
        oauth_scopes=_split(labels.get(OAUTH_SCOPES)),
        created_at=created_at,
    )


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part for part in value.split(",") if part]
