"""MCP discovery endpoints."""

from fastapi import APIRouter

from toolbox_agent.api.dependencies import OrchestratorDep
from toolbox_agent.api.middleware.auth import CallerContextDep
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.orchestration.models import DiscoveryResult, ProbeResult

logger = get_logger(__name__)

router = APIRouter(prefix="/mcp")


@router.get("/servers", response_model=DiscoveryResult)
async def list_servers(
    _caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> DiscoveryResult:
    """Every managed instance with its capabilities and health."""
    result = await orchestrator.discovery()
    logger.debug("discovery_request", total_servers=result.summary.total_servers)
    return result


@router.post("/servers/{instance_name}/probe", response_model=ProbeResult)
async def probe_server(
    instance_name: str,
    _caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> ProbeResult:
    """Probe an MCP server now instead of waiting for its schedule."""
    return await orchestrator.force_probe(instance_name)
