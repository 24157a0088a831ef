"""Tool instance lifecycle endpoints."""

from fastapi import APIRouter, Body, status

from toolbox_agent.api.dependencies import OrchestratorDep
from toolbox_agent.api.middleware.auth import CallerContextDep
from toolbox_agent.api.models.requests import RefreshCredentialsRequest
from toolbox_agent.configuration.models import DeployRequest
from toolbox_agent.errors import OwnershipError
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.orchestration.models import (
    DeployResult,
    InstanceDescriptor,
    LifecycleResult,
    RefreshResult,
    TeardownResult,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/tools")


@router.post("", response_model=DeployResult, status_code=status.HTTP_201_CREATED)
async def deploy_tool(
    request: DeployRequest,
    caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> DeployResult:
    """Deploy a standard tool or MCP server container.

    The caller may only deploy on behalf of the owner it claims.
    """
    if caller.owner and caller.owner != request.account_tool_instance_id:
        raise OwnershipError(request.instance_name_on_toolbox)

    logger.info(
        "deploy_request",
        instance_name=request.instance_name_on_toolbox,
        image=request.docker_image_url,
        transport=request.mcp_transport_type,
        oauth_connection_count=len(request.oauth_connection_ids),
    )
    return await orchestrator.deploy(request)


@router.get("/{instance_name}", response_model=InstanceDescriptor)
async def get_tool(
    instance_name: str,
    _caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> InstanceDescriptor:
    """Describe one managed instance."""
    return await orchestrator.get_instance(instance_name)


@router.delete("/{instance_name}", response_model=TeardownResult)
async def teardown_tool(
    instance_name: str,
    caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> TeardownResult:
    """Stop and remove an instance. Unknown names succeed."""
    return await orchestrator.teardown(instance_name, caller.owner)


@router.post("/{instance_name}/start", response_model=LifecycleResult)
async def start_tool(
    instance_name: str,
    caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> LifecycleResult:
    """Start a stopped instance."""
    return await orchestrator.start(instance_name, caller.owner)


@router.post("/{instance_name}/stop", response_model=LifecycleResult)
async def stop_tool(
    instance_name: str,
    caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> LifecycleResult:
    """Stop an instance without removing it."""
    return await orchestrator.stop(instance_name, caller.owner)


@router.post("/{instance_name}/credentials/refresh", response_model=RefreshResult)
async def refresh_tool_credentials(
    instance_name: str,
    caller: CallerContextDep,
    orchestrator: OrchestratorDep,
    body: RefreshCredentialsRequest | None = Body(default=None),
) -> RefreshResult:
    """Re-fetch and re-inject OAuth credentials.

    Optionally replaces the instance's connection set.
    """
    connection_ids = body.connection_ids if body is not None else None
    return await orchestrator.refresh_credentials(instance_name, caller.owner, connection_ids)
