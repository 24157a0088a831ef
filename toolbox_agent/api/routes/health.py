"""Status, liveness and metrics endpoints."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from toolbox_agent import __version__
from toolbox_agent.api.dependencies import OrchestratorDep, SettingsDep
from toolbox_agent.api.middleware.auth import CallerContextDep
from toolbox_agent.api.models.health import LivenessResponse
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.orchestration.models import StatusReport
from toolbox_agent.registry.models import utc_now

logger = get_logger(__name__)

router = APIRouter()


@router.get("/status", response_model=StatusReport)
async def get_status(
    _caller: CallerContextDep,
    orchestrator: OrchestratorDep,
) -> StatusReport:
    """Aggregate host status with per-instance detail."""
    report = await orchestrator.status()
    logger.debug("status_request", status=report.status.value)
    return report


@router.get("/health", response_model=LivenessResponse)
async def health_check(settings: SettingsDep) -> LivenessResponse:
    """Process liveness for container orchestrators."""
    return LivenessResponse(
        service=settings.agent.name,
        version=settings.agent.agent_version or __version__,
        timestamp=utc_now(),
    )


@router.get("/metrics")
async def get_metrics() -> Response:
    """Get Prometheus metrics.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
