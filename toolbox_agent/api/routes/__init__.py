"""API route registration."""

from fastapi import FastAPI

from toolbox_agent.observability.logging import get_logger

logger = get_logger(__name__)


def register_routes(app: FastAPI) -> None:
    """Register all routes with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    from toolbox_agent.api.routes.health import router as health_router
    from toolbox_agent.api.routes.mcp import router as mcp_router
    from toolbox_agent.api.routes.tools import router as tools_router

    app.include_router(tools_router, tags=["Tools"])
    app.include_router(mcp_router, tags=["MCP"])
    app.include_router(health_router, tags=["Health"])

    logger.info("routes_registered", routes=["tools", "mcp", "health"])
