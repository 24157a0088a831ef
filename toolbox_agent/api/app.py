"""FastAPI application factory.

Creates and configures the FastAPI application with middleware,
exception handlers, route registration and the agent lifespan.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from pydantic.alias_generators import to_camel

from toolbox_agent import __version__
from toolbox_agent.api.dependencies import get_settings, set_components
from toolbox_agent.api.middleware.context import RequestContextMiddleware
from toolbox_agent.api.models.errors import ErrorBody, ErrorResponse
from toolbox_agent.api.routes import register_routes
from toolbox_agent.bootstrap import AgentComponents, bootstrap
from toolbox_agent.errors import ErrorKind, ToolboxAgentError
from toolbox_agent.observability.logging import get_logger, setup_logging
from toolbox_agent.observability.metrics import setup_metrics
from toolbox_agent.observability.tracing import setup_tracing

logger = get_logger(__name__)


def create_app(components: AgentComponents | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    When components are given (tests) they are used as-is; otherwise the
    lifespan builds them from settings. Either way the lifespan recovers
    state from the runtime and runs the background loops.

    Args:
        components: Pre-built component graph

    Returns:
        Configured FastAPI application
    """
    settings = components.settings if components is not None else get_settings()
    if components is not None:
        set_components(components)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        obs = settings.observability
        setup_logging(level=obs.logging.level, format=obs.logging.format, redact_pii=obs.logging.redact)
        if obs.tracing.enabled:
            setup_tracing(obs.tracing.service_name, obs.tracing.otlp_endpoint)
        if obs.metrics.enabled:
            setup_metrics()

        agent = components or bootstrap(settings)
        set_components(agent)
        await agent.recover()
        await agent.start()
        logger.info("agent_started", agent_name=settings.agent.name, port=settings.api.port)
        try:
            yield
        finally:
            await agent.shutdown()

    app = FastAPI(
        title="Toolbox Agent API",
        description="Lifecycle, credentials and discovery for MCP tool containers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if components is not None:
        app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    _register_exception_handlers(app)
    register_routes(app)

    if settings.observability.tracing.enabled:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("opentelemetry_instrumentation_enabled")

    logger.info("app_created", debug=settings.debug, cors_origins=settings.api.cors_origins)

    return app


def _error_response(status_code: int, kind: ErrorKind, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(kind=kind, message=message, details=details or {}))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers.

    Args:
        app: FastAPI application
    """

    @app.exception_handler(ToolboxAgentError)
    async def toolbox_agent_error_handler(request: Request, exc: ToolboxAgentError) -> JSONResponse:
        """Handle ToolboxAgentError and its subclasses."""
        logger.warning(
            "api_error",
            error_kind=exc.kind.value,
            message=exc.message,
            path=request.url.path,
        )
        details = {to_camel(key): value for key, value in exc.details.items()}
        return _error_response(exc.status_code, exc.kind, exc.message, details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle FastAPI request validation errors."""
        errors = [
            {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        logger.warning("validation_error", errors=errors, path=request.url.path)
        return _error_response(400, ErrorKind.VALIDATION, "Request validation failed", {"errors": errors})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception(
            "unexpected_error",
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return _error_response(500, ErrorKind.INTERNAL, "An unexpected error occurred")

    logger.debug("exception_handlers_registered")
