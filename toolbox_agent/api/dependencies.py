"""Dependency injection for API routes.

The component graph is created once by the application lifespan (or
handed to create_app directly in tests) and shared by every request.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from toolbox_agent.bootstrap import AgentComponents
from toolbox_agent.config.loader import load_config
from toolbox_agent.config.settings import Settings, set_toml_config
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.orchestration.service import Orchestrator

logger = get_logger(__name__)

_components: AgentComponents | None = None


@lru_cache
def get_settings() -> Settings:
    """Get application settings.

    Loads configuration from TOML files and environment variables.
    Cached to avoid reloading on every request.

    Returns:
        Settings object with all configuration
    """
    try:
        toml_config = load_config()
        set_toml_config(toml_config)
    except FileNotFoundError:
        logger.warning("config_dir_unusable", msg="Using default configuration")
        set_toml_config({})

    return Settings()


def set_components(components: AgentComponents) -> None:
    """Install the component graph used by request handlers."""
    global _components
    _components = components


def get_components() -> AgentComponents:
    """Get the component graph.

    Raises:
        RuntimeError: The application has not been started
    """
    if _components is None:
        raise RuntimeError("Agent components not initialized")
    return _components


def get_orchestrator(
    components: Annotated[AgentComponents, Depends(get_components)],
) -> Orchestrator:
    """Get the orchestration service."""
    return components.orchestrator


# Type aliases for dependency injection
SettingsDep = Annotated[Settings, Depends(get_settings)]
OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]


def reset_dependencies() -> None:
    """Reset cached dependencies.

    Used for testing to ensure fresh instances.
    """
    global _components
    _components = None
    get_settings.cache_clear()
