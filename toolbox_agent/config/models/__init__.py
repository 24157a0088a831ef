"""Configuration section models."""

from toolbox_agent.config.models.agent import AgentConfig
from toolbox_agent.config.models.api import APIConfig
from toolbox_agent.config.models.credentials import CredentialsConfig
from toolbox_agent.config.models.deploy import ContainerDefaults, DeployConfig
from toolbox_agent.config.models.discovery import DiscoveryConfig
from toolbox_agent.config.models.health import HealthConfig
from toolbox_agent.config.models.observability import (
    LoggingConfig,
    MetricsConfig,
    ObservabilityConfig,
    TracingConfig,
)
from toolbox_agent.config.models.runtime import RuntimeConfig

__all__ = [
    "AgentConfig",
    "APIConfig",
    "ContainerDefaults",
    "CredentialsConfig",
    "DeployConfig",
    "DiscoveryConfig",
    "HealthConfig",
    "LoggingConfig",
    "MetricsConfig",
    "ObservabilityConfig",
    "RuntimeConfig",
    "TracingConfig",
]
