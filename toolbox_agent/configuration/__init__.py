"""Deploy request validation, override merging and port reservation."""

from toolbox_agent.configuration.manager import ConfigurationManager
from toolbox_agent.configuration.models import ConfigOverride, DeployRequest, NormalizedConfig
from toolbox_agent.configuration.ports import PortAllocator

__all__ = [
    "ConfigOverride",
    "ConfigurationManager",
    "DeployRequest",
    "NormalizedConfig",
    "PortAllocator",
]
