"""Container runtime access and durable labels."""

from toolbox_agent.containers.client import ContainerRuntimeClient
from toolbox_agent.containers.models import ContainerInfo, ContainerSpec

__all__ = ["ContainerInfo", "ContainerRuntimeClient", "ContainerSpec"]
