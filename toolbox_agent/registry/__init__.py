"""Authoritative in-memory record of managed instances."""

from toolbox_agent.registry.models import (
    CapabilitySnapshot,
    ContainerType,
    HealthMetrics,
    HealthStatus,
    ManagedInstance,
    TransportType,
)
from toolbox_agent.registry.registry import InstanceRegistry, instance_from_container

__all__ = [
    "CapabilitySnapshot",
    "ContainerType",
    "HealthMetrics",
    "HealthStatus",
    "InstanceRegistry",
    "ManagedInstance",
    "TransportType",
    "instance_from_container",
]
