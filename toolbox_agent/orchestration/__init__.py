"""Orchestration service: the command and query surface of the agent."""

from toolbox_agent.orchestration.locks import InstanceLocks
from toolbox_agent.orchestration.models import (
    DeployResult,
    DiscoveryResult,
    InstanceDescriptor,
    LifecycleResult,
    ProbeResult,
    RefreshResult,
    StatusReport,
    TeardownResult,
)
from toolbox_agent.orchestration.service import Orchestrator

__all__ = [
    "DeployResult",
    "DiscoveryResult",
    "InstanceDescriptor",
    "InstanceLocks",
    "LifecycleResult",
    "Orchestrator",
    "ProbeResult",
    "RefreshResult",
    "StatusReport",
    "TeardownResult",
]
