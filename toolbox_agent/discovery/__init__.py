"""MCP capability discovery and protocol-level liveness."""

from toolbox_agent.discovery.engine import MCPDiscoveryEngine
from toolbox_agent.discovery.models import DiscoveryState, ProbeState
from toolbox_agent.discovery.probes import Probe, ProbeError, SessionProbe, StdioProbe

__all__ = [
    "DiscoveryState",
    "MCPDiscoveryEngine",
    "Probe",
    "ProbeError",
    "ProbeState",
    "SessionProbe",
    "StdioProbe",
]
