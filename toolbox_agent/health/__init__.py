"""Health fusion, reconciliation and heartbeats."""

from toolbox_agent.health.fusion import derive_health, rollup
from toolbox_agent.health.heartbeat import Heartbeat, HeartbeatInstance, HeartbeatSink
from toolbox_agent.health.monitor import CollectiveHealthMonitor

__all__ = [
    "CollectiveHealthMonitor",
    "Heartbeat",
    "HeartbeatInstance",
    "HeartbeatSink",
    "derive_health",
    "rollup",
]
