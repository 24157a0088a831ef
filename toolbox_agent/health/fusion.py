"""Health fusion rules.

Runtime state and discovery state are fused into one HealthStatus with a
first-match-wins table; the host rollup is derived from instance health.
"""

from collections.abc import Iterable
from datetime import datetime

from toolbox_agent.containers.models import ContainerInfo
from toolbox_agent.discovery.models import DiscoveryState
from toolbox_agent.registry.models import ContainerType, HealthStatus


def derive_health(
    container: ContainerInfo | None,
    discovery_state: DiscoveryState | None,
    container_type: ContainerType,
    registered_at: datetime,
    now: datetime,
    starting_grace_seconds: float,
) -> HealthStatus:
    """Derive one instance's health.

    Args:
        container: Runtime view of the container, None if absent
        discovery_state: Discovery state, None if never tracked
        container_type: Standard tools have no protocol probe
        registered_at: When the agent began managing the instance
        now: Evaluation time
        starting_grace_seconds: How long an unprobed server may be Starting

    Returns:
        The derived HealthStatus
    """
    if container is None or container.status != "running":
        return HealthStatus.STOPPED

    if container_type == ContainerType.STANDARD_TOOL:
        return HealthStatus.HEALTHY

    if discovery_state == DiscoveryState.UNREACHABLE:
        return HealthStatus.UNHEALTHY
    if discovery_state == DiscoveryState.STALE:
        return HealthStatus.DEGRADED
    if discovery_state == DiscoveryState.DISCOVERED:
        return HealthStatus.HEALTHY

    age = (now - registered_at).total_seconds()
    if age < starting_grace_seconds:
        return HealthStatus.STARTING
    return HealthStatus.UNHEALTHY


def rollup(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Host-level health.

    Unhealthy if any instance is Unhealthy; otherwise Degraded if any is
    Degraded; Healthy if all are Healthy (an empty host included). Any
    other mix (Starting, Stopping, Stopped) is Degraded.
    """
    values = list(statuses)
    if any(s == HealthStatus.UNHEALTHY for s in values):
        return HealthStatus.UNHEALTHY
    if any(s == HealthStatus.DEGRADED for s in values):
        return HealthStatus.DEGRADED
    if all(s == HealthStatus.HEALTHY for s in values):
        return HealthStatus.HEALTHY
    return HealthStatus.DEGRADED
