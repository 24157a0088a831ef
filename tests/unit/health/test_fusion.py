"""Tests for health fusion rules."""

import itertools
from datetime import UTC, datetime, timedelta

import pytest

from toolbox_agent.containers.models import ContainerInfo
from toolbox_agent.discovery.models import DiscoveryState
from toolbox_agent.health.fusion import derive_health, rollup
from toolbox_agent.registry.models import ContainerType, HealthStatus

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
GRACE = 30


def container(status: str = "running") -> ContainerInfo:
    return ContainerInfo(id="c1", name="svc", status=status)


class TestDeriveHealth:
    """Tests for derive_health."""

    @pytest.mark.parametrize(
        ("status", "discovery", "expected"),
        [
            ("running", DiscoveryState.DISCOVERED, HealthStatus.HEALTHY),
            ("running", DiscoveryState.STALE, HealthStatus.DEGRADED),
            ("running", DiscoveryState.UNREACHABLE, HealthStatus.UNHEALTHY),
            ("exited", DiscoveryState.DISCOVERED, HealthStatus.STOPPED),
            ("paused", DiscoveryState.DISCOVERED, HealthStatus.STOPPED),
            ("restarting", None, HealthStatus.STOPPED),
        ],
    )
    def test_mcp_server_table(
        self, status: str, discovery: DiscoveryState | None, expected: HealthStatus
    ) -> None:
        """Runtime state wins, then discovery state."""
        assert (
            derive_health(container(status), discovery, ContainerType.MCP_SERVER, NOW, NOW, GRACE)
            == expected
        )

    def test_missing_container_is_stopped(self) -> None:
        """An absent container is stopped whatever discovery says."""
        assert (
            derive_health(
                None, DiscoveryState.DISCOVERED, ContainerType.MCP_SERVER, NOW, NOW, GRACE
            )
            == HealthStatus.STOPPED
        )

    def test_pending_within_grace_is_starting(self) -> None:
        """A never-probed server is starting during the grace window."""
        registered = NOW - timedelta(seconds=GRACE - 1)
        assert (
            derive_health(
                container(), DiscoveryState.PENDING, ContainerType.MCP_SERVER, registered, NOW, GRACE
            )
            == HealthStatus.STARTING
        )

    def test_pending_after_grace_is_unhealthy(self) -> None:
        """A server never discovered after the grace window is unhealthy."""
        registered = NOW - timedelta(seconds=GRACE + 1)
        assert (
            derive_health(container(), None, ContainerType.MCP_SERVER, registered, NOW, GRACE)
            == HealthStatus.UNHEALTHY
        )

    def test_standard_tool_running_is_healthy(self) -> None:
        """Standard tools are healthy whenever running."""
        assert (
            derive_health(container(), None, ContainerType.STANDARD_TOOL, NOW, NOW, GRACE)
            == HealthStatus.HEALTHY
        )
        assert (
            derive_health(container("exited"), None, ContainerType.STANDARD_TOOL, NOW, NOW, GRACE)
            == HealthStatus.STOPPED
        )


class TestRollup:
    """Tests for the host rollup."""

    def test_empty_host_is_healthy(self) -> None:
        """No instances means healthy."""
        assert rollup([]) == HealthStatus.HEALTHY

    @pytest.mark.parametrize("size", [1, 2, 3])
    def test_rollup_rules_over_all_combinations(self, size: int) -> None:
        """Unhealthy dominates, then degraded; only all-healthy is healthy."""
        for combo in itertools.product(list(HealthStatus), repeat=size):
            result = rollup(combo)
            if HealthStatus.UNHEALTHY in combo:
                assert result == HealthStatus.UNHEALTHY
            elif all(s == HealthStatus.HEALTHY for s in combo):
                assert result == HealthStatus.HEALTHY
            else:
                assert result == HealthStatus.DEGRADED
