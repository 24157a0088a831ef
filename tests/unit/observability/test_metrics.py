"""Tests for Prometheus metrics."""

from prometheus_client import REGISTRY

from toolbox_agent.observability.metrics import (
    DEPLOY_COUNT,
    INSTANCES,
    PROBE_COUNT,
    setup_metrics,
)


class TestMetrics:
    """Tests for metric definitions."""

    def test_deploy_counter_labels(self) -> None:
        """Deploy counter is labelled by type, transport and outcome."""
        labels = {"container_type": "mcp_server", "transport": "sse", "outcome": "success"}
        before = REGISTRY.get_sample_value("toolbox_agent_deploy_total", labels) or 0.0
        DEPLOY_COUNT.labels(**labels).inc()
        assert REGISTRY.get_sample_value("toolbox_agent_deploy_total", labels) == before + 1

    def test_probe_counter_labels(self) -> None:
        """Probe counter is labelled by transport and outcome."""
        labels = {"transport": "stdio", "outcome": "timeout"}
        before = REGISTRY.get_sample_value("toolbox_agent_probe_total", labels) or 0.0
        PROBE_COUNT.labels(**labels).inc()
        assert REGISTRY.get_sample_value("toolbox_agent_probe_total", labels) == before + 1

    def test_setup_metrics_zeroes_every_health_status(self) -> None:
        """All health statuses are exported after setup."""
        INSTANCES.labels(health="healthy").set(4)
        setup_metrics()
        for health in ("starting", "healthy", "degraded", "unhealthy", "stopping", "stopped"):
            assert REGISTRY.get_sample_value("toolbox_agent_instances", {"health": health}) == 0
