"""Tests for the collective health monitor."""

from datetime import timedelta

import pytest

from tests.fakes import FakeProbe, FakeRuntime, deploy_request
from toolbox_agent.bootstrap import AgentComponents
from toolbox_agent.errors import RuntimeTransientError
from toolbox_agent.registry.models import HealthStatus, TransportType, utc_now


async def health_of(components: AgentComponents, name: str = "svc") -> HealthStatus:
    instance = await components.registry.get(name)
    assert instance is not None
    return instance.health_status


class TestTick:
    """Tests for one reconciliation pass."""

    @pytest.mark.asyncio
    async def test_discovered_server_is_healthy(self, components: AgentComponents) -> None:
        """A running, discovered server becomes healthy."""
        await components.orchestrator.deploy(deploy_request(mcpTransportType="sse"))

        heartbeat = await components.monitor.tick()

        assert await health_of(components) == HealthStatus.HEALTHY
        assert heartbeat.status == HealthStatus.HEALTHY
        assert [i.instance_name for i in heartbeat.instances] == ["svc"]
        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.health_metrics is not None
        assert instance.health_metrics.reachable
        assert instance.last_health_check_at is not None

    @pytest.mark.asyncio
    async def test_standard_tool_is_healthy(self, components: AgentComponents) -> None:
        """Standard tools are healthy while running."""
        await components.orchestrator.deploy(deploy_request())

        await components.monitor.tick()

        assert await health_of(components) == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_exited_container_is_stopped(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """A container that exited on its own is stopped but kept."""
        await components.orchestrator.deploy(deploy_request())
        runtime.containers["svc"].status = "exited"

        heartbeat = await components.monitor.tick()

        assert await health_of(components) == HealthStatus.STOPPED
        assert heartbeat.status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_unreachable_server_is_unhealthy(
        self,
        components: AgentComponents,
        probes: dict[TransportType, FakeProbe],
    ) -> None:
        """A failure streak at the threshold makes the server unhealthy."""
        await components.orchestrator.deploy(deploy_request(mcpTransportType="sse"))
        probes[TransportType.SSE].error = ConnectionError("refused")
        for _ in range(3):
            await components.discovery.probe_once("svc")

        heartbeat = await components.monitor.tick()

        assert await health_of(components) == HealthStatus.UNHEALTHY
        assert heartbeat.status == HealthStatus.UNHEALTHY
        assert components.monitor.last_rollup == HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_expired_credentials_flagged(self, components: AgentComponents) -> None:
        """Expired OAuth tokens are reported in the health sample."""
        await components.orchestrator.deploy(deploy_request(oauthConnectionIds=["gmail"]))
        await components.registry.update(
            "svc", credentials_expire_at=utc_now() - timedelta(minutes=1)
        )

        await components.monitor.tick()

        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.health_metrics is not None
        assert not instance.health_metrics.oauth_connections_valid


class TestReconciliation:
    """Tests for out-of-band container changes."""

    @pytest.mark.asyncio
    async def test_missing_container_purged_after_interval(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """A vanished container is stopped, then purged one interval later."""
        await components.orchestrator.deploy(deploy_request(mcpTransportType="sse"))
        del runtime.containers["svc"]
        now = utc_now()

        await components.monitor.tick(now)
        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.health_status == HealthStatus.STOPPED
        assert instance.missing_since == now

        await components.monitor.tick(now + timedelta(seconds=5))
        assert await components.registry.contains("svc")

        await components.monitor.tick(now + timedelta(seconds=16))
        assert not await components.registry.contains("svc")
        assert components.ports.ports_of("svc") == set()
        assert not components.discovery.is_tracked("svc")

    @pytest.mark.asyncio
    async def test_reappearing_container_not_purged(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """A container back before the purge clears the missing mark."""
        await components.orchestrator.deploy(deploy_request())
        info = runtime.containers.pop("svc")
        now = utc_now()
        await components.monitor.tick(now)

        runtime.add(info)
        await components.monitor.tick(now + timedelta(seconds=16))

        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.missing_since is None
        assert instance.health_status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_runtime_failure_skips_reconciliation(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """A daemon outage leaves health untouched but still heartbeats."""
        await components.orchestrator.deploy(deploy_request())
        runtime.fail_list = True

        heartbeat = await components.monitor.tick()

        assert await health_of(components) == HealthStatus.STARTING
        assert len(heartbeat.instances) == 1

    @pytest.mark.asyncio
    async def test_stopping_instance_left_alone(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """Instances being torn down are not reconciled."""
        await components.orchestrator.deploy(deploy_request())
        await components.registry.compare_and_swap_health(
            "svc", HealthStatus.STARTING, HealthStatus.STOPPING
        )
        del runtime.containers["svc"]

        await components.monitor.tick()

        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.health_status == HealthStatus.STOPPING
        assert instance.missing_since is None

    @pytest.mark.asyncio
    async def test_start_stop_loop(self, components: AgentComponents) -> None:
        """The monitor loop starts and stops cleanly."""
        await components.monitor.start()
        await components.monitor.start()
        await components.monitor.stop()
        await components.monitor.stop()


class TestReconcileInstance:
    """Tests for deriving one instance's health on demand."""

    @pytest.mark.asyncio
    async def test_derives_from_runtime(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """An exited container is fused to Stopped with a fresh sample."""
        await components.orchestrator.deploy(deploy_request())
        runtime.containers["svc"].status = "exited"

        health = await components.monitor.reconcile_instance("svc")

        assert health == HealthStatus.STOPPED
        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.health_status == HealthStatus.STOPPED
        assert instance.last_health_check_at is not None
        assert instance.health_metrics is not None
        assert not instance.health_metrics.reachable

    @pytest.mark.asyncio
    async def test_unknown_instance(self, components: AgentComponents) -> None:
        """Unmanaged names have no health."""
        assert await components.monitor.reconcile_instance("ghost") is None

    @pytest.mark.asyncio
    async def test_stopping_instance_untouched(self, components: AgentComponents) -> None:
        """An instance mid-operation keeps Stopping."""
        await components.orchestrator.deploy(deploy_request())
        await components.registry.compare_and_swap_health(
            "svc", HealthStatus.STARTING, HealthStatus.STOPPING
        )

        assert await components.monitor.reconcile_instance("svc") == HealthStatus.STOPPING

    @pytest.mark.asyncio
    async def test_runtime_failure_keeps_health(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """A failed inspect leaves the current health in place."""
        await components.orchestrator.deploy(deploy_request())
        runtime.fail_on["inspect"] = RuntimeTransientError("daemon busy")

        assert await components.monitor.reconcile_instance("svc") == HealthStatus.STARTING

    @pytest.mark.asyncio
    async def test_missing_container_left_to_tick(
        self, components: AgentComponents, runtime: FakeRuntime
    ) -> None:
        """A vanished container is not marked missing outside a tick."""
        await components.orchestrator.deploy(deploy_request())
        del runtime.containers["svc"]

        assert await components.monitor.reconcile_instance("svc") == HealthStatus.STARTING
        instance = await components.registry.get("svc")
        assert instance is not None
        assert instance.missing_since is None
