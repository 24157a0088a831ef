"""Collective health monitor.

Each tick reconciles the registry against runtime truth, derives every
instance's health, and sends a heartbeat to the control plane.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import datetime

from toolbox_agent import __version__
from toolbox_agent.config.models.health import HealthConfig
from toolbox_agent.containers.client import ContainerRuntimeClient
from toolbox_agent.containers.labels import managed_filter
from toolbox_agent.containers.models import ContainerInfo
from toolbox_agent.discovery.engine import MCPDiscoveryEngine
from toolbox_agent.discovery.models import DiscoveryState
from toolbox_agent.errors import ToolboxAgentError
from toolbox_agent.health.fusion import derive_health, rollup
from toolbox_agent.health.heartbeat import Heartbeat, HeartbeatInstance, HeartbeatSink
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import INSTANCES
from toolbox_agent.registry.models import (
    ContainerType,
    HealthMetrics,
    HealthStatus,
    ManagedInstance,
    utc_now,
)
from toolbox_agent.registry.registry import InstanceRegistry

logger = get_logger(__name__)

# Purges an instance whose container vanished; True if it was purged
PurgeCallback = Callable[[str], Awaitable[bool]]


class CollectiveHealthMonitor:
    """Fuses runtime and discovery state into instance and host health.

    Health is only ever written here (and set to Stopping by teardown).
    Runtime errors skip reconciliation for a tick rather than marking
    every instance Stopped.
    """

    def __init__(
        self,
        config: HealthConfig,
        registry: InstanceRegistry,
        runtime: ContainerRuntimeClient,
        discovery: MCPDiscoveryEngine,
        sink: HeartbeatSink,
        agent_name: str,
        purge: PurgeCallback,
        version: str | None = None,
    ) -> None:
        """Initialize health monitor.

        Args:
            config: Heartbeat cadence and grace periods
            registry: Instance registry
            runtime: Container runtime client
            discovery: Discovery engine supplying protocol state
            sink: Heartbeat sink
            agent_name: Management label value
            purge: Locked purge of an instance whose container vanished
            version: Version reported in heartbeats
        """
        self._config = config
        self._registry = registry
        self._runtime = runtime
        self._discovery = discovery
        self._sink = sink
        self._agent_name = agent_name
        self._purge = purge
        self._version = version or __version__
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._last_rollup = HealthStatus.HEALTHY

    @property
    def last_rollup(self) -> HealthStatus:
        """Host rollup computed by the most recent tick."""
        return self._last_rollup

    async def start(self) -> None:
        """Start the health loop."""
        if self._running:
            logger.warning("health_monitor_already_running")
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._loop())

        logger.info(
            "health_monitor_started",
            heartbeat_interval_seconds=self._config.heartbeat_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop the health loop."""
        if not self._running:
            return

        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        logger.info("health_monitor_stopped")

    async def tick(self, now: datetime | None = None) -> Heartbeat:
        """Run one reconciliation pass and send a heartbeat."""
        current = now or utc_now()

        try:
            containers = await self._runtime.list(labels=managed_filter(self._agent_name))
        except ToolboxAgentError as e:
            logger.warning("health_reconcile_skipped", error=e.message)
        else:
            await self._reconcile({c.name: c for c in containers}, current)

        instances = await self._registry.list()
        statuses = [i.health_status for i in instances]
        self._last_rollup = rollup(statuses)
        for status in HealthStatus:
            INSTANCES.labels(health=status.value).set(statuses.count(status))

        heartbeat = Heartbeat(
            agent=self._agent_name,
            version=self._version,
            timestamp=current,
            status=self._last_rollup,
            instances=[
                HeartbeatInstance(
                    instance_name=i.instance_name,
                    account_tool_instance_id=i.account_tool_instance_id,
                    container_id=i.container_id,
                    container_type=i.container_type,
                    transport_type=i.transport_type,
                    health_status=i.health_status,
                    last_health_check=i.last_health_check_at,
                )
                for i in instances
            ],
        )
        await self._sink.send(heartbeat)
        return heartbeat

    async def _reconcile(self, containers: dict[str, ContainerInfo], now: datetime) -> None:
        for instance in await self._registry.list():
            if instance.health_status == HealthStatus.STOPPING:
                continue

            container = containers.get(instance.instance_name)
            if container is None:
                await self._handle_missing(instance, now)
                continue
            await self._fuse(instance, container, now)

    async def reconcile_instance(
        self, instance_name: str, now: datetime | None = None
    ) -> HealthStatus | None:
        """Derive one instance's health immediately instead of waiting for a tick.

        Start and stop hand their instance back through here. Missing
        containers are left to the tick, which owns purging.

        Returns:
            The instance's health afterwards, or None if it is not managed
        """
        current = now or utc_now()
        instance = await self._registry.get(instance_name)
        if instance is None:
            return None
        if instance.health_status == HealthStatus.STOPPING:
            return instance.health_status

        try:
            container = await self._runtime.inspect(instance_name)
        except ToolboxAgentError as e:
            logger.warning(
                "health_reconcile_instance_skipped", instance_name=instance_name, error=e.message
            )
            return instance.health_status
        if container is None:
            return instance.health_status
        return await self._fuse(instance, container, current)

    async def _fuse(
        self, instance: ManagedInstance, container: ContainerInfo, now: datetime
    ) -> HealthStatus:
        discovery_state = self._discovery.discovery_state(instance.instance_name)
        health = derive_health(
            container,
            discovery_state,
            instance.container_type,
            instance.registered_at,
            now,
            self._config.starting_grace_seconds,
        )
        metrics = self._sample(instance, container, discovery_state, now)

        swapped = await self._registry.compare_and_swap_health(
            instance.instance_name,
            instance.health_status,
            health,
            health_metrics=metrics,
            last_health_check_at=now,
            missing_since=None,
        )
        if not swapped:
            return instance.health_status
        if health != instance.health_status:
            logger.info(
                "instance_health_changed",
                instance_name=instance.instance_name,
                previous=instance.health_status.value,
                current=health.value,
            )
        return health

    async def _handle_missing(self, instance: ManagedInstance, now: datetime) -> None:
        name = instance.instance_name
        if instance.missing_since is None:
            swapped = await self._registry.compare_and_swap_health(
                name,
                instance.health_status,
                HealthStatus.STOPPED,
                missing_since=now,
                last_health_check_at=now,
                health_metrics=HealthMetrics(
                    reachable=False,
                    oauth_connections_valid=self._oauth_valid(instance, now),
                    timestamp=now,
                ),
            )
            if swapped:
                logger.warning("instance_container_missing", instance_name=name)
            return

        missing_for = (now - instance.missing_since).total_seconds()
        if missing_for < self._config.heartbeat_interval_seconds:
            return

        try:
            purged = await self._purge(name)
        except ToolboxAgentError as e:
            logger.warning("instance_purge_failed", instance_name=name, error=e.message)
            return
        if purged:
            logger.info(
                "instance_purged",
                instance_name=name,
                missing_seconds=round(missing_for, 1),
            )

    def _sample(
        self,
        instance: ManagedInstance,
        container: ContainerInfo,
        discovery_state: DiscoveryState | None,
        now: datetime,
    ) -> HealthMetrics:
        if instance.container_type == ContainerType.STANDARD_TOOL:
            reachable = container.status == "running"
            latency = None
        else:
            reachable = discovery_state == DiscoveryState.DISCOVERED
            probe = self._discovery.state_of(instance.instance_name)
            latency = probe.last_latency_ms if probe else None
        return HealthMetrics(
            reachable=reachable,
            response_time_ms=latency,
            oauth_connections_valid=self._oauth_valid(instance, now),
            timestamp=now,
        )

    @staticmethod
    def _oauth_valid(instance: ManagedInstance, now: datetime) -> bool:
        if not instance.oauth_connection_ids or instance.credentials_expire_at is None:
            return True
        return instance.credentials_expire_at > now

    async def _loop(self) -> None:
        """Background health loop."""
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error("health_loop_error", error=str(e))

            await asyncio.sleep(self._config.heartbeat_interval_seconds)
