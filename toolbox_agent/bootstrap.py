"""Component wiring for the toolbox agent.

Builds the full component graph from Settings and owns its startup and
shutdown sequence. Used by the API lifespan and by tests that want a
real graph over a fake runtime.

Example usage:

    from toolbox_agent.bootstrap import bootstrap

    agent = bootstrap(settings)
    await agent.recover()
    await agent.start()
    ...
    await agent.shutdown()
"""

from dataclasses import dataclass
from typing import Any

import httpx

from toolbox_agent.config.settings import Settings
from toolbox_agent.configuration.manager import ConfigurationManager
from toolbox_agent.configuration.ports import PortAllocator
from toolbox_agent.containers.client import ContainerRuntimeClient
from toolbox_agent.credentials.broker import CredentialBroker
from toolbox_agent.credentials.injector import CredentialInjector
from toolbox_agent.discovery.engine import MCPDiscoveryEngine
from toolbox_agent.discovery.probes import Probe, SessionProbe, StdioProbe
from toolbox_agent.health.heartbeat import HeartbeatSink
from toolbox_agent.health.monitor import CollectiveHealthMonitor
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.orchestration.locks import InstanceLocks
from toolbox_agent.orchestration.service import Orchestrator
from toolbox_agent.registry.models import TransportType
from toolbox_agent.registry.registry import InstanceRegistry

logger = get_logger(__name__)


@dataclass
class AgentComponents:
    """The assembled component graph."""

    settings: Settings
    runtime: ContainerRuntimeClient
    registry: InstanceRegistry
    ports: PortAllocator
    configuration: ConfigurationManager
    broker: CredentialBroker
    credentials: CredentialInjector
    discovery: MCPDiscoveryEngine
    sink: HeartbeatSink
    orchestrator: Orchestrator
    monitor: CollectiveHealthMonitor

    async def recover(self) -> int:
        """Rebuild state from runtime labels after a restart.

        Ports are re-claimed, rebuilt MCP servers are tracked again and
        OAuth instances are scheduled for refresh from their recorded
        expiry. A restarted agent never holds credentials, so this is the
        only credential state it can recover.

        Returns:
            Number of instances recovered
        """
        instances = await self.registry.rebuild(
            self.runtime,
            self.settings.agent.name,
            self.credentials.env_prefix,
        )
        for instance in instances:
            if instance.port_bindings:
                self.ports.claim(instance.instance_name, set(instance.port_bindings.values()))
            if instance.is_mcp:
                self.discovery.track(instance.instance_name)
            if instance.oauth_connection_ids:
                self.orchestrator.refresh_scheduler.schedule(
                    instance.instance_name,
                    self.credentials.refresh_delay_for(instance),
                )

        logger.info("agent_state_recovered", instance_count=len(instances))
        return len(instances)

    async def start(self) -> None:
        """Start the background loops."""
        await self.orchestrator.refresh_scheduler.start()
        await self.monitor.start()

    async def shutdown(self) -> None:
        """Stop background loops and close clients. Containers keep running."""
        await self.monitor.stop()
        await self.orchestrator.refresh_scheduler.stop()
        await self.discovery.stop()
        await self.broker.close()
        await self.sink.close()
        await self.runtime.close()
        logger.info("agent_shutdown_complete")


def bootstrap(
    settings: Settings,
    docker_client: Any | None = None,
    broker_transport: httpx.AsyncBaseTransport | None = None,
    heartbeat_transport: httpx.AsyncBaseTransport | None = None,
    runtime: ContainerRuntimeClient | None = None,
    probes: dict[TransportType, Probe] | None = None,
) -> AgentComponents:
    """Build every component from settings.

    Args:
        settings: Loaded settings
        docker_client: Pre-built docker SDK client
        broker_transport: httpx transport for the credential broker (tests)
        heartbeat_transport: httpx transport for the heartbeat sink (tests)
        runtime: Runtime client replacing the docker-backed one (tests)
        probes: Probe per transport replacing the MCP client probes (tests)

    Returns:
        AgentComponents ready for recover() and start()
    """
    token = settings.control_plane_token
    agent_name = settings.agent.name

    runtime = runtime or ContainerRuntimeClient(settings.runtime, docker_client=docker_client)
    registry = InstanceRegistry()
    ports = PortAllocator(settings.deploy.port_range_start, settings.deploy.port_range_end)
    configuration = ConfigurationManager(
        settings.deploy,
        agent_name=agent_name,
        credential_prefix=settings.credentials.env_prefix,
        registry=registry,
        ports=ports,
    )

    broker = CredentialBroker(settings.credentials, token=token, transport=broker_transport)
    credentials = CredentialInjector(settings.credentials, broker, runtime, registry)

    probe_host = settings.discovery.probe_host
    probe_timeout = settings.discovery.probe_timeout_seconds
    probes = probes or {
        TransportType.STDIO: StdioProbe(
            runtime,
            protocol_version=settings.discovery.protocol_version,
            timeout=probe_timeout,
        ),
        TransportType.SSE: SessionProbe(TransportType.SSE, probe_host, probe_timeout),
        TransportType.WEBSOCKET: SessionProbe(TransportType.WEBSOCKET, probe_host, probe_timeout),
    }
    discovery = MCPDiscoveryEngine(settings.discovery, registry, probes)

    orchestrator = Orchestrator(
        runtime=runtime,
        registry=registry,
        configuration=configuration,
        credentials=credentials,
        discovery=discovery,
        locks=InstanceLocks(settings.deploy.max_concurrent_deploys),
        advertise_host=settings.agent.advertise_host or probe_host,
        service_name=agent_name,
        version=settings.agent.agent_version,
        refresh_check_interval_seconds=settings.credentials.refresh_check_interval_seconds,
        refresh_retry_seconds=settings.credentials.refresh_floor_seconds,
    )

    sink = HeartbeatSink(settings.health, token=token, transport=heartbeat_transport)
    monitor = CollectiveHealthMonitor(
        settings.health,
        registry=registry,
        runtime=runtime,
        discovery=discovery,
        sink=sink,
        agent_name=agent_name,
        purge=orchestrator.purge_missing,
        version=settings.agent.agent_version,
    )
    orchestrator.attach_health_monitor(monitor.reconcile_instance)

    logger.info(
        "agent_bootstrapped",
        agent_name=agent_name,
        port_range=[settings.deploy.port_range_start, settings.deploy.port_range_end],
        broker_configured=settings.credentials.broker_url is not None,
        heartbeat_configured=settings.health.heartbeat_url is not None,
    )

    return AgentComponents(
        settings=settings,
        runtime=runtime,
        registry=registry,
        ports=ports,
        configuration=configuration,
        broker=broker,
        credentials=credentials,
        discovery=discovery,
        sink=sink,
        orchestrator=orchestrator,
        monitor=monitor,
    )
