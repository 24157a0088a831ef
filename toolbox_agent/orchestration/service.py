"""Orchestration service.

The command and query surface used by the control plane. Every mutation
of one instance name is serialized; deploys are additionally bounded by a
global concurrency cap.
"""

import asyncio
import os
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import timedelta

from toolbox_agent import __version__
from toolbox_agent.configuration.manager import ConfigurationManager
from toolbox_agent.configuration.models import DeployRequest, NormalizedConfig
from toolbox_agent.containers.client import ContainerRuntimeClient
from toolbox_agent.containers.labels import ACCOUNT_TOOL_INSTANCE_ID, MANAGED_BY
from toolbox_agent.credentials.injector import CredentialInjector
from toolbox_agent.credentials.scheduler import CredentialRefreshScheduler
from toolbox_agent.discovery.engine import MCPDiscoveryEngine
from toolbox_agent.errors import (
    ConflictError,
    ContainerAlreadyExistsError,
    InstanceNotFoundError,
    OwnershipError,
    ToolboxAgentError,
    ValidationError,
)
from toolbox_agent.health.fusion import rollup
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import (
    CREDENTIAL_REFRESHES,
    DEPLOY_COUNT,
    DEPLOY_LATENCY,
    ROLLBACK_COUNT,
    TEARDOWN_COUNT,
)
from toolbox_agent.observability.tracing import create_span, record_exception
from toolbox_agent.orchestration.locks import InstanceLocks
from toolbox_agent.orchestration.models import (
    DeployResult,
    DiscoveryResult,
    DiscoverySummary,
    InstanceDescriptor,
    LifecycleResult,
    MCPDiscoveryStatus,
    ProbeResult,
    RefreshResult,
    StatusReport,
    SystemMetrics,
    TeardownResult,
    ToolInstances,
)
from toolbox_agent.registry.models import (
    ContainerType,
    HealthStatus,
    ManagedInstance,
    TransportType,
    utc_now,
)
from toolbox_agent.registry.registry import InstanceRegistry

logger = get_logger(__name__)

# Derives one instance's health now; None if the instance is not managed
HealthReconciler = Callable[[str], Awaitable[HealthStatus | None]]


class Orchestrator:
    """Deploy, teardown, refresh and query managed instances."""

    def __init__(
        self,
        runtime: ContainerRuntimeClient,
        registry: InstanceRegistry,
        configuration: ConfigurationManager,
        credentials: CredentialInjector,
        discovery: MCPDiscoveryEngine,
        locks: InstanceLocks,
        advertise_host: str = "127.0.0.1",
        service_name: str = "toolbox-agent",
        version: str | None = None,
        refresh_check_interval_seconds: float = 5.0,
        refresh_retry_seconds: float = 900.0,
    ) -> None:
        """Initialize orchestrator.

        Args:
            runtime: Container runtime client
            registry: Instance registry
            configuration: Deploy request validator
            credentials: Credential injector
            discovery: Discovery engine
            locks: Per-instance locks and deploy cap
            advertise_host: Host used in reported endpoint URLs
            service_name: Service name reported in status
            version: Version reported in status
            refresh_check_interval_seconds: Credential scheduler poll interval
            refresh_retry_seconds: Delay before retrying a failed refresh
        """
        self._runtime = runtime
        self._registry = registry
        self._configuration = configuration
        self._credentials = credentials
        self._discovery = discovery
        self._locks = locks
        self._advertise_host = advertise_host
        self._service_name = service_name
        self._version = version or __version__
        self.refresh_scheduler = CredentialRefreshScheduler(
            self._scheduled_refresh,
            check_interval_seconds=refresh_check_interval_seconds,
            retry_delay_seconds=refresh_retry_seconds,
        )
        self._reconcile_health: HealthReconciler | None = None

    def attach_health_monitor(self, reconcile: HealthReconciler) -> None:
        """Route start/stop hand-backs through the health monitor's fusion."""
        self._reconcile_health = reconcile

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def deploy(self, request: DeployRequest) -> DeployResult:
        """Validate, fetch credentials, create and start a container.

        Any failure or cancellation after the container is created removes
        it again and releases its port before the error propagates.
        """
        name = request.instance_name_on_toolbox.strip()
        started = time.monotonic()
        container_type = "unknown"
        transport = "unknown"

        with create_span(
            "toolbox.deploy",
            attributes={"instance.name": name, "image": request.docker_image_url},
        ) as span:
            try:
                async with self._locks.deploy_slots, self._locks.instance(name):
                    config = await self._configuration.validate(request)
                    container_type = config.container_type.value
                    transport = config.transport_type.value

                    if config.replace:
                        existing = await self._registry.get(name)
                        if existing is not None:
                            self._check_owner(existing, config.account_tool_instance_id)
                            logger.info("deploy_replacing_instance", instance_name=name)
                            await self._teardown_locked(existing)

                    instance, injected, refresh_delay = await self._create_instance(config)
            except BaseException as e:
                DEPLOY_COUNT.labels(
                    container_type=container_type, transport=transport, outcome="failure"
                ).inc()
                if isinstance(e, Exception):
                    record_exception(span, e)
                logger.warning(
                    "deploy_failed",
                    instance_name=name,
                    error=e.message if isinstance(e, ToolboxAgentError) else type(e).__name__,
                    error_kind=e.kind.value if isinstance(e, ToolboxAgentError) else None,
                )
                raise

        if refresh_delay is not None:
            self.refresh_scheduler.schedule(name, refresh_delay)

        probe_state = None
        if instance.is_mcp:
            self._discovery.track(name)
            try:
                probe_state = await self._discovery.force_probe(name)
            except InstanceNotFoundError:
                probe_state = None

        current = await self._registry.get(name) or instance

        DEPLOY_COUNT.labels(
            container_type=container_type, transport=transport, outcome="success"
        ).inc()
        DEPLOY_LATENCY.labels(container_type=container_type).observe(time.monotonic() - started)
        logger.info(
            "deploy_completed",
            instance_name=name,
            container_id=current.container_id,
            container_type=container_type,
            transport=transport,
            port_bindings=current.port_bindings,
            discovery_state=probe_state.state.value if probe_state else None,
        )

        return DeployResult(
            instance_name=name,
            container_id=current.container_id,
            container_type=current.container_type,
            transport_type=current.transport_type,
            endpoint_path=current.endpoint_path,
            endpoint_url=self._endpoint_url(current),
            port_bindings=current.port_bindings,
            capabilities=current.capabilities,
            discovery_state=probe_state.state if probe_state else None,
            oauth_connections_injected=injected,
            health_status=current.health_status,
        )

    async def _create_instance(
        self, config: NormalizedConfig
    ) -> tuple[ManagedInstance, list[str], float | None]:
        """Reserve ports, inject credentials, create and start. Caller holds the lock."""
        name = config.instance_name
        config = self._configuration.reserve_ports(config)
        container_id: str | None = None
        attempted_labels: dict[str, str] | None = None

        try:
            spec = config.spec
            refresh_delay: float | None = None
            expires_at = None
            if config.oauth_connection_ids:
                bundle = await self._credentials.fetch_credentials(
                    agent_id=config.agent_id,
                    account_tool_instance_id=config.account_tool_instance_id,
                    connection_ids=config.oauth_connection_ids,
                    required_scopes=config.required_scopes,
                )
                injection = self._credentials.inject(spec, bundle)
                spec = injection.spec
                refresh_delay = injection.refresh_delay_seconds
                expires_at = injection.expires_at

            attempted_labels = spec.labels
            try:
                container = await self._runtime.create(config.image, name, spec)
            except ContainerAlreadyExistsError:
                attempted_labels = None
                raise
            container_id = container.id
            await self._runtime.start(container.id)

            now = utc_now()
            instance = ManagedInstance(
                instance_name=name,
                account_tool_instance_id=config.account_tool_instance_id,
                container_id=container.id,
                container_type=config.container_type,
                transport_type=config.transport_type,
                endpoint_path=config.endpoint_path,
                port_bindings=config.port_bindings,
                oauth_connection_ids=config.oauth_connection_ids,
                oauth_scopes=config.required_scopes,
                agent_id=config.agent_id,
                image=config.image,
                spec=config.spec,
                health_status=HealthStatus.STARTING,
                last_oauth_refresh_at=now if config.oauth_connection_ids else None,
                credentials_expire_at=expires_at,
                created_at=now,
                registered_at=now,
            )
            await self._registry.put(instance)
        except BaseException:
            await asyncio.shield(self._rollback(name, container_id, attempted_labels))
            raise

        return instance, list(config.oauth_connection_ids), refresh_delay

    async def _rollback(
        self,
        instance_name: str,
        container_id: str | None,
        attempted_labels: dict[str, str] | None = None,
    ) -> None:
        if container_id is None and attempted_labels is not None:
            container_id = await self._find_orphan(instance_name, attempted_labels)
        if container_id is not None:
            ROLLBACK_COUNT.labels(operation="deploy").inc()
            try:
                await self._runtime.remove(container_id, force=True)
            except ToolboxAgentError as e:
                logger.error(
                    "deploy_rollback_failed",
                    instance_name=instance_name,
                    container_id=container_id,
                    error=e.message,
                )
            else:
                logger.info(
                    "deploy_rolled_back",
                    instance_name=instance_name,
                    container_id=container_id,
                )
        self._configuration.release_ports(instance_name)

    async def _find_orphan(self, instance_name: str, labels: dict[str, str]) -> str | None:
        """Find a container left by a create that failed after the daemon made it.

        Only a container carrying this agent's management label and the
        deploying owner's label is claimed.
        """
        try:
            info = await self._runtime.inspect(instance_name)
        except ToolboxAgentError as e:
            logger.error(
                "deploy_rollback_inspect_failed",
                instance_name=instance_name,
                error=e.message,
            )
            return None
        if info is None:
            return None
        if any(
            info.labels.get(key) != labels.get(key)
            for key in (MANAGED_BY, ACCOUNT_TOOL_INSTANCE_ID)
        ):
            return None
        logger.warning("deploy_orphan_found", instance_name=instance_name, container_id=info.id)
        return info.id

    async def teardown(self, instance_name: str, owner: str) -> TeardownResult:
        """Stop and remove an instance. Unknown names succeed."""
        with create_span("toolbox.teardown", attributes={"instance.name": instance_name}):
            async with self._locks.instance(instance_name):
                instance = await self._registry.get(instance_name)
                if instance is None:
                    TEARDOWN_COUNT.labels(outcome="absent").inc()
                    logger.info("teardown_instance_absent", instance_name=instance_name)
                    return TeardownResult(instance_name=instance_name, existed=False)

                self._check_owner(instance, owner)
                try:
                    await self._teardown_locked(instance)
                except ToolboxAgentError:
                    TEARDOWN_COUNT.labels(outcome="failure").inc()
                    raise

        TEARDOWN_COUNT.labels(outcome="success").inc()
        logger.info(
            "teardown_completed",
            instance_name=instance_name,
            container_id=instance.container_id,
        )
        return TeardownResult(instance_name=instance_name, existed=True)

    async def _teardown_locked(self, instance: ManagedInstance) -> None:
        name = instance.instance_name
        await self._registry.compare_and_swap_health(
            name, instance.health_status, HealthStatus.STOPPING
        )
        await self._discovery.untrack(name)
        self.refresh_scheduler.cancel(name)

        try:
            await self._runtime.stop(instance.container_id)
            await self._runtime.remove(instance.container_id, force=True)
        except ToolboxAgentError as e:
            logger.error("teardown_failed", instance_name=name, error=e.message)
            # Hand the instance back to the monitor and loops
            await self._registry.compare_and_swap_health(
                name, HealthStatus.STOPPING, HealthStatus.STARTING, registered_at=utc_now()
            )
            if instance.is_mcp:
                self._discovery.track(name)
            if instance.oauth_connection_ids:
                self.refresh_scheduler.schedule(name, self._credentials.refresh_delay_for(instance))
            raise

        await self._registry.remove(name)
        self._configuration.release_ports(name)

    async def purge_missing(self, instance_name: str) -> bool:
        """Forget an instance whose container vanished out-of-band.

        Re-checks the runtime under the instance lock, so an in-flight
        refresh or restart is never purged.
        """
        async with self._locks.instance(instance_name):
            instance = await self._registry.get(instance_name)
            if instance is None or instance.missing_since is None:
                return False
            if instance.health_status == HealthStatus.STOPPING:
                return False
            if await self._runtime.inspect(instance_name) is not None:
                return False

            await self._discovery.untrack(instance_name)
            self.refresh_scheduler.cancel(instance_name)
            await self._registry.remove(instance_name)
            self._configuration.release_ports(instance_name)
            return True

    async def start(self, instance_name: str, owner: str) -> LifecycleResult:
        """Start a stopped instance."""
        async with self._locks.instance(instance_name):
            instance = await self._require(instance_name)
            self._check_owner(instance, owner)
            await self._runtime.start(instance.container_id)
            updated = await self._registry.update(
                instance_name,
                registered_at=utc_now(),
                missing_since=None,
            )
            if instance.is_mcp:
                self._discovery.reset(instance_name)
                self._discovery.track(instance_name)
            current = updated or instance
            health = await self._rederive_health(instance_name, current.health_status)

        logger.info("instance_started", instance_name=instance_name, health_status=health.value)
        return LifecycleResult(
            instance_name=instance_name,
            container_id=current.container_id,
            health_status=health,
        )

    async def stop(self, instance_name: str, owner: str) -> LifecycleResult:
        """Stop an instance without removing it."""
        async with self._locks.instance(instance_name):
            instance = await self._require(instance_name)
            self._check_owner(instance, owner)
            await self._registry.compare_and_swap_health(
                instance_name, instance.health_status, HealthStatus.STOPPING
            )
            try:
                await self._runtime.stop(instance.container_id)
            finally:
                await self._registry.compare_and_swap_health(
                    instance_name, HealthStatus.STOPPING, instance.health_status
                )
            health = await self._rederive_health(instance_name, instance.health_status)

        logger.info("instance_stopped", instance_name=instance_name, health_status=health.value)
        return LifecycleResult(
            instance_name=instance_name,
            container_id=instance.container_id,
            health_status=health,
        )

    async def refresh_credentials(
        self,
        instance_name: str,
        owner: str,
        connection_ids: list[str] | None = None,
    ) -> RefreshResult:
        """Refresh an instance's credentials on demand.

        A failed fetch leaves the running container and its current
        credentials in place.
        """
        with create_span("toolbox.refresh_credentials", attributes={"instance.name": instance_name}):
            async with self._locks.instance(instance_name):
                instance = await self._require(instance_name)
                self._check_owner(instance, owner)
                if not instance.oauth_connection_ids and not connection_ids:
                    raise ValidationError(
                        f"Instance '{instance_name}' has no OAuth connections",
                        instance_name=instance_name,
                    )
                if instance.health_status in (HealthStatus.STOPPED, HealthStatus.STOPPING):
                    raise ConflictError(
                        f"Instance '{instance_name}' is {instance.health_status.value}",
                        instance_name=instance_name,
                    )
                updated, delay = await self._refresh_locked(instance_name, connection_ids, "manual")

        return RefreshResult(
            instance_name=instance_name,
            container_id=updated.container_id,
            oauth_connections=updated.oauth_connection_ids,
            next_refresh_at=utc_now() + timedelta(seconds=delay),
        )

    async def _refresh_locked(
        self,
        instance_name: str,
        connection_ids: list[str] | None,
        trigger: str,
    ) -> tuple[ManagedInstance, float]:
        try:
            updated, delay = await self._credentials.refresh(instance_name, connection_ids)
        except ToolboxAgentError:
            if trigger == "manual":
                CREDENTIAL_REFRESHES.labels(trigger=trigger, outcome="failure").inc()
            raise

        if trigger == "manual":
            CREDENTIAL_REFRESHES.labels(trigger=trigger, outcome="success").inc()
        self.refresh_scheduler.schedule(instance_name, delay)
        await self._registry.update(instance_name, registered_at=utc_now())
        if updated.is_mcp:
            self._discovery.reset(instance_name)
        return updated, delay

    async def _scheduled_refresh(self, instance_name: str) -> float:
        """Refresh path used by the credential scheduler."""
        async with self._locks.instance(instance_name):
            instance = await self._require(instance_name)
            if instance.health_status in (HealthStatus.STOPPED, HealthStatus.STOPPING):
                logger.debug("scheduled_refresh_skipped_stopped", instance_name=instance_name)
                return self._credentials.refresh_delay_for(instance)
            _, delay = await self._refresh_locked(instance_name, None, "scheduled")
            return delay

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_instance(self, instance_name: str) -> InstanceDescriptor:
        """Describe one instance."""
        return self._describe(await self._require(instance_name))

    async def force_probe(self, instance_name: str) -> ProbeResult:
        """Probe an MCP instance immediately."""
        instance = await self._require(instance_name)
        if not instance.is_mcp:
            raise ValidationError(
                f"Instance '{instance_name}' is not an MCP server",
                instance_name=instance_name,
            )
        self._discovery.track(instance_name)
        state = await self._discovery.force_probe(instance_name)
        return ProbeResult(
            instance_name=instance_name,
            discovery_state=state.state,
            consecutive_failures=state.consecutive_failures,
            last_error=state.last_error,
            last_latency_ms=state.last_latency_ms,
            capabilities=state.snapshot,
        )

    async def discovery(self) -> DiscoveryResult:
        """Every managed instance with capabilities and health."""
        descriptors = [self._describe(i) for i in await self._registry.list()]
        return DiscoveryResult(servers=descriptors, summary=self._summarize(descriptors))

    async def status(self) -> StatusReport:
        """Aggregate agent status."""
        instances = await self._registry.list()
        descriptors = [self._describe(i) for i in instances]
        summary = self._summarize([d for d in descriptors if d.container_type == ContainerType.MCP_SERVER])

        oauth_valid = all(
            i.health_metrics is None or i.health_metrics.oauth_connections_valid
            for i in instances
            if i.oauth_connection_ids
        )

        return StatusReport(
            status=rollup(i.health_status for i in instances),
            timestamp=utc_now(),
            version=self._version,
            service=self._service_name,
            tool_instances=ToolInstances(
                standard_tools=[
                    d for d in descriptors if d.container_type == ContainerType.STANDARD_TOOL
                ],
                mcp_servers=[d for d in descriptors if d.container_type == ContainerType.MCP_SERVER],
            ),
            mcp_discovery=MCPDiscoveryStatus(
                **summary.model_dump(),
                oauth_connections_valid=oauth_valid,
            ),
            system_metrics=_system_metrics(),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _rederive_health(self, instance_name: str, fallback: HealthStatus) -> HealthStatus:
        if self._reconcile_health is None:
            return fallback
        return await self._reconcile_health(instance_name) or fallback

    async def _require(self, instance_name: str) -> ManagedInstance:
        instance = await self._registry.get(instance_name)
        if instance is None:
            raise InstanceNotFoundError(instance_name)
        return instance

    @staticmethod
    def _check_owner(instance: ManagedInstance, owner: str | None) -> None:
        if not owner or owner != instance.account_tool_instance_id:
            logger.warning(
                "ownership_check_failed",
                instance_name=instance.instance_name,
                claimed_owner=owner,
            )
            raise OwnershipError(instance.instance_name)

    def _endpoint_url(self, instance: ManagedInstance) -> str | None:
        if instance.transport_type not in (TransportType.SSE, TransportType.WEBSOCKET):
            return None
        port = instance.host_port
        if port is None:
            return None
        scheme = "ws" if instance.transport_type == TransportType.WEBSOCKET else "http"
        return f"{scheme}://{self._advertise_host}:{port}{instance.endpoint_path or '/'}"

    def _describe(self, instance: ManagedInstance) -> InstanceDescriptor:
        return InstanceDescriptor(
            instance_id=instance.account_tool_instance_id,
            instance_name=instance.instance_name,
            container_id=instance.container_id,
            container_type=instance.container_type,
            transport_type=instance.transport_type,
            endpoint_path=instance.endpoint_path,
            endpoint_url=self._endpoint_url(instance),
            port_bindings=instance.port_bindings,
            capabilities=instance.capabilities,
            health_status=instance.health_status,
            health_metrics=instance.health_metrics,
            discovery_state=self._discovery.discovery_state(instance.instance_name),
            oauth_connections=instance.oauth_connection_ids,
            last_health_check=instance.last_health_check_at,
            last_capability_refresh=instance.last_capability_refresh_at,
            last_oauth_refresh=instance.last_oauth_refresh_at,
            created_at=instance.created_at,
        )

    @staticmethod
    def _summarize(descriptors: list[InstanceDescriptor]) -> DiscoverySummary:
        transports = Counter(d.transport_type.value for d in descriptors)
        return DiscoverySummary(
            total_servers=len(descriptors),
            healthy_servers=sum(1 for d in descriptors if d.health_status == HealthStatus.HEALTHY),
            transport_distribution=dict(transports),
        )


def _system_metrics() -> SystemMetrics:
    try:
        load = [round(v, 2) for v in os.getloadavg()]
    except OSError:
        load = None
    return SystemMetrics(load_average=load, cpu_count=os.cpu_count())
