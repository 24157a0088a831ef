"""MCP discovery engine.

Probes each MCP instance on its own jittered schedule to establish
protocol-level liveness and enumerate capabilities, independent of
whether the container itself is running.
"""

import asyncio
import contextlib
import random
import time

from toolbox_agent.config.models.discovery import DiscoveryConfig
from toolbox_agent.discovery.models import DiscoveryState, ProbeState
from toolbox_agent.discovery.probes import Probe
from toolbox_agent.errors import DiscoveryTimeoutError, InstanceNotFoundError
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import PROBE_COUNT, PROBE_LATENCY
from toolbox_agent.registry.models import TransportType, utc_now
from toolbox_agent.registry.registry import InstanceRegistry

logger = get_logger(__name__)


class MCPDiscoveryEngine:
    """Per-instance probe loops with a shared state table.

    Every tracked instance gets its own asyncio task, so a hung server
    only ever delays its own probes.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        registry: InstanceRegistry,
        probes: dict[TransportType, Probe],
        rng: random.Random | None = None,
    ) -> None:
        """Initialize discovery engine.

        Args:
            config: Probe cadence and thresholds
            registry: Registry holding the instances to probe
            probes: Probe implementation per transport
            rng: Random source for jitter (seedable in tests)
        """
        self._config = config
        self._registry = registry
        self._probes = probes
        self._rng = rng or random.Random()
        self._states: dict[str, ProbeState] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._probe_locks: dict[str, asyncio.Lock] = {}

    def next_delay(self) -> float:
        """Seconds until the next periodic probe (interval +/- jitter)."""
        return self._rng.uniform(
            self._config.interval_seconds - self._config.jitter_seconds,
            self._config.interval_seconds + self._config.jitter_seconds,
        )

    def state_of(self, instance_name: str) -> ProbeState | None:
        """Copy of an instance's discovery state."""
        state = self._states.get(instance_name)
        return state.model_copy(deep=True) if state else None

    def discovery_state(self, instance_name: str) -> DiscoveryState | None:
        """Current discovery state, or None if untracked."""
        state = self._states.get(instance_name)
        return state.state if state else None

    def is_tracked(self, instance_name: str) -> bool:
        """Whether a probe loop is running for the instance."""
        return instance_name in self._tasks

    def track(self, instance_name: str) -> None:
        """Start the periodic probe loop for an instance."""
        if instance_name in self._tasks:
            return
        self._states.setdefault(instance_name, ProbeState())
        self._tasks[instance_name] = asyncio.create_task(
            self._probe_loop(instance_name),
            name=f"discovery:{instance_name}",
        )
        logger.debug("discovery_tracking_started", instance_name=instance_name)

    async def untrack(self, instance_name: str) -> None:
        """Stop probing an instance and forget its state."""
        task = self._tasks.pop(instance_name, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._states.pop(instance_name, None)
        self._probe_locks.pop(instance_name, None)
        logger.debug("discovery_tracking_stopped", instance_name=instance_name)

    def reset(self, instance_name: str) -> None:
        """Return an instance to PENDING, e.g. after its container restarted."""
        if instance_name in self._states:
            self._states[instance_name] = ProbeState()

    async def stop(self) -> None:
        """Cancel every probe loop."""
        for name in list(self._tasks):
            await self.untrack(name)
        logger.info("discovery_engine_stopped")

    async def force_probe(self, instance_name: str) -> ProbeState:
        """Probe an instance immediately, outside its schedule."""
        return await self.probe_once(instance_name)

    async def probe_once(self, instance_name: str) -> ProbeState:
        """Run one probe and fold the result into the instance's state.

        Failures never raise; they only move the state machine.

        Raises:
            InstanceNotFoundError: The instance is not a registered MCP server
        """
        lock = self._probe_locks.setdefault(instance_name, asyncio.Lock())
        async with lock:
            instance = await self._registry.get(instance_name)
            if instance is None or not instance.is_mcp:
                raise InstanceNotFoundError(instance_name)

            state = self._states.setdefault(instance_name, ProbeState())
            probe = self._probes.get(instance.transport_type)
            transport = instance.transport_type.value
            started = time.monotonic()

            try:
                if probe is None:
                    raise ValueError(f"No probe for transport '{transport}'")
                async with asyncio.timeout(self._config.probe_timeout_seconds):
                    snapshot = await probe.probe(instance)
            except TimeoutError:
                error = DiscoveryTimeoutError(
                    f"Probe timed out after {self._config.probe_timeout_seconds}s"
                )
                self._record_failure(instance_name, state, transport, error.message, "timeout")
            except Exception as e:
                self._record_failure(
                    instance_name, state, transport, f"{type(e).__name__}: {e}", "error"
                )
            else:
                now = utc_now()
                latency_ms = (time.monotonic() - started) * 1000
                state.record_success(snapshot, now, latency_ms)
                await self._registry.update(
                    instance_name,
                    capabilities=snapshot,
                    last_capability_refresh_at=now,
                )
                PROBE_COUNT.labels(transport=transport, outcome="success").inc()
                PROBE_LATENCY.labels(transport=transport).observe(latency_ms / 1000)
                logger.debug(
                    "probe_succeeded",
                    instance_name=instance_name,
                    transport=transport,
                    latency_ms=round(latency_ms, 1),
                    tools=len(snapshot.tools),
                    resources=len(snapshot.resources),
                    prompts=len(snapshot.prompts),
                )

            return state.model_copy(deep=True)

    def _record_failure(
        self,
        instance_name: str,
        state: ProbeState,
        transport: str,
        error: str,
        outcome: str,
    ) -> None:
        previous = state.state
        state.record_failure(error, utc_now(), self._config.failure_threshold)
        PROBE_COUNT.labels(transport=transport, outcome=outcome).inc()
        logger.warning(
            "probe_failed",
            instance_name=instance_name,
            transport=transport,
            error=error,
            consecutive_failures=state.consecutive_failures,
            state=state.state.value,
        )
        if previous != state.state and state.state == DiscoveryState.UNREACHABLE:
            logger.error(
                "mcp_server_unreachable",
                instance_name=instance_name,
                consecutive_failures=state.consecutive_failures,
            )

    async def _probe_loop(self, instance_name: str) -> None:
        """Background probe loop for one instance."""
        while True:
            await asyncio.sleep(self.next_delay())
            try:
                await self.probe_once(instance_name)
            except InstanceNotFoundError:
                logger.debug("discovery_instance_gone", instance_name=instance_name)
                self._tasks.pop(instance_name, None)
                return
            except Exception as e:
                logger.error(
                    "discovery_loop_error",
                    instance_name=instance_name,
                    error=str(e),
                )
