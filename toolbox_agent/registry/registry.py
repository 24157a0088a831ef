"""In-memory registry of managed instances.

The registry is the authoritative record of every container this agent
manages. It holds no durable state: on startup it is rebuilt from the
runtime's container list using the agent's management labels.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from toolbox_agent.containers.labels import ASIDE_SUFFIX, managed_filter, parse_labels
from toolbox_agent.containers.models import ContainerInfo, ContainerSpec
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.registry.lock import ReadWriteLock
from toolbox_agent.registry.models import (
    ContainerType,
    HealthStatus,
    ManagedInstance,
    TransportType,
    utc_now,
)

logger = get_logger(__name__)


class ContainerLister(Protocol):
    """The slice of the runtime client the registry needs."""

    async def list(self, labels: dict[str, str] | None = None) -> list[ContainerInfo]: ...


class InstanceRegistry:
    """Concurrency-safe map of instance name to ManagedInstance.

    Reads return deep copies, so mutations always go through the lock.
    """

    def __init__(self) -> None:
        self._instances: dict[str, ManagedInstance] = {}
        self._lock = ReadWriteLock()

    async def put(self, instance: ManagedInstance) -> None:
        """Insert or replace an instance."""
        async with self._lock.write():
            self._instances[instance.instance_name] = instance.model_copy(deep=True)

    async def get(self, instance_name: str) -> ManagedInstance | None:
        """Get a copy of an instance, or None."""
        async with self._lock.read():
            instance = self._instances.get(instance_name)
            return instance.model_copy(deep=True) if instance else None

    async def remove(self, instance_name: str) -> ManagedInstance | None:
        """Remove an instance, returning it if it was present."""
        async with self._lock.write():
            return self._instances.pop(instance_name, None)

    async def list(self) -> list[ManagedInstance]:
        """Copies of all instances, ordered by name."""
        async with self._lock.read():
            return [
                self._instances[name].model_copy(deep=True) for name in sorted(self._instances)
            ]

    async def names(self) -> list[str]:
        """All instance names."""
        async with self._lock.read():
            return sorted(self._instances)

    async def contains(self, instance_name: str) -> bool:
        """Whether an instance is registered."""
        async with self._lock.read():
            return instance_name in self._instances

    async def update(self, instance_name: str, **changes: Any) -> ManagedInstance | None:
        """Apply field changes to an instance.

        Returns:
            Copy of the updated instance, or None if it is not registered
        """
        async with self._lock.write():
            instance = self._instances.get(instance_name)
            if instance is None:
                return None
            updated = instance.model_copy(update=changes)
            self._instances[instance_name] = updated
            return updated.model_copy(deep=True)

    async def compare_and_swap_health(
        self,
        instance_name: str,
        expected: HealthStatus,
        new: HealthStatus,
        **changes: Any,
    ) -> bool:
        """Set health to new only if it currently equals expected.

        Extra field changes are applied atomically with the swap.

        Returns:
            True if the swap happened
        """
        async with self._lock.write():
            instance = self._instances.get(instance_name)
            if instance is None or instance.health_status != expected:
                return False
            self._instances[instance_name] = instance.model_copy(
                update={"health_status": new, **changes}
            )
            return True

    async def rebuild(
        self,
        runtime: ContainerLister,
        agent_name: str,
        credential_prefix: str,
    ) -> list[ManagedInstance]:
        """Replace registry contents with instances derived from runtime labels.

        Containers without this agent's management labels are ignored.

        Returns:
            The rebuilt instances
        """
        containers = await runtime.list(labels=managed_filter(agent_name))

        rebuilt: dict[str, ManagedInstance] = {}
        for info in containers:
            if info.name.endswith(ASIDE_SUFFIX):
                logger.warning(
                    "registry_rebuild_skipped_aside_container",
                    container_id=info.id,
                    name=info.name,
                )
                continue
            instance = instance_from_container(info, credential_prefix)
            if instance is None:
                logger.warning(
                    "registry_rebuild_skipped_container",
                    container_id=info.id,
                    name=info.name,
                )
                continue
            rebuilt[instance.instance_name] = instance

        async with self._lock.write():
            self._instances = rebuilt

        logger.info(
            "registry_rebuilt",
            instance_count=len(rebuilt),
            scanned=len(containers),
        )
        return [instance.model_copy(deep=True) for instance in rebuilt.values()]


def instance_from_container(info: ContainerInfo, credential_prefix: str) -> ManagedInstance | None:
    """Re-derive a ManagedInstance from container labels and inspect data.

    Credential variables are stripped from the recorded spec; only the
    earliest token expiry is kept so refresh can be rescheduled.
    """
    data = parse_labels(info.labels)
    if data is None:
        return None

    try:
        container_type = ContainerType(data.tool_type)
        transport = TransportType(data.transport) if data.transport else TransportType.NONE
    except ValueError:
        return None

    env = {k: v for k, v in info.env.items() if not k.startswith(credential_prefix)}
    expiries = [
        _parse_expiry(v)
        for k, v in info.env.items()
        if k.startswith(credential_prefix) and k.endswith("_EXPIRES_AT")
    ]
    known_expiries = [e for e in expiries if e is not None]

    spec = ContainerSpec(
        env=env,
        ports=dict(info.ports),
        labels=dict(info.labels),
        command=list(info.command) or None,
        memory=str(info.memory) if info.memory else None,
        cpu=info.cpu,
        restart_policy=info.restart_policy,
        stdin_open=info.stdin_open,
    )

    return ManagedInstance(
        instance_name=info.name,
        account_tool_instance_id=data.account_tool_instance_id,
        container_id=info.id,
        container_type=container_type,
        transport_type=transport,
        endpoint_path=data.endpoint_path,
        port_bindings=dict(info.ports),
        oauth_connection_ids=data.oauth_connection_ids,
        oauth_scopes=data.oauth_scopes,
        agent_id=data.agent_id,
        image=info.image,
        spec=spec,
        health_status=HealthStatus.STARTING,
        credentials_expire_at=min(known_expiries) if known_expiries else None,
        created_at=data.created_at or info.created or utc_now(),
    )


def _parse_expiry(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
