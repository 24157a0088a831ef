"""Per-instance serialization and the global deploy cap."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class _NamedLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class InstanceLocks:
    """Serializes mutations of one instance name and bounds concurrent deploys.

    Operations on different names run in parallel; deploys additionally
    take a slot from a global semaphore protecting the container daemon.
    A name's lock exists only while some operation holds or awaits it.
    """

    def __init__(self, max_concurrent_deploys: int = 10) -> None:
        self._locks: dict[str, _NamedLock] = {}
        self._deploy_slots = asyncio.Semaphore(max_concurrent_deploys)
        self._max_concurrent_deploys = max_concurrent_deploys

    @asynccontextmanager
    async def instance(self, instance_name: str) -> AsyncIterator[None]:
        """Hold the lock guarding one instance name."""
        entry = self._locks.get(instance_name)
        if entry is None:
            entry = _NamedLock()
            self._locks[instance_name] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[instance_name]

    @property
    def deploy_slots(self) -> asyncio.Semaphore:
        """Semaphore bounding concurrent deploys."""
        return self._deploy_slots

    @property
    def max_concurrent_deploys(self) -> int:
        """Configured deploy concurrency."""
        return self._max_concurrent_deploys

    def is_locked(self, instance_name: str) -> bool:
        """Whether an operation currently holds the instance lock."""
        entry = self._locks.get(instance_name)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
